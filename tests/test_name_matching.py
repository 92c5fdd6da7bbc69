"""Tests for the name similarity heuristic.

The heuristic is best effort: it only decides which estimate matches a human
is asked to confirm. These tests pin down the common cases, not correctness.
"""

import pytest
from hypothesis import given, strategies as st

from library_sync.services.name_matching import HeuristicNameMatcher, normalize_name


class TestNormalizeName:
    """Test cases for name normalization."""

    def test_trademarks_and_punctuation_are_dropped(self) -> None:
        assert normalize_name("DOOM™ Eternal®") == "doom eternal"
        assert normalize_name("Tom Clancy's Splinter Cell: Blacklist") == "tom clancys splinter cell blacklist"

    def test_roman_numerals_become_digits(self) -> None:
        assert normalize_name("Final Fantasy VII") == "final fantasy 7"
        assert normalize_name("Half-Life II") == "half life 2"

    def test_edition_suffixes_are_dropped(self) -> None:
        assert normalize_name("The Witcher 3: Wild Hunt - Game of the Year Edition") == "the witcher 3 wild hunt"
        assert normalize_name("Mafia: Definitive Edition") == "mafia"

    def test_roman_numeral_inside_a_word_is_kept(self) -> None:
        assert normalize_name("Civilization") == "civilization"


class TestHeuristicNameMatcher:
    """Test cases for the default matcher."""

    @pytest.mark.parametrize(
        ("left", "right"),
        [
            ("Portal 2", "Portal 2"),
            ("Final Fantasy VII", "FINAL FANTASY 7"),
            ("Dark Souls™: Remastered", "Dark Souls"),
            ("Hollow Knight", "Hollow Knight: Voidheart Edition"),
            ("The Elder Scrolls V: Skyrim", "The Elder Scrolls V: Skyrim Special Edition"),
        ],
    )
    def test_same_game_matches(self, left: str, right: str) -> None:
        assert HeuristicNameMatcher().matches(left, right)

    @pytest.mark.parametrize(
        ("left", "right"),
        [
            ("Celeste", "Stardew Valley"),
            ("Doom", "Quake"),
            ("", "Anything"),
        ],
    )
    def test_different_games_do_not_match(self, left: str, right: str) -> None:
        assert not HeuristicNameMatcher().matches(left, right)

    @given(name=st.text(alphabet=st.characters(whitelist_categories=("Lu", "Ll", "Nd")), min_size=1, max_size=40))
    def test_a_name_matches_itself(self, name: str) -> None:
        """
        **Feature: library-sync, Property: name matching is reflexive**
        """
        if normalize_name(name):
            assert HeuristicNameMatcher().matches(name, name)

    @given(
        left=st.text(max_size=30),
        right=st.text(max_size=30),
    )
    def test_matching_is_symmetric(self, left: str, right: str) -> None:
        matcher = HeuristicNameMatcher()

        assert matcher.matches(left, right) == matcher.matches(right, left)
