"""Best-effort check that two catalog names refer to the same game.

Used only to flag estimate matches for human review in the mismatch ledger.
A "no match" here never changes a record by itself; it only asks a human.
"""

import re
from difflib import SequenceMatcher
from typing import Protocol

_TRADEMARKS = re.compile(r"[™®©]")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")

# Suffixes that stores add to a base game's name
_EDITION_PHRASES = (
    "game of the year edition",
    "goty edition",
    "definitive edition",
    "complete edition",
    "enhanced edition",
    "deluxe edition",
    "anniversary edition",
    "special edition",
    "ultimate edition",
    "gold edition",
    "remastered",
    "remaster",
    "directors cut",
    "goty",
)

_ROMAN_NUMERALS = {
    "ii": "2",
    "iii": "3",
    "iv": "4",
    "v": "5",
    "vi": "6",
    "vii": "7",
    "viii": "8",
    "ix": "9",
    "x": "10",
}


class NameMatcher(Protocol):
    def matches(self, left: str, right: str) -> bool: ...


def normalize_name(name: str) -> str:
    """Lowercase, drop trademarks, punctuation, edition suffixes, and spell roman numerals as digits."""
    value = _TRADEMARKS.sub("", name).lower().replace("&", " and ").replace("'", "")
    value = _NON_ALNUM.sub(" ", value)
    value = f" {' '.join(value.split())} "
    for phrase in _EDITION_PHRASES:
        value = value.replace(f" {phrase} ", " ")
    tokens = [_ROMAN_NUMERALS.get(token, token) for token in value.split()]
    return " ".join(tokens)


class HeuristicNameMatcher:
    """Normalized equality, containment, or a high similarity ratio."""

    def __init__(self, minimum_ratio: float = 0.85) -> None:
        self.minimum_ratio = minimum_ratio

    def matches(self, left: str, right: str) -> bool:
        normalized_left = normalize_name(left)
        normalized_right = normalize_name(right)

        if not normalized_left or not normalized_right:
            return False
        if normalized_left == normalized_right:
            return True
        if normalized_left in normalized_right or normalized_right in normalized_left:
            return True
        # SequenceMatcher is order sensitive
        first, second = sorted((normalized_left, normalized_right))
        return SequenceMatcher(a=first, b=second).ratio() >= self.minimum_ratio
