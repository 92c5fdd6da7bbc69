"""Tests for review category derivation."""

import pytest
from hypothesis import given, strategies as st

from library_sync.services.reviews import determine_review_category

CATEGORIES = {
    "Overwhelmingly Positive",
    "Very Positive",
    "Positive",
    "Mostly Positive",
    "Mixed",
    "Mostly Negative",
    "Negative",
    "Very Negative",
    "Overwhelmingly Negative",
}


@pytest.mark.parametrize(
    ("positive", "negative", "expected"),
    [
        (80, 20, "Very Positive"),
        (40, 10, "Very Positive"),
        (32, 8, "Positive"),
        (79, 21, "Mostly Positive"),
        (70, 30, "Mostly Positive"),
        (40, 60, "Mixed"),
        (20, 80, "Mostly Negative"),
        (950, 50, "Overwhelmingly Positive"),
        (940, 60, "Very Positive"),
        (10, 990, "Overwhelmingly Negative"),
        (5, 95, "Very Negative"),
        (1, 19, "Negative"),
    ],
)
def test_review_category_boundaries(positive: int, negative: int, expected: str) -> None:
    assert determine_review_category(positive, negative) == expected


def test_exactly_eighty_percent_is_not_mostly_positive() -> None:
    assert determine_review_category(80, 20) != "Mostly Positive"
    assert determine_review_category(8, 2) == "Positive"


@given(positive=st.integers(min_value=0, max_value=9), negative=st.integers(min_value=0, max_value=9))
def test_too_few_reviews_have_no_category(positive: int, negative: int) -> None:
    """
    **Feature: library-sync, Property: review categories need at least ten reviews**

    Below ten reviews in total the category is null whatever the ratio.
    """
    if positive + negative < 10:
        assert determine_review_category(positive, negative) is None


@given(positive=st.integers(min_value=0, max_value=100_000), negative=st.integers(min_value=0, max_value=100_000))
def test_category_is_always_a_known_label(positive: int, negative: int) -> None:
    category = determine_review_category(positive, negative)

    if positive + negative < 10:
        assert category is None
    else:
        assert category in CATEGORIES
