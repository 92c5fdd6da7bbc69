"""Steam-like qualitative review categories derived from raw review counts."""

REVIEWS_TOO_FEW_THRESHOLD = 10
REVIEWS_VERY_THRESHOLD = 50
REVIEWS_OVERWHELMINGLY_THRESHOLD = 500


def determine_review_category(total_positive: int, total_negative: int) -> str | None:
    """Determine a category such as "Very Positive", or None when there are too few reviews.

    This is a variation of what Steam shows on store pages: the percentage
    bands decide the sentiment, and the total count decides the intensity at
    the two extremes.
    """
    total_reviews = total_positive + total_negative

    if total_reviews < REVIEWS_TOO_FEW_THRESHOLD:
        return None

    positive_percentage = total_positive / total_reviews * 100

    if total_reviews >= REVIEWS_OVERWHELMINGLY_THRESHOLD and positive_percentage >= 95:
        return "Overwhelmingly Positive"
    if positive_percentage >= 80:
        return "Very Positive" if total_reviews >= REVIEWS_VERY_THRESHOLD else "Positive"
    if positive_percentage >= 70:
        return "Mostly Positive"
    if positive_percentage >= 40:
        return "Mixed"
    if positive_percentage >= 20:
        return "Mostly Negative"

    if total_reviews >= REVIEWS_OVERWHELMINGLY_THRESHOLD:
        return "Overwhelmingly Negative"
    if total_reviews >= REVIEWS_VERY_THRESHOLD:
        return "Very Negative"
    return "Negative"
