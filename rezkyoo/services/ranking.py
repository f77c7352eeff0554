"""Scores and orders callable candidates."""

import math

from rezkyoo.models import Candidate

KEYWORD_WEIGHT = 0.55
RATING_WEIGHT = 0.25
POPULARITY_WEIGHT = 0.10
RESERVABLE_BOOST = 0.1
UNKNOWN_HOURS_PENALTY = -0.08


def keyword_score(reviews: list[str], keywords: list[str]) -> float:
    """Share of preference keywords mentioned anywhere in the reviews (0..1)."""
    if not keywords:
        return 0.0
    text = " ".join(r.lower() for r in reviews if r)
    hits = sum(1 for k in keywords if k in text)
    return min(1.0, hits / len(keywords))


def combine_score(candidate: Candidate, craving: float) -> float:
    """Composite score for one candidate.

    Args:
        candidate: Restaurant to score
        craving: Keyword match score (0..1)

    Returns:
        Weighted sum of keyword match, normalized rating (3.5 -> 0, 5.0 -> 1),
        log-scaled review count and the reservable/unknown-hours adjustments
    """
    rating = candidate.rating or 0.0
    norm_rating = max(0.0, min(1.0, (rating - 3.5) / 1.5))
    popularity = min(1.0, math.log1p(candidate.user_ratings_total) / math.log(1000))
    boost = RESERVABLE_BOOST if candidate.reservable is True else 0.0
    penalty = 0.0 if candidate.opening_hours is not None else UNKNOWN_HOURS_PENALTY

    return (
        KEYWORD_WEIGHT * craving
        + RATING_WEIGHT * norm_rating
        + POPULARITY_WEIGHT * popularity
        + boost
        + penalty
    )


def score_candidate(candidate: Candidate, keywords: list[str]) -> float:
    return combine_score(candidate, keyword_score(candidate.reviews, keywords))


def rank_candidates(candidates: list[Candidate], keywords: list[str]) -> list[Candidate]:
    """Order candidates by descending score.

    Ties go to the higher raw rating, then to discovery order.

    Args:
        candidates: Eligible, open candidates in discovery order
        keywords: Preference keywords

    Returns:
        New list, best first
    """
    keyed = [
        (-score_candidate(c, keywords), -(c.rating or 0.0), index, c)
        for index, c in enumerate(candidates)
    ]
    keyed.sort(key=lambda item: item[:3])
    return [item[3] for item in keyed]
