"""Decides whether a restaurant candidate can be called at all."""

from rezkyoo.models import Candidate

RESTAURANT_TYPES = frozenset({"restaurant", "food", "bar"})

# Places that do not take table reservations
DISALLOWED_TYPES = frozenset({"fast_food", "meal_takeaway", "meal_delivery"})


def _normalized_types(candidate: Candidate) -> set[str]:
    return {(t or "").lower() for t in candidate.types}


def has_phone(candidate: Candidate) -> bool:
    return bool(candidate.phone_number and candidate.phone_number.strip())


def is_operational(candidate: Candidate) -> bool:
    """Only an explicit OPERATIONAL status counts; a missing status is rejected."""
    return (candidate.business_status or "").upper() == "OPERATIONAL"


def is_restaurant_type(candidate: Candidate) -> bool:
    return bool(_normalized_types(candidate) & RESTAURANT_TYPES)


def is_disallowed_type(candidate: Candidate) -> bool:
    return bool(_normalized_types(candidate) & DISALLOWED_TYPES)


def is_eligible(candidate: Candidate) -> bool:
    """Check whether a candidate is a callable, sit-down restaurant.

    Args:
        candidate: Restaurant to check

    Returns:
        True if the candidate has a phone number, is operational, is tagged
        as a restaurant/food/bar and is not a takeaway-style venue
    """
    return (
        has_phone(candidate)
        and is_operational(candidate)
        and is_restaurant_type(candidate)
        and not is_disallowed_type(candidate)
    )
