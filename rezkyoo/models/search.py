"""Search request data models."""

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SearchIntent(str, Enum):
    """When the diner wants to eat."""

    SPECIFIC_TIME = "specific_time"
    NEXT_AVAILABLE = "next_available"


class DiningPreferences(BaseModel):
    """Normalized dining intent parsed from a free-text mood."""

    cuisines: list[str] = Field(default_factory=list)
    dishes: list[str] = Field(default_factory=list)
    attributes: list[str] = Field(default_factory=list)
    dietary: list[str] = Field(default_factory=list)
    vibe: list[str] = Field(default_factory=list)
    budget: str = Field(default="", description="One of $, $$, $$$, $$$$ or empty")
    hard_excludes: list[str] = Field(default_factory=list)
    radius_km: float | None = Field(None, description="Preferred search radius")


class SearchPreferences(BaseModel):
    """Everything the diner told us about what they want to eat."""

    model_config = ConfigDict(frozen=True)

    cuisine: str | None = Field(None, description="Cuisine chip, or 'any'")
    notes: str | None = Field(None, description="Free-text preference notes")
    chips: list[str] = Field(default_factory=list, description="Preference chips")
    parsed: DiningPreferences | None = Field(None, description="Parsed mood, if any")


class SearchQuery(BaseModel):
    """A diner's reservation search. Immutable once a batch is created from it."""

    model_config = ConfigDict(frozen=True)

    location: str = Field(..., min_length=1, description="Where to search")
    party_size: int = Field(..., gt=0, le=20, description="Number of people")
    date: dt.date = Field(..., description="Reservation date")
    time: dt.time | None = Field(None, description="Reservation time")
    intent: SearchIntent = Field(default=SearchIntent.SPECIFIC_TIME)
    preferences: SearchPreferences = Field(default_factory=SearchPreferences)
    timezone: str | None = Field(None, description="IANA timezone of the search area")
    max_calls: int | None = Field(
        None, gt=0, description="Requested calls per page (bounded server-side)"
    )

    @model_validator(mode="after")
    def _require_time_for_specific_time(self) -> "SearchQuery":
        if self.intent == SearchIntent.SPECIFIC_TIME and self.time is None:
            raise ValueError("Missing time for specific_time intent")
        return self

    def spoken_date(self) -> str:
        """Date as it is read out on a call, e.g. 'Friday, March 7'."""
        return f"{self.date:%A}, {self.date:%B} {self.date.day}"

    def spoken_time(self) -> str:
        """Time as it is read out on a call, e.g. '7:30 PM'."""
        if self.time is None:
            return "the next available time"
        hour = self.time.hour % 12 or 12
        suffix = "AM" if self.time.hour < 12 else "PM"
        if self.time.minute:
            return f"{hour}:{self.time.minute:02d} {suffix}"
        return f"{hour} {suffix}"
