"""Restaurant candidate data models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DayTime(BaseModel):
    """A weekday and time of day as reported by the places provider.

    Days are numbered 0 (Sunday) to 6 (Saturday); times are "HHMM" strings,
    with "2400" meaning end of day.
    """

    model_config = ConfigDict(frozen=True)

    day: int = Field(..., ge=0, le=6, description="Day of week, 0 = Sunday")
    time: str = Field(default="0000", description="Time of day as HHMM")

    @field_validator("time", mode="before")
    @classmethod
    def _pad_time(cls, value: Any) -> str:
        return str(value if value is not None else "0000").replace(":", "").zfill(4)

    @property
    def minutes(self) -> int:
        """Minutes since midnight."""
        return int(self.time[:2]) * 60 + int(self.time[2:4])


class OpeningPeriod(BaseModel):
    """One opening period; a missing close means open around the clock."""

    model_config = ConfigDict(frozen=True)

    open: DayTime
    close: DayTime | None = None


class OpeningHours(BaseModel):
    """Opening hours data for a venue."""

    model_config = ConfigDict(frozen=True)

    open_now: bool | None = Field(None, description="Live open-now signal, if provided")
    periods: list[OpeningPeriod] = Field(default_factory=list)


class GeoPoint(BaseModel):
    """Latitude/longitude pair."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class Candidate(BaseModel):
    """A restaurant that may be called for a search."""

    model_config = ConfigDict(frozen=True)

    place_id: str = Field(..., description="Stable external identifier")
    name: str = Field(..., description="Restaurant name")
    phone_number: str | None = Field(None, description="Dialable phone number")
    rating: float | None = Field(None, description="Average rating, 0-5")
    user_ratings_total: int = Field(default=0, description="Number of reviews")
    types: list[str] = Field(default_factory=list, description="Provider type tags")
    business_status: str | None = Field(None, description="Operating status")
    opening_hours: OpeningHours | None = Field(None, description="Opening hours")
    location: GeoPoint | None = Field(None, description="Geocoordinates")
    reservable: bool | None = Field(None, description="Takes reservations")
    price_level: int | None = Field(None, description="Price level, 0-4")
    reviews: list[str] = Field(default_factory=list, description="Review texts")

    @classmethod
    def from_place_details(cls, data: dict[str, Any]) -> "Candidate":
        """Build a candidate from a Google Place Details result.

        Args:
            data: The "result" object of a Place Details response

        Returns:
            Candidate
        """
        geometry = (data.get("geometry") or {}).get("location")
        return cls(
            place_id=data["place_id"],
            name=data.get("name") or "Unknown restaurant",
            phone_number=data.get("international_phone_number")
            or data.get("formatted_phone_number"),
            rating=data.get("rating"),
            user_ratings_total=data.get("user_ratings_total") or 0,
            types=data.get("types") or [],
            business_status=data.get("business_status"),
            opening_hours=data.get("opening_hours"),
            location=geometry,
            reservable=data.get("reservable"),
            price_level=data.get("price_level"),
            reviews=[r.get("text", "") for r in data.get("reviews") or [] if r],
        )

    def summary(self) -> dict[str, Any]:
        """Client-facing view used in search responses."""
        return {
            "id": self.place_id,
            "place_id": self.place_id,
            "name": self.name,
            "rating": self.rating,
            "user_ratings_total": self.user_ratings_total,
            "formatted_phone_number": self.phone_number or "",
            "price_level": self.price_level,
        }
