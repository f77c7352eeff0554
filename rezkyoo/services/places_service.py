"""Restaurant lookup against the Google Maps web services."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import httpx

from rezkyoo.config import Config
from rezkyoo.models import Candidate, GeoPoint

logger = logging.getLogger(__name__)

MAPS_API = "https://maps.googleapis.com/maps/api"
DETAIL_FIELDS = [
    "place_id",
    "name",
    "types",
    "business_status",
    "formatted_phone_number",
    "international_phone_number",
    "opening_hours",
    "price_level",
    "rating",
    "user_ratings_total",
    "reviews",
    "reservable",
    "geometry",
]
# Google needs a moment before a next_page_token becomes valid
PAGE_TOKEN_DELAY_SECONDS = 2.0
MAP_MARKER_LABELS = "123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class PlacesProvider(ABC):
    """Geocoding and restaurant search collaborator."""

    @abstractmethod
    async def geocode(self, location: str) -> GeoPoint | None:
        """Resolve a free-text location, or None if nothing matched."""

    @abstractmethod
    async def timezone_for(self, point: GeoPoint) -> str | None:
        """IANA timezone at a point, or None if it cannot be resolved."""

    @abstractmethod
    async def search(
        self,
        queries: list[str],
        center: GeoPoint,
        radius_km: float,
        exclude: set[str] | None = None,
    ) -> list[Candidate]:
        """Text-search restaurants and return detailed candidates.

        Args:
            queries: Text-search queries
            center: Search center
            radius_km: Search radius
            exclude: Place ids already known (not fetched again)

        Raises:
            Exception: If the lookup service is unavailable
        """

    def static_map_url(self, candidates: list[Candidate]) -> str | None:
        """Map image URL marking the given candidates, if supported."""
        return None


class PlacesService(PlacesProvider):
    """Google Geocoding, Time Zone, Places and Static Maps APIs over httpx."""

    def __init__(self, config: Config, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the places service.

        Args:
            config: Application configuration (API key, page limits)
            client: Shared HTTP client (one is created when omitted)
        """
        self.config = config
        self.api_key = config.google_maps_api_key
        self.client = client or httpx.AsyncClient(timeout=15.0)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            msg = "GOOGLE_MAPS_API_KEY is not configured"
            raise RuntimeError(msg)

        response = await self.client.get(f"{MAPS_API}/{path}", params={**params, "key": self.api_key})
        response.raise_for_status()
        data = response.json()

        status = data.get("status", "OK")
        if status not in ("OK", "ZERO_RESULTS"):
            msg = f"Maps API {path} returned {status}: {data.get('error_message', '')}"
            raise RuntimeError(msg)
        return data

    async def geocode(self, location: str) -> GeoPoint | None:
        data = await self._get("geocode/json", {"address": location})
        results = data.get("results") or []
        if not results:
            logger.info(f"No geocoding result for {location!r}")
            return None
        point = results[0]["geometry"]["location"]
        return GeoPoint(lat=point["lat"], lng=point["lng"])

    async def timezone_for(self, point: GeoPoint) -> str | None:
        try:
            data = await self._get(
                "timezone/json",
                {"location": f"{point.lat},{point.lng}", "timestamp": int(time.time())},
            )
        except Exception as e:
            logger.warning(f"Timezone lookup failed for {point.lat},{point.lng}: {e}")
            return None
        return data.get("timeZoneId")

    async def text_search(self, query: str, center: GeoPoint, radius_m: int) -> list[str]:
        """Place ids for one query, following up to ``max_textsearch_pages`` pages."""
        place_ids: list[str] = []
        params: dict[str, Any] = {
            "query": query,
            "location": f"{center.lat},{center.lng}",
            "radius": radius_m,
        }

        for page in range(self.config.max_textsearch_pages):
            data = await self._get("place/textsearch/json", params)
            place_ids += [r["place_id"] for r in data.get("results", []) if r.get("place_id")]

            token = data.get("next_page_token")
            if not token or page + 1 >= self.config.max_textsearch_pages:
                break
            await asyncio.sleep(PAGE_TOKEN_DELAY_SECONDS)
            params = {"pagetoken": token}

        return place_ids

    async def details(self, place_id: str) -> Candidate | None:
        """Full candidate data for one place, or None if the lookup fails."""
        try:
            data = await self._get(
                "place/details/json",
                {"place_id": place_id, "fields": ",".join(DETAIL_FIELDS)},
            )
            result = data.get("result")
            return Candidate.from_place_details(result) if result else None
        except Exception as e:
            logger.warning(f"Place details failed for {place_id}: {e}")
            return None

    async def search(
        self,
        queries: list[str],
        center: GeoPoint,
        radius_km: float,
        exclude: set[str] | None = None,
    ) -> list[Candidate]:
        exclude = exclude or set()
        radius_m = round(radius_km * 1000)

        place_ids: list[str] = []
        for query in queries:
            place_ids += await self.text_search(query, center, radius_m)
        fresh = [pid for pid in dict.fromkeys(place_ids) if pid not in exclude]
        logger.info(
            f"Text search ({len(queries)} queries, {radius_km:g} km) found {len(fresh)} new places"
        )

        detailed = await asyncio.gather(*(self.details(pid) for pid in fresh))
        return [c for c in detailed if c is not None]

    def static_map_url(self, candidates: list[Candidate]) -> str | None:
        located = [c for c in candidates if c.location][: len(MAP_MARKER_LABELS)]
        if not located or not self.api_key:
            return None

        params: list[tuple[str, str]] = [("size", "640x400"), ("scale", "2")]
        for label, candidate in zip(MAP_MARKER_LABELS, located):
            params.append(
                ("markers", f"label:{label}|{candidate.location.lat},{candidate.location.lng}")
            )
        params.append(("key", self.api_key))
        return f"{MAPS_API}/staticmap?{urlencode(params)}"
