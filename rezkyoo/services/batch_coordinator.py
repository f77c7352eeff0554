"""Groups the calls made for one search and reports their aggregate status."""

import asyncio
import logging

from rezkyoo.config import Config
from rezkyoo.exceptions import (
    BatchNotFoundError,
    LocationNotFoundError,
    NoCandidatesFoundError,
    NoEligibleCandidatesError,
    NoMoreCandidatesError,
)
from rezkyoo.models import (
    Batch,
    BatchPage,
    BatchProgress,
    BatchStatus,
    CallRecord,
    Candidate,
    GeoPoint,
    SearchQuery,
)
from rezkyoo.services.call_machine import CallStateMachine
from rezkyoo.services.dnc import DoNotCallRegistry
from rezkyoo.services.eligibility import is_eligible
from rezkyoo.services.opening_hours import is_open_at
from rezkyoo.services.places_service import PlacesProvider
from rezkyoo.services.preferences import preference_keywords, synthesize_queries
from rezkyoo.services.ranking import rank_candidates
from rezkyoo.services.scheduling import KeyedLocks
from rezkyoo.services.storage import ReservationStore
from rezkyoo.services.twilio_service import TelephonyClient

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Starts batches, dials further pages and derives batch status.

    Operations on the same batch are serialized, so a page is never dialed
    twice by concurrent continuation requests.
    """

    def __init__(
        self,
        config: Config,
        store: ReservationStore,
        places: PlacesProvider,
        telephony: TelephonyClient,
        calls: CallStateMachine,
        dnc: DoNotCallRegistry,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.places = places
        self.telephony = telephony
        self.calls = calls
        self.dnc = dnc
        self.locks = locks or KeyedLocks()

    def is_callable(self, candidate: Candidate, query: SearchQuery) -> bool:
        """Eligible, open at the requested moment and not on the do-not-call list."""
        return (
            is_eligible(candidate)
            and is_open_at(
                candidate.opening_hours, query.date, query.time, query.intent, query.timezone
            )
            and not self.dnc.contains(candidate.phone_number)
        )

    async def discover(self, query: SearchQuery, center: GeoPoint) -> list[Candidate]:
        """Find, filter and rank candidates, widening the radius as needed.

        Raises:
            NoCandidatesFoundError: If the lookup failed or found nothing
            NoEligibleCandidatesError: If nothing found can be called
        """
        preferences = query.preferences
        queries = synthesize_queries(preferences)
        base_radius = (
            preferences.parsed.radius_km
            if preferences.parsed and preferences.parsed.radius_km
            else self.config.default_radius_km
        )

        found: dict[str, Candidate] = {}
        callable_: list[Candidate] = []
        for step in range(self.config.radius_steps):
            radius_km = base_radius + step * self.config.radius_step_km
            try:
                results = await self.places.search(queries, center, radius_km, exclude=set(found))
            except Exception as e:
                if not found:
                    raise NoCandidatesFoundError("Restaurant lookup failed") from e
                logger.warning(f"Stopping radius widening at {radius_km:g} km: {e}")
                break

            for candidate in results:
                found.setdefault(candidate.place_id, candidate)
            callable_ = [c for c in found.values() if self.is_callable(c, query)]
            logger.info(
                f"{radius_km:g} km: {len(found)} found, {len(callable_)} callable"
            )
            if len(callable_) >= self.config.min_candidates:
                break

        if not found:
            raise NoCandidatesFoundError("No restaurants found near the location")
        if not callable_:
            raise NoEligibleCandidatesError("No restaurants can be called at the requested time")

        ranked = rank_candidates(callable_, preference_keywords(preferences))
        return ranked[: self.config.max_candidates]

    async def start_batch(self, query: SearchQuery) -> BatchPage:
        """Find candidates for a search and dial the first page.

        Args:
            query: Validated search

        Returns:
            The new batch and the candidates dialed

        Raises:
            LocationNotFoundError: If the location cannot be geocoded
            NoCandidatesFoundError: If the lookup failed or found nothing
            NoEligibleCandidatesError: If nothing found can be called
        """
        try:
            center = await self.places.geocode(query.location)
        except Exception as e:
            logger.exception(f"Geocoding failed for {query.location!r}")
            raise LocationNotFoundError("Could not geocode location") from e
        if center is None:
            raise LocationNotFoundError("Could not geocode location")

        if not query.timezone:
            timezone = await self.places.timezone_for(center)
            if timezone:
                query = query.model_copy(update={"timezone": timezone})

        candidates = await self.discover(query, center)
        page = candidates[: self.config.page_size(query.max_calls)]

        batch = Batch(
            id=self.store.generate_id("batch"),
            query=query,
            candidates=candidates,
            called_count=len(page),
            map_url=self.places.static_map_url(page),
        )
        async with self.locks.hold(batch.id):
            self.store.save_batch(batch)
            logger.info(
                f"Batch {batch.id}: {len(candidates)} candidates, dialing {len(page)}"
            )
            await self._dial_all(batch, page)

        return BatchPage(batch=batch, dialed=page)

    async def continue_batch(self, batch_id: str) -> BatchPage:
        """Dial the next page of an existing batch.

        Candidates are never rediscovered; the next undialed slice is checked
        again for opening hours and opt-outs. The cursor moves past the slice
        even when none of it can be called.

        Raises:
            BatchNotFoundError: If the batch is unknown
            NoMoreCandidatesError: If the next slice is empty or entirely closed
        """
        async with self.locks.hold(batch_id):
            batch = self.store.get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)

            start = batch.called_count
            window = batch.candidates[start : start + self.config.page_size(batch.query.max_calls)]
            if not window:
                raise NoMoreCandidatesError("No more restaurants to call")

            page = [c for c in window if self.is_callable(c, batch.query)]
            update = {"called_count": start + len(window)}
            if page:
                update |= {
                    "status": BatchStatus.CALLING,
                    "map_url": self.places.static_map_url(page) or batch.map_url,
                }
            batch = batch.model_copy(update=update)
            self.store.save_batch(batch)

            if not page:
                logger.info(f"Batch {batch_id}: next {len(window)} candidates are not callable")
                raise NoMoreCandidatesError("No more open restaurants to call")

            logger.info(f"Batch {batch_id}: dialing {len(page)} more ({batch.called_count} used)")
            await self._dial_all(batch, page)

        return BatchPage(batch=batch, dialed=page)

    async def get_status(self, batch_id: str) -> BatchProgress:
        """Current batch status and call records.

        The batch is completed when at least one call exists and every call
        is terminal; this is recomputed on every read. Calls that hung up
        while their answer was being classified are closed out here once the
        classification has stalled.

        Raises:
            BatchNotFoundError: If the batch is unknown
        """
        async with self.locks.hold(batch_id):
            batch = self.store.get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)

            calls = self.store.calls_for_batch(batch_id)
            stalled = [c for c in calls if not c.is_terminal and c.hangup_received_at]
            if stalled:
                for call in stalled:
                    await self.calls.expire_stale(call.id)
                calls = self.store.calls_for_batch(batch_id)

            done = bool(calls) and all(call.is_terminal for call in calls)
            status = BatchStatus.COMPLETED if done else BatchStatus.CALLING
            if status != batch.status:
                batch = batch.model_copy(update={"status": status})
                self.store.save_batch(batch)
                logger.info(f"Batch {batch_id} is now {status.value}")

        return BatchProgress(batch=batch, calls=calls)

    async def _dial_all(self, batch: Batch, candidates: list[Candidate]) -> list[CallRecord]:
        return list(await asyncio.gather(*(self._dial(batch, c) for c in candidates)))

    async def _dial(self, batch: Batch, candidate: Candidate) -> CallRecord:
        record = self.store.save_call(
            CallRecord(
                id=self.store.generate_id("call"),
                batch_id=batch.id,
                place_id=candidate.place_id,
                restaurant_name=candidate.name,
                phone_number=candidate.phone_number or "",
                query=batch.query,
            )
        )

        try:
            control_id = await asyncio.to_thread(
                self.telephony.place_call, record.phone_number, record.id
            )
        except Exception as e:
            failed = await self.calls.fail_dial(record.id, str(e) or type(e).__name__)
            return failed or record

        logger.info(f"Dialed {candidate.name} ({record.phone_number}) as call {record.id}")
        return await self.calls.attach_control_id(record.id, control_id) or record
