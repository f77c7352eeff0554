"""Opening-hours evaluation for restaurant candidates.

Periods use the places provider's convention: days 0 (Sunday) to 6
(Saturday), times as HHMM, a period without a close time means the venue is
always open. A period may run past midnight (or across several days); it is
split into day-scoped minute intervals before the requested minute is tested.
"""

import datetime as dt
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rezkyoo.models import OpeningHours, OpeningPeriod, SearchIntent

logger = logging.getLogger(__name__)

DAY_MINUTES = 24 * 60
WEEK_MINUTES = 7 * DAY_MINUTES


def provider_day(date: dt.date) -> int:
    """Convert a date to the provider's weekday number (0 = Sunday)."""
    return (date.weekday() + 1) % 7


def day_intervals(periods: list[OpeningPeriod], day: int) -> list[tuple[int, int]]:
    """Expand opening periods into [start, end) minute intervals for one day.

    Args:
        periods: Opening periods for the venue
        day: Provider weekday number (0 = Sunday)

    Returns:
        Minute-of-day intervals during which the venue is open on ``day``
    """
    day_start = day * DAY_MINUTES
    intervals: list[tuple[int, int]] = []

    for period in periods:
        if period.close is None:
            intervals.append((0, DAY_MINUTES))
            continue

        start = period.open.day * DAY_MINUTES + period.open.minutes
        end = period.close.day * DAY_MINUTES + period.close.minutes
        if end <= start:
            # Wraps past Saturday night into the next week
            end += WEEK_MINUTES

        # The span may overlap the requested day this week or, after wrapping, next week
        for offset in (0, WEEK_MINUTES):
            lo = max(start, day_start + offset)
            hi = min(end, day_start + offset + DAY_MINUTES)
            if lo < hi:
                intervals.append((lo - day_start - offset, hi - day_start - offset))

    return intervals


def _reference_now(timezone: str | None, now: dt.datetime | None) -> dt.datetime:
    zone = None
    if timezone:
        try:
            zone = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {timezone!r} - using the local clock")

    if now is None:
        return dt.datetime.now(zone) if zone else dt.datetime.now()
    if zone and now.tzinfo is not None:
        return now.astimezone(zone)
    return now


def resolve_target(
    date: dt.date,
    time: dt.time | None,
    timezone: str | None = None,
    now: dt.datetime | None = None,
) -> tuple[int, int]:
    """Resolve a requested date/time to the venue's weekday and minute of day.

    A missing time means "as soon as possible": the current minute in the
    venue's timezone if the date is today there, otherwise the start of day.

    Args:
        date: Requested date, in the venue's local calendar
        time: Requested time of day, if any
        timezone: IANA timezone of the venue (falls back to the local clock)
        now: Reference clock override

    Returns:
        (provider weekday, minute of day)
    """
    if time is not None:
        return provider_day(date), time.hour * 60 + time.minute

    local_now = _reference_now(timezone, now)
    if local_now.date() == date:
        return provider_day(date), local_now.hour * 60 + local_now.minute
    return provider_day(date), 0


def is_open_at(
    hours: OpeningHours | None,
    date: dt.date,
    time: dt.time | None,
    intent: SearchIntent = SearchIntent.SPECIFIC_TIME,
    timezone: str | None = None,
    now: dt.datetime | None = None,
) -> bool:
    """Decide whether a venue is open at the requested moment.

    Venues without any opening periods are treated as open. For
    ``next_available`` a live open-now signal is trusted directly; without
    one the venue counts as open if it still has an opening later that day.

    Args:
        hours: Venue opening hours
        date: Requested date
        time: Requested time of day (optional for next_available)
        intent: Search intent
        timezone: IANA timezone of the venue
        now: Reference clock override

    Returns:
        True if the venue is open
    """
    if hours is None or not hours.periods:
        return True

    if intent == SearchIntent.NEXT_AVAILABLE and hours.open_now is not None:
        return hours.open_now

    day, minute = resolve_target(date, time, timezone, now)
    intervals = day_intervals(hours.periods, day)
    if not intervals:
        return False

    if intent == SearchIntent.SPECIFIC_TIME:
        return any(start <= minute < end for start, end in intervals)
    return any(end > minute for _, end in intervals)
