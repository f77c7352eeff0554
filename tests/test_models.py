"""Tests for data models."""

import datetime as dt

import pytest
from pydantic import ValidationError

from fakes import make_candidate, make_query
from rezkyoo.models import (
    Batch,
    BatchPage,
    CallCommand,
    CallRecord,
    CallStatus,
    Candidate,
    CommandAction,
    DayTime,
    RecordingPurpose,
    SearchIntent,
)


class TestSearchQuery:
    """Test SearchQuery validation and spoken forms."""

    def test_specific_time_requires_time(self):
        """Test that a specific_time search without a time is rejected."""
        with pytest.raises(ValidationError, match="Missing time for specific_time intent"):
            make_query(time=None, intent=SearchIntent.SPECIFIC_TIME)

    def test_next_available_without_time(self):
        """Test that next_available searches may omit the time."""
        query = make_query(time=None, intent=SearchIntent.NEXT_AVAILABLE)

        assert query.time is None
        assert query.spoken_time() == "the next available time"

    def test_party_size_must_be_positive(self):
        """Test party size validation."""
        with pytest.raises(ValidationError):
            make_query(party_size=0)

    def test_query_is_immutable(self):
        """Test that a query cannot be changed after creation."""
        query = make_query()

        with pytest.raises(ValidationError):
            query.party_size = 8

    def test_parses_strings(self):
        """Test that dates and times arrive as ISO strings from the API."""
        query = make_query(date="2025-03-07", time="19:30")

        assert query.date == dt.date(2025, 3, 7)
        assert query.time == dt.time(19, 30)
        assert query.spoken_date() == "Friday, March 7"
        assert query.spoken_time() == "7:30 PM"

    def test_spoken_time_on_the_hour(self):
        """Test spoken time without minutes."""
        assert make_query(time=dt.time(12, 0)).spoken_time() == "12 PM"


class TestCandidate:
    """Test Candidate construction from provider data."""

    def test_from_place_details(self):
        """Test building a candidate from a Place Details result."""
        candidate = Candidate.from_place_details(
            {
                "place_id": "abc",
                "name": "Kin Khao",
                "formatted_phone_number": "(415) 362-7456",
                "international_phone_number": "+1 415-362-7456",
                "rating": 4.4,
                "user_ratings_total": 1200,
                "types": ["restaurant", "food", "point_of_interest"],
                "business_status": "OPERATIONAL",
                "opening_hours": {
                    "open_now": True,
                    "periods": [{"open": {"day": 1, "time": "1130"}, "close": {"day": 1, "time": "2200"}}],
                    "weekday_text": ["Monday: 11:30 AM - 10:00 PM"],
                },
                "geometry": {"location": {"lat": 37.78, "lng": -122.40}},
                "reviews": [{"text": "Great khao soi"}, {"text": "Loud but tasty"}],
                "reservable": True,
            }
        )

        assert candidate.phone_number == "+1 415-362-7456"
        assert candidate.opening_hours.open_now is True
        assert candidate.opening_hours.periods[0].open.minutes == 11 * 60 + 30
        assert candidate.location.lat == 37.78
        assert candidate.reviews == ["Great khao soi", "Loud but tasty"]

    def test_summary(self):
        """Test the client-facing restaurant summary."""
        summary = make_candidate("p1", price_level=2).summary()

        assert summary["id"] == "p1"
        assert summary["place_id"] == "p1"
        assert summary["price_level"] == 2
        assert summary["formatted_phone_number"].startswith("+1415555")

    def test_daytime_pads_short_times(self):
        """Test that provider times like '930' are padded."""
        assert DayTime(day=1, time="930").minutes == 9 * 60 + 30


class TestCallStatus:
    """Test monotonic call status ordering."""

    def test_forward_moves_allowed(self):
        """Test that status can only move forward."""
        assert CallStatus.INITIATED.can_advance_to(CallStatus.IN_PROGRESS)
        assert CallStatus.IN_PROGRESS.can_advance_to(CallStatus.COMPLETED)
        assert not CallStatus.IN_PROGRESS.can_advance_to(CallStatus.INITIATED)

    def test_terminal_statuses_never_move(self):
        """Test that terminal statuses are final."""
        assert CallStatus.COMPLETED.is_terminal
        assert CallStatus.FAILED.is_terminal
        assert not CallStatus.COMPLETED.can_advance_to(CallStatus.COMPLETED)


class TestCallRecord:
    """Test CallRecord defaults and views."""

    def test_defaults(self):
        """Test a freshly dialed call record."""
        record = CallRecord(
            id="call_1",
            batch_id="batch_1",
            place_id="p1",
            restaurant_name="Kin Khao",
            phone_number="+14153627456",
            query=make_query(),
        )

        assert record.status == CallStatus.INITIATED
        assert record.result.outcome.value == "pending"
        assert record.result.credit_card_required is False
        assert not record.is_terminal

    def test_status_item(self):
        """Test the client-facing call item."""
        record = CallRecord(
            id="call_1",
            batch_id="batch_1",
            place_id="p1",
            restaurant_name="Kin Khao",
            phone_number="+14153627456",
            query=make_query(),
            transcript="We have a table",
        )

        item = record.status_item()

        assert item["placeId"] == "p1"
        assert item["status"] == "initiated"
        assert item["raw"] == "We have a table"
        assert item["result"]["outcome"] == "pending"


class TestCallCommand:
    """Test command constructors."""

    def test_record(self):
        """Test building a recording command."""
        command = CallCommand.record(RecordingPurpose.ANSWER, 30, 3)

        assert command.action == CommandAction.START_RECORDING
        assert command.max_length == 30
        assert command.silence_timeout == 3


class TestBatch:
    """Test batch pagination bookkeeping."""

    def test_has_more(self):
        """Test that has_more tracks undialed candidates."""
        batch = Batch(
            id="batch_1",
            query=make_query(),
            candidates=[make_candidate("p1"), make_candidate("p2")],
            called_count=1,
        )

        assert batch.has_more
        assert not batch.model_copy(update={"called_count": 2}).has_more

    def test_page_response(self):
        """Test the search response shape."""
        candidates = [make_candidate("p1"), make_candidate("p2")]
        batch = Batch(id="batch_1", query=make_query(), candidates=candidates, called_count=1)

        response = BatchPage(batch=batch, dialed=candidates[:1]).to_response()

        assert response["batchId"] == "batch_1"
        assert [r["place_id"] for r in response["restaurants"]] == ["p1"]
        assert response["hasMore"] is True
        assert response["query"]["date"] == "2025-03-03"
