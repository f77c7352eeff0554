"""Tests for the command-line client."""

import httpx

from rezkyoo import cli
from rezkyoo.cli import RezkyooCLI, format_call_line, merge_status

RESTAURANTS = [
    {"id": "p1", "place_id": "p1", "name": "Kin Khao", "rating": 4.6, "user_ratings_total": 812},
    {"id": "p2", "place_id": "p2", "name": "Lers Ros", "rating": None},
]


def item(place_id: str, status: str, **result) -> dict:
    return {"placeId": place_id, "status": status, "result": result, "raw": None}


class TestMergeStatus:
    """Test joining search results with call status."""

    def test_merge(self):
        """Test that calls are matched to restaurants by place id."""
        merged = merge_status(RESTAURANTS, [item("p2", "in_progress", outcome="pending")])

        assert "status" not in merged[0]
        assert merged[1]["status"] == "in_progress"
        assert merged[1]["name"] == "Lers Ros"


class TestFormatCallLine:
    """Test the per-restaurant progress line."""

    def test_pending(self):
        """Test a call that has not started yet."""
        assert format_call_line(RESTAURANTS[0]) == "Kin Khao (4.6★, 812 reviews): pending..."

    def test_in_progress(self):
        """Test a call that is still running."""
        entry = {**RESTAURANTS[1], "status": "in_progress"}

        assert format_call_line(entry) == "Lers Ros: in_progress..."

    def test_alternative_offered(self):
        """Test that the offered time is shown."""
        entry = {
            **RESTAURANTS[1],
            "status": "completed",
            "result": {"outcome": "alternative_offered", "alternative_time": "8:15 PM", "summary": "Full at 7:30"},
        }

        assert format_call_line(entry) == "Lers Ros: Offered another time (8:15 PM) - Full at 7:30"

    def test_failed(self):
        """Test a call that could not be placed."""
        entry = {
            **RESTAURANTS[1],
            "status": "failed",
            "result": {"outcome": "no_reservation_line", "summary": "Could not place the call: busy"},
        }

        assert format_call_line(entry) == "Lers Ros: call failed - Could not place the call: busy"


class TestPoll:
    """Test polling a batch until it completes."""

    def test_poll_until_completed(self, config, monkeypatch, capsys):
        """Test that polling stops once the batch is completed."""
        responses = iter(
            [
                {"status": "calling", "items": [item("p1", "in_progress")], "hasMore": False},
                {
                    "status": "completed",
                    "items": [item("p1", "completed", outcome="available", summary="Table at 7:30")],
                    "hasMore": False,
                },
            ]
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=next(responses)))
        monkeypatch.setattr(cli.time, "sleep", lambda seconds: None)
        client_app = RezkyooCLI.__new__(RezkyooCLI)
        client_app.config = config

        with httpx.Client(transport=transport) as client:
            status = client_app._poll(client, {"batchId": "batch_1", "restaurants": RESTAURANTS[:1]})

        assert status["status"] == "completed"
        output = capsys.readouterr().out
        assert "Kin Khao (4.6★, 812 reviews): Table available - Table at 7:30" in output
        assert "All calls are complete" in output

    def test_poll_error(self, config, capsys):
        """Test that a failing status endpoint ends polling."""
        transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "Batch not found"}))
        client_app = RezkyooCLI.__new__(RezkyooCLI)
        client_app.config = config

        with httpx.Client(transport=transport) as client:
            assert client_app._poll(client, {"batchId": "batch_1", "restaurants": []}) is None

        assert "Could not retrieve batch status" in capsys.readouterr().out
