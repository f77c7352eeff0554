"""Tests for the provider integrations: Twilio, Google Maps, OpenAI agents."""

from types import SimpleNamespace

import httpx
import pytest

from fakes import make_candidate, make_query
from rezkyoo.config import Config
from rezkyoo.exceptions import TelephonyNotConfiguredError
from rezkyoo.models import (
    CallCommand,
    CallEventType,
    CallOutcome,
    CommandAction,
    DetectionResult,
    GeoPoint,
    RecordingPurpose,
)
from rezkyoo.prompts import load_prompt
from rezkyoo.services.classifier import (
    CallClassification,
    MenuNavigator,
    OutcomeClassifier,
    normalize_result,
)
from rezkyoo.services.places_service import PlacesService
from rezkyoo.services.transcription import TranscriptionPipeline
from rezkyoo.services.twilio_service import TwilioService, parse_twilio_event


@pytest.fixture
def twilio():
    """Twilio service without credentials (no REST client)."""
    return TwilioService(Config(_env_file=None, openai_api_key="sk-test", public_domain="example.ngrok.io"))


class TestTwilioService:
    """Test TwiML rendering and call control."""

    def test_unconfigured(self, twilio):
        """Test that missing credentials disable calling."""
        assert twilio.client is None
        assert not twilio.is_configured()

        with pytest.raises(TelephonyNotConfiguredError):
            twilio.place_call("+14155550100", "call_1")
        with pytest.raises(TelephonyNotConfiguredError):
            twilio.execute("CA1", [CallCommand(action=CommandAction.HANGUP)])

    def test_webhook_url(self, twilio):
        """Test public webhook URLs with echoed parameters."""
        assert twilio.webhook_url("hold") == "https://example.ngrok.io/webhooks/twilio/hold"
        assert (
            twilio.webhook_url("status", call_id="call_1")
            == "https://example.ngrok.io/webhooks/twilio/status?call_id=call_1"
        )

    def test_render_question(self, twilio):
        """Test digits, speech and a recording in one document."""
        twiml = twilio.render_twiml(
            [
                CallCommand.send_digits("2"),
                CallCommand.speak("Do you have a table?"),
                CallCommand.record(RecordingPurpose.ANSWER, 20, 3),
            ],
            call_id="call_1",
        )

        assert '<Play digits="w2"' in twiml
        assert "<Say>Do you have a table?</Say>" in twiml
        assert 'maxLength="20"' in twiml
        assert 'timeout="3"' in twiml
        assert "purpose=answer" in twiml
        assert "call_id=call_1" in twiml
        assert twiml.index("<Play") < twiml.index("<Say") < twiml.index("<Record")
        assert "<Pause" not in twiml

    def test_render_speech_holds_the_line(self, twilio):
        """Test that speech without a recording is followed by a pause."""
        twiml = twilio.render_twiml([CallCommand.speak("Goodbye")])

        assert '<Pause length="60"' in twiml

    def test_render_nothing(self, twilio):
        """Test that pure control commands need no TwiML."""
        commands = [
            CallCommand(action=CommandAction.ANSWER),
            CallCommand(action=CommandAction.START_MACHINE_DETECTION),
            CallCommand(action=CommandAction.HANGUP),
        ]

        assert twilio.render_twiml(commands) is None

    def test_execute_updates_call(self, twilio):
        """Test that TwiML is sent before the hangup."""
        updates = []
        twilio.client = SimpleNamespace(
            calls=lambda sid: SimpleNamespace(update=lambda **kw: updates.append((sid, kw)))
        )

        twilio.execute(
            "CA1", [CallCommand.speak("Bye"), CallCommand(action=CommandAction.HANGUP)], "call_1"
        )

        assert [sid for sid, _ in updates] == ["CA1", "CA1"]
        assert "twiml" in updates[0][1]
        assert updates[1][1] == {"status": "completed"}

    def test_signature_requires_token(self, twilio):
        """Test that signatures cannot validate without an auth token."""
        assert not twilio.verify_signature("https://example.ngrok.io/x", {}, "sig")


class TestParseTwilioEvent:
    """Test webhook normalization."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("initiated", CallEventType.CALL_INITIATED),
            ("in-progress", CallEventType.CALL_ANSWERED),
            ("completed", CallEventType.CALL_HANGUP),
            ("busy", CallEventType.CALL_HANGUP),
            ("no-answer", CallEventType.CALL_HANGUP),
        ],
    )
    def test_status(self, status, expected):
        """Test call status callbacks."""
        event = parse_twilio_event("status", {"CallSid": "CA1", "CallStatus": status}, {"call_id": "call_1"})

        assert event.type == expected
        assert event.call_control_id == "CA1"
        assert event.call_id == "call_1"

    def test_ringing_is_ignored(self):
        """Test statuses the engine does not use."""
        assert parse_twilio_event("status", {"CallSid": "CA1", "CallStatus": "ringing"}) is None

    @pytest.mark.parametrize(
        ("answered_by", "expected"),
        [
            ("human", DetectionResult.HUMAN),
            ("machine_end_beep", DetectionResult.BEEP),
            ("machine_end_other", DetectionResult.MACHINE),
            ("fax", DetectionResult.FAX),
            ("unknown", DetectionResult.UNKNOWN),
        ],
    )
    def test_machine_detection(self, answered_by, expected):
        """Test answering-machine detection callbacks."""
        event = parse_twilio_event("amd", {"CallSid": "CA1", "AnsweredBy": answered_by})

        assert event.type == CallEventType.MACHINE_DETECTION
        assert event.detection == expected

    def test_recording(self):
        """Test recording callbacks."""
        form = {"CallSid": "CA1", "RecordingStatus": "completed", "RecordingUrl": "https://api.twilio.com/RE1"}

        event = parse_twilio_event("recording", form, {"call_id": "call_1", "purpose": "answer"})

        assert event.type == CallEventType.RECORDING_STOPPED
        assert event.recording_url == "https://api.twilio.com/RE1"
        assert event.payload["purpose"] == "answer"

    def test_recording_in_progress_is_ignored(self):
        """Test that only finished recordings are forwarded."""
        assert parse_twilio_event("recording", {"CallSid": "CA1", "RecordingStatus": "in-progress"}) is None

    def test_unknown_kind(self):
        """Test an unknown webhook path."""
        assert parse_twilio_event("conference", {"CallSid": "CA1"}) is None


class TestClassifier:
    """Test outcome normalization and the agents' short-circuits."""

    def test_normalize_known_outcome(self):
        """Test a well-formed classification."""
        raw = CallClassification(
            outcome="alternative_offered", summary="Full at 7:30, 8:15 works", alternative_time="8:15 PM"
        )

        result = normalize_result(raw)

        assert result.outcome == CallOutcome.ALTERNATIVE_OFFERED
        assert result.alternative_time == "8:15 PM"
        assert not result.credit_card_required

    @pytest.mark.parametrize("outcome", ["maybe", "", "pending", None])
    def test_normalize_unusable_outcome(self, outcome):
        """Test that unknown or non-terminal outcomes become other."""
        result = normalize_result({"outcome": outcome, "summary": "?"})

        assert result.outcome == CallOutcome.OTHER

    def test_credit_card_flag_follows_outcome(self):
        """Test that the flag is derived from the outcome only."""
        assert normalize_result(
            {"outcome": "credit_card_required", "summary": "Card needed", "credit_card_required": False}
        ).credit_card_required
        assert not normalize_result(
            {"outcome": "available", "summary": "Yes", "credit_card_required": True}
        ).credit_card_required

    def test_normalize_missing(self):
        """Test that no output is a safe fallback."""
        result = normalize_result(None)

        assert result.outcome == CallOutcome.OTHER
        assert result.summary

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_agent(self):
        """Test that silence is classified without calling the model."""
        classifier = OutcomeClassifier("gpt-4o-mini")

        result = await classifier.classify("  ", make_query(), "Kin Khao")

        assert result.outcome == CallOutcome.OTHER
        assert classifier._agent is None

    @pytest.mark.asyncio
    async def test_empty_menu_presses_nothing(self):
        """Test that no menu means no digit."""
        navigator = MenuNavigator("gpt-4o-mini")

        assert await navigator.select_digit("", make_query()) == 0
        assert navigator._agent is None

    def test_prompts_load(self):
        """Test that the agent instructions are packaged."""
        assert "credit_card_required" in load_prompt("outcome_classifier")
        assert load_prompt("menu_navigator")

    def test_unknown_prompt(self):
        """Test that a missing prompt file is reported by name."""
        with pytest.raises(FileNotFoundError, match="no_such_prompt"):
            load_prompt("no_such_prompt")


class TestTranscriptionPipeline:
    """Test recording transcription."""

    @pytest.mark.asyncio
    async def test_transcribe(self, config, monkeypatch):
        """Test that fetched audio is sent to the transcription model."""
        requests = []

        async def create(**kwargs):
            requests.append(kwargs)
            return SimpleNamespace(text="  Yes, we have a table.  ")

        client = SimpleNamespace(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
        pipeline = TranscriptionPipeline(config, client)

        async def fetch(url):
            return b"ID3audio"

        monkeypatch.setattr(pipeline, "fetch", fetch)

        assert await pipeline.transcribe("https://api.twilio.com/RE1") == "Yes, we have a table."
        assert requests[0]["model"] == config.transcription_model
        assert requests[0]["file"] == ("recording.mp3", b"ID3audio")

    @pytest.mark.asyncio
    async def test_empty_audio(self, config, monkeypatch):
        """Test that an empty recording yields an empty transcript."""
        pipeline = TranscriptionPipeline(config, SimpleNamespace())

        async def fetch(url):
            return b""

        monkeypatch.setattr(pipeline, "fetch", fetch)

        assert await pipeline.transcribe("https://api.twilio.com/RE1") == ""


def maps_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("geocode/json"):
        if request.url.params["address"] == "Atlantis":
            return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
        return httpx.Response(
            200, json={"status": "OK", "results": [{"geometry": {"location": {"lat": 37.76, "lng": -122.42}}}]}
        )
    if path.endswith("timezone/json"):
        return httpx.Response(200, json={"status": "OK", "timeZoneId": "America/Los_Angeles"})
    if path.endswith("place/textsearch/json"):
        return httpx.Response(
            200, json={"status": "OK", "results": [{"place_id": "p1"}, {"place_id": "p2"}, {"place_id": "p1"}]}
        )
    if path.endswith("place/details/json"):
        place_id = request.url.params["place_id"]
        if place_id == "p2":
            return httpx.Response(200, json={"status": "NOT_FOUND"})
        return httpx.Response(
            200,
            json={
                "status": "OK",
                "result": {
                    "place_id": place_id,
                    "name": "Kin Khao",
                    "international_phone_number": "+1 415-362-7456",
                    "types": ["restaurant"],
                    "business_status": "OPERATIONAL",
                    "rating": 4.6,
                    "geometry": {"location": {"lat": 37.78, "lng": -122.41}},
                    "reviews": [{"text": "Great khao soi"}],
                },
            },
        )
    return httpx.Response(404)


@pytest.fixture
def maps(config):
    config.google_maps_api_key = "maps-key"
    client = httpx.AsyncClient(transport=httpx.MockTransport(maps_handler))
    return PlacesService(config, client=client)


class TestPlacesService:
    """Test the Google Maps client against a mock transport."""

    @pytest.mark.asyncio
    async def test_geocode(self, maps):
        """Test geocoding hits and misses."""
        assert await maps.geocode("Mission District") == GeoPoint(lat=37.76, lng=-122.42)
        assert await maps.geocode("Atlantis") is None

    @pytest.mark.asyncio
    async def test_timezone(self, maps):
        """Test timezone resolution."""
        assert await maps.timezone_for(GeoPoint(lat=37.76, lng=-122.42)) == "America/Los_Angeles"

    @pytest.mark.asyncio
    async def test_search(self, maps):
        """Test that duplicates and failed detail lookups are dropped."""
        candidates = await maps.search(["thai restaurant"], GeoPoint(lat=37.76, lng=-122.42), 5)

        assert [c.place_id for c in candidates] == ["p1"]
        assert candidates[0].phone_number == "+1 415-362-7456"
        assert candidates[0].reviews == ["Great khao soi"]

    @pytest.mark.asyncio
    async def test_search_excludes_known(self, maps):
        """Test that known place ids are not fetched again."""
        candidates = await maps.search(["thai"], GeoPoint(lat=37.76, lng=-122.42), 5, exclude={"p1"})

        assert candidates == []

    @pytest.mark.asyncio
    async def test_missing_key(self, config):
        """Test that lookups fail loudly without an API key."""
        config.google_maps_api_key = None
        service = PlacesService(config, client=httpx.AsyncClient(transport=httpx.MockTransport(maps_handler)))

        with pytest.raises(RuntimeError, match="GOOGLE_MAPS_API_KEY"):
            await service.geocode("Mission District")

    def test_static_map_url(self, maps):
        """Test labeled markers on the map image."""
        url = maps.static_map_url([make_candidate("p1"), make_candidate("p2", location=None)])

        assert url.startswith("https://maps.googleapis.com/maps/api/staticmap?")
        assert "label%3A1" in url
        assert "label%3A2" not in url
