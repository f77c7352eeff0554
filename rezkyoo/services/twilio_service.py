"""Telephony provider integration: call placement, call control and webhooks."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from twilio.request_validator import RequestValidator
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from rezkyoo.config import Config
from rezkyoo.exceptions import TelephonyNotConfiguredError
from rezkyoo.models import (
    CallCommand,
    CallEvent,
    CallEventType,
    CommandAction,
    DetectionResult,
)

logger = logging.getLogger(__name__)

# Keeps the line open while we wait for the next webhook
HOLD_SECONDS = 60

STATUS_EVENTS = {
    "queued": CallEventType.CALL_INITIATED,
    "initiated": CallEventType.CALL_INITIATED,
    "in-progress": CallEventType.CALL_ANSWERED,
    "answered": CallEventType.CALL_ANSWERED,
    "completed": CallEventType.CALL_HANGUP,
    "busy": CallEventType.CALL_HANGUP,
    "no-answer": CallEventType.CALL_HANGUP,
    "failed": CallEventType.CALL_HANGUP,
    "canceled": CallEventType.CALL_HANGUP,
}

ANSWERED_BY = {
    "human": DetectionResult.HUMAN,
    "machine_start": DetectionResult.MACHINE,
    "machine_end_other": DetectionResult.MACHINE,
    "machine_end_beep": DetectionResult.BEEP,
    "machine_end_silence": DetectionResult.SILENCE,
    "fax": DetectionResult.FAX,
}


class TelephonyClient(ABC):
    """Call placement and call-control commands."""

    @abstractmethod
    def place_call(self, to_number: str, call_id: str) -> str:
        """Dial a number.

        Args:
            to_number: Number to call
            call_id: Internal call id, echoed back on webhooks

        Returns:
            Provider call-control id
        """

    @abstractmethod
    def execute(
        self,
        call_control_id: str,
        commands: list[CallCommand],
        call_id: str | None = None,
    ) -> None:
        """Apply call-control commands to a live call, in order."""


class TwilioService(TelephonyClient):
    """Twilio implementation of the telephony client.

    Twilio answers outbound legs itself and runs answering-machine detection
    from the create request, so ``answer`` and ``start_machine_detection`` need
    no API call. Speech, digits and recordings are sent as one TwiML document
    per command batch, since each TwiML update replaces the previous one.
    """

    def __init__(self, config: Config) -> None:
        """Initialize the Twilio service.

        Args:
            config: Application configuration
        """
        self.config = config
        if not config.has_twilio_config():
            logger.warning("Twilio not configured - service will not be functional")
            self.client = None
        else:
            self.client = Client(config.twilio_account_sid, config.twilio_auth_token)
            logger.info("Twilio service initialized")

    def is_configured(self) -> bool:
        """Check if Twilio is properly configured.

        Returns:
            True if Twilio credentials and the public domain are set
        """
        return self.client is not None and bool(self.config.public_domain)

    def webhook_url(self, kind: str, **params: str) -> str:
        """Public URL of one of our Twilio webhooks."""
        url = f"https://{self.config.public_domain}/webhooks/twilio/{kind}"
        return f"{url}?{urlencode(params)}" if params else url

    def place_call(self, to_number: str, call_id: str) -> str:
        """Initiate an outbound call with async answering-machine detection.

        Raises:
            TelephonyNotConfiguredError: If Twilio or the public domain is not set
            Exception: If Twilio rejects the call
        """
        if not self.is_configured():
            msg = "Twilio is not configured"
            raise TelephonyNotConfiguredError(msg)

        try:
            logger.info(f"Initiating call {call_id} to {to_number}")
            call = self.client.calls.create(
                to=to_number,
                from_=self.config.twilio_phone_number,
                url=self.webhook_url("hold"),
                status_callback=self.webhook_url("status", call_id=call_id),
                status_callback_event=["initiated", "answered", "completed"],
                status_callback_method="POST",
                machine_detection="DetectMessageEnd",
                async_amd="true",
                async_amd_status_callback=self.webhook_url("amd", call_id=call_id),
                async_amd_status_callback_method="POST",
            )

        except Exception:
            logger.exception(f"Failed to initiate call {call_id}")
            raise
        else:
            logger.info(f"Call {call_id} initiated with SID: {call.sid}")
            return call.sid

    def render_twiml(self, commands: list[CallCommand], call_id: str | None = None) -> str | None:
        """Render speak/digit/record commands as a TwiML document.

        Args:
            commands: Commands to render
            call_id: Internal call id, echoed back on the recording webhook

        Returns:
            TwiML string, or None if no command needs TwiML
        """
        response = VoiceResponse()
        rendered = False
        recording = False

        for command in commands:
            if command.action == CommandAction.SPEAK:
                response.say(command.text)
            elif command.action == CommandAction.SEND_DIGITS:
                response.play(digits=f"w{command.digits}")
            elif command.action == CommandAction.START_RECORDING:
                params = {"purpose": command.purpose.value if command.purpose else ""}
                if call_id:
                    params["call_id"] = call_id
                response.record(
                    max_length=command.max_length,
                    timeout=command.silence_timeout or command.max_length,
                    play_beep=False,
                    action=self.webhook_url("hold"),
                    recording_status_callback=self.webhook_url("recording", **params),
                    recording_status_callback_method="POST",
                    recording_status_callback_event="completed",
                )
                recording = True
            elif command.action == CommandAction.STOP_RECORDING:
                # Replacing the running TwiML ends the <Record>
                recording = False
            else:
                continue
            rendered = True

        if not rendered:
            return None
        if not recording:
            response.pause(length=HOLD_SECONDS)
        return str(response)

    def execute(
        self,
        call_control_id: str,
        commands: list[CallCommand],
        call_id: str | None = None,
    ) -> None:
        """Apply commands to a live call.

        Raises:
            TelephonyNotConfiguredError: If Twilio is not configured
            Exception: If Twilio rejects the update
        """
        if not self.client:
            msg = "Twilio is not configured"
            raise TelephonyNotConfiguredError(msg)

        for command in commands:
            if command.action in (CommandAction.ANSWER, CommandAction.START_MACHINE_DETECTION):
                logger.debug(f"{command.action.value} for {call_control_id} handled at dial time")

        twiml = self.render_twiml(commands, call_id)
        if twiml:
            self.client.calls(call_control_id).update(twiml=twiml)
            logger.debug(f"Updated TwiML for {call_control_id}")

        if any(c.action == CommandAction.HANGUP for c in commands):
            logger.info(f"Ending call {call_control_id}")
            self.client.calls(call_control_id).update(status="completed")

    def hold_twiml(self) -> str:
        """TwiML that keeps an answered call open."""
        response = VoiceResponse()
        response.pause(length=HOLD_SECONDS)
        return str(response)

    def verify_signature(self, url: str, params: Mapping[str, Any], signature: str | None) -> bool:
        """Validate an X-Twilio-Signature header."""
        if not self.config.twilio_auth_token or not signature:
            return False
        validator = RequestValidator(self.config.twilio_auth_token)
        return validator.validate(url, dict(params), signature)


def parse_twilio_event(
    kind: str,
    form: Mapping[str, Any],
    params: Mapping[str, Any] | None = None,
) -> CallEvent | None:
    """Normalize a Twilio callback into a provider-neutral call event.

    Args:
        kind: Which webhook was hit ("status", "amd" or "recording")
        form: Form fields posted by Twilio
        params: Query parameters we put on the callback URL

    Returns:
        CallEvent, or None if the callback carries nothing the engine uses
    """
    params = params or {}
    base = {
        "call_control_id": form.get("CallSid"),
        "call_id": params.get("call_id"),
        "payload": {**dict(form), **dict(params)},
    }

    if kind == "status":
        event_type = STATUS_EVENTS.get(str(form.get("CallStatus", "")).lower())
        if event_type is None:
            return None
        return CallEvent(type=event_type, **base)

    if kind == "amd":
        answered_by = str(form.get("AnsweredBy", "")).lower()
        detection = ANSWERED_BY.get(answered_by, DetectionResult.UNKNOWN)
        return CallEvent(type=CallEventType.MACHINE_DETECTION, detection=detection, **base)

    if kind == "recording":
        if str(form.get("RecordingStatus", "completed")).lower() not in ("completed", "failed"):
            return None
        return CallEvent(
            type=CallEventType.RECORDING_STOPPED,
            recording_url=form.get("RecordingUrl") or None,
            **base,
        )

    logger.warning(f"Unknown Twilio webhook kind: {kind}")
    return None
