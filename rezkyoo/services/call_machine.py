"""Per-call state machine driven by telephony webhook events.

The transition rules are pure functions of ``(record, event)`` that return
the updated record plus the commands to issue, so they can be exercised
with synthetic event sequences. ``CallStateMachine`` does the IO around
them: record lookup and persistence, telephony commands, delayed hangups,
transcription, classification and do-not-call registration.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from rezkyoo.config import Config
from rezkyoo.models import (
    CallCommand,
    CallEvent,
    CallEventType,
    CallOutcome,
    CallRecord,
    CallResult,
    CallStage,
    CallStatus,
    CommandAction,
    DetectionResult,
    RecordingPurpose,
)
from rezkyoo.services.call_scripts import closing_remark, reservation_question, voicemail_message
from rezkyoo.services.classifier import CallClassifier, DigitSelector, fallback_result
from rezkyoo.services.dnc import DoNotCallRegistry
from rezkyoo.services.scheduling import KeyedLocks, Scheduler
from rezkyoo.services.storage import ReservationStore
from rezkyoo.services.transcription import Transcriber
from rezkyoo.services.twilio_service import TelephonyClient

logger = logging.getLogger(__name__)

VOICEMAIL_DETECTIONS = (DetectionResult.MACHINE, DetectionResult.SILENCE, DetectionResult.BEEP)
PRE_ANSWER_STAGES = (CallStage.DIALING, CallStage.RINGING, CallStage.DETECTING)

HANGUP_SUMMARY = "The call ended before a response was captured"
VOICEMAIL_SUMMARY = "Reached voicemail and left a message"
FAX_SUMMARY = "A fax machine answered"


class CallContext(BaseModel):
    """Call settings the transition rules need."""

    model_config = ConfigDict(frozen=True)

    caller_name: str = "RezKyoo"
    callback_number: str = ""
    ivr_probe_seconds: int = 6
    answer_max_seconds: int = 30
    answer_silence_seconds: int = 3
    voicemail_hangup_delay_seconds: float = 12.0
    closing_hangup_delay_seconds: float = 4.0
    classification_timeout_seconds: float = 120.0

    @classmethod
    def from_config(cls, config: Config) -> "CallContext":
        return cls(
            caller_name=config.caller_name,
            callback_number=config.callback_number,
            ivr_probe_seconds=config.ivr_probe_seconds,
            answer_max_seconds=config.answer_max_seconds,
            answer_silence_seconds=config.answer_silence_seconds,
            voicemail_hangup_delay_seconds=config.voicemail_hangup_delay_seconds,
            closing_hangup_delay_seconds=config.closing_hangup_delay_seconds,
            classification_timeout_seconds=config.classification_timeout_seconds,
        )


class FollowUp(str, Enum):
    """Slow work to run after a transition has been committed."""

    NAVIGATE_MENU = "navigate_menu"
    CLASSIFY_ANSWER = "classify_answer"


class Transition(BaseModel):
    """Result of applying one event to a call record."""

    model_config = ConfigDict(frozen=True)

    record: CallRecord
    commands: list[CallCommand] = Field(default_factory=list)
    hangup_after: float | None = Field(None, description="Delayed hangup, in seconds")
    add_to_dnc: bool = False
    follow_up: FollowUp | None = None
    expire_after: float | None = Field(
        None, description="Close out a stalled classification after this many seconds"
    )


def _finish(record: CallRecord, result: CallResult, **changes) -> CallRecord:
    now = datetime.now()
    return record.model_copy(
        update={
            "status": CallStatus.COMPLETED,
            "stage": CallStage.ENDED,
            "result": result,
            "ended_at": now,
            **changes,
        }
    )


def _on_detection(record: CallRecord, event: CallEvent, ctx: CallContext) -> Transition | None:
    if record.stage not in PRE_ANSWER_STAGES:
        return None

    detection = event.detection or DetectionResult.UNKNOWN
    if detection in VOICEMAIL_DETECTIONS:
        message = voicemail_message(record.query, ctx.caller_name, ctx.callback_number)
        return Transition(
            record=_finish(
                record, CallResult(outcome=CallOutcome.LEFT_MESSAGE, summary=VOICEMAIL_SUMMARY)
            ),
            commands=[CallCommand.speak(message)],
            hangup_after=ctx.voicemail_hangup_delay_seconds,
        )

    if detection == DetectionResult.FAX:
        return Transition(
            record=_finish(
                record, CallResult(outcome=CallOutcome.MACHINE_DETECTED, summary=FAX_SUMMARY)
            ),
            commands=[CallCommand(action=CommandAction.HANGUP)],
        )

    # Human, or a verdict we cannot trust: listen for a phone menu first
    return Transition(
        record=record.model_copy(
            update={"status": CallStatus.IN_PROGRESS, "stage": CallStage.MENU_PROBE}
        ),
        commands=[CallCommand.record(RecordingPurpose.MENU, ctx.ivr_probe_seconds)],
    )


def transition(record: CallRecord, event: CallEvent, ctx: CallContext) -> Transition | None:
    """Apply a webhook event to a call record.

    Args:
        record: Current call record
        event: Normalized webhook event
        ctx: Call settings

    Returns:
        The transition to commit, or None if the event is stale, duplicated
        or irrelevant in the record's current state
    """
    if record.is_terminal:
        return None

    if event.type == CallEventType.CALL_INITIATED:
        if record.stage != CallStage.DIALING:
            return None
        return Transition(
            record=record.model_copy(update={"stage": CallStage.RINGING}),
            commands=[CallCommand(action=CommandAction.ANSWER)],
        )

    if event.type == CallEventType.CALL_ANSWERED:
        if record.status != CallStatus.INITIATED:
            return None
        return Transition(
            record=record.model_copy(
                update={"status": CallStatus.IN_PROGRESS, "stage": CallStage.DETECTING}
            ),
            commands=[CallCommand(action=CommandAction.START_MACHINE_DETECTION)],
        )

    if event.type == CallEventType.MACHINE_DETECTION:
        return _on_detection(record, event, ctx)

    if event.type == CallEventType.RECORDING_STOPPED:
        if record.stage == CallStage.MENU_PROBE:
            return Transition(
                record=record.model_copy(update={"stage": CallStage.NAVIGATING}),
                follow_up=FollowUp.NAVIGATE_MENU,
            )
        if record.stage == CallStage.AWAITING_ANSWER:
            return Transition(
                record=record.model_copy(update={"stage": CallStage.CLASSIFYING}),
                follow_up=FollowUp.CLASSIFY_ANSWER,
            )
        return None

    if event.type == CallEventType.CALL_HANGUP:
        # The answer being classified completes the record; only note the hangup
        if record.stage == CallStage.CLASSIFYING:
            if record.hangup_received_at is not None:
                return None
            return Transition(
                record=record.model_copy(update={"hangup_received_at": datetime.now()}),
                expire_after=ctx.classification_timeout_seconds,
            )
        result = CallResult(outcome=CallOutcome.NO_RESERVATION_LINE, summary=HANGUP_SUMMARY)
        return Transition(record=_finish(record, result))

    return None


def expire_classification(
    record: CallRecord,
    ctx: CallContext,
    now: datetime | None = None,
) -> Transition | None:
    """Close out a hung-up call whose answer classification never finished."""
    if (
        record.is_terminal
        or record.stage != CallStage.CLASSIFYING
        or record.hangup_received_at is None
    ):
        return None
    waited = ((now or datetime.now()) - record.hangup_received_at).total_seconds()
    if waited < ctx.classification_timeout_seconds:
        return None

    result = CallResult(outcome=CallOutcome.NO_RESERVATION_LINE, summary=HANGUP_SUMMARY)
    return Transition(record=_finish(record, result))


def plan_question(
    record: CallRecord,
    digit: int,
    menu_transcript: str | None,
    ctx: CallContext,
) -> Transition | None:
    """After the menu probe: press the menu digit, ask, and record the answer."""
    if record.is_terminal or record.stage != CallStage.NAVIGATING:
        return None

    commands = []
    if digit:
        commands.append(CallCommand.send_digits(str(digit)))
    commands += [
        CallCommand.speak(reservation_question(record.query, ctx.caller_name)),
        CallCommand.record(
            RecordingPurpose.ANSWER, ctx.answer_max_seconds, ctx.answer_silence_seconds
        ),
    ]
    return Transition(
        record=record.model_copy(
            update={
                "stage": CallStage.AWAITING_ANSWER,
                "menu_transcript": menu_transcript or None,
                "menu_digit": digit or None,
            }
        ),
        commands=commands,
    )


def complete_call(
    record: CallRecord,
    transcript: str | None,
    result: CallResult,
    ctx: CallContext,
) -> Transition | None:
    """After classification: store the result, say goodbye and hang up."""
    if record.is_terminal or record.stage != CallStage.CLASSIFYING:
        return None

    opted_out = result.outcome == CallOutcome.OPT_OUT
    return Transition(
        record=_finish(record, result, transcript=transcript),
        commands=[CallCommand.speak(closing_remark(opted_out))],
        hangup_after=ctx.closing_hangup_delay_seconds,
        add_to_dnc=opted_out,
    )


class CallStateMachine:
    """Drives call records from dial to terminal outcome.

    One instance serves every call; events for the same call are serialized
    by a per-call lock, events for different calls run concurrently.
    Transcription and classification run outside the lock so that other
    events for the call (duplicates, hangup) are still handled meanwhile.
    """

    def __init__(
        self,
        store: ReservationStore,
        telephony: TelephonyClient,
        transcriber: Transcriber,
        classifier: CallClassifier,
        navigator: DigitSelector,
        dnc: DoNotCallRegistry,
        scheduler: Scheduler,
        context: CallContext,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.store = store
        self.telephony = telephony
        self.transcriber = transcriber
        self.classifier = classifier
        self.navigator = navigator
        self.dnc = dnc
        self.scheduler = scheduler
        self.context = context
        self.locks = locks or KeyedLocks()

    def _find_record(self, event: CallEvent) -> CallRecord | None:
        record = self.store.get_call(event.call_id) if event.call_id else None
        if record is None and event.call_control_id:
            record = self.store.find_call_by_control_id(event.call_control_id)
        return record

    async def handle_event(self, event: CallEvent) -> CallRecord | None:
        """Process one webhook event.

        Args:
            event: Normalized webhook event

        Returns:
            The call record after processing, or None for an unknown call
        """
        record = self._find_record(event)
        if record is None:
            logger.warning(
                f"Ignoring {event.type.value} for unknown call "
                f"(call_id={event.call_id}, control_id={event.call_control_id})"
            )
            return None

        async with self.locks.hold(record.id):
            record = self.store.get_call(record.id) or record
            if record.call_control_id is None and event.call_control_id:
                record = record.model_copy(update={"call_control_id": event.call_control_id})

            step = transition(record, event, self.context)
            if step is None:
                logger.info(
                    f"Ignoring {event.type.value} for call {record.id} "
                    f"({record.status.value}/{record.stage.value})"
                )
                return record
            record = await self._commit(step)

        if step.follow_up == FollowUp.NAVIGATE_MENU:
            return await self._navigate_menu(record, event.recording_url)
        if step.follow_up == FollowUp.CLASSIFY_ANSWER:
            return await self._classify_answer(record, event.recording_url)
        return record

    async def attach_control_id(self, call_id: str, call_control_id: str) -> CallRecord | None:
        """Record the provider call id once the dial request returns."""
        async with self.locks.hold(call_id):
            record = self.store.get_call(call_id)
            if record is None:
                return None
            if record.is_terminal or record.call_control_id == call_control_id:
                return record
            return self.store.save_call(
                record.model_copy(update={"call_control_id": call_control_id})
            )

    async def fail_dial(self, call_id: str, reason: str) -> CallRecord | None:
        """Close out a call whose placement request failed; no webhook will follow."""
        async with self.locks.hold(call_id):
            record = self.store.get_call(call_id)
            if record is None or record.is_terminal:
                return record
            result = CallResult(
                outcome=CallOutcome.NO_RESERVATION_LINE,
                summary=f"Could not place the call: {reason}",
            )
            record = _finish(record, result, status=CallStatus.FAILED)
            logger.warning(f"Call {call_id} to {record.phone_number} failed to dial: {reason}")
            return self.store.save_call(record)

    async def expire_stale(self, call_id: str, now: datetime | None = None) -> CallRecord | None:
        """Close out a hung-up call if its classification has stalled.

        Runs on a timer after the hangup, and again whenever the batch is
        polled, so a classification lost to a restart still ends the call.
        """
        async with self.locks.hold(call_id):
            record = self.store.get_call(call_id)
            if record is None:
                return None
            step = expire_classification(record, self.context, now)
            if step is None:
                return record
            logger.warning(f"Call {call_id} hung up and was never classified - closing it out")
            return await self._commit(step)

    async def _commit(self, step: Transition) -> CallRecord:
        record = self.store.save_call(step.record)
        logger.info(
            f"Call {record.id} ({record.restaurant_name}) -> "
            f"{record.status.value}/{record.stage.value}"
            + (f" [{record.result.outcome.value}]" if record.is_terminal else "")
        )

        if step.add_to_dnc:
            self.dnc.add(record.phone_number, record.restaurant_name)

        control_id = record.call_control_id
        if step.commands:
            await self._send(control_id, step.commands, record.id)
        if step.hangup_after is not None:
            hangup = [CallCommand(action=CommandAction.HANGUP)]
            self.scheduler.schedule(
                step.hangup_after, lambda: self._send(control_id, hangup, record.id)
            )
        if step.expire_after is not None:
            self.scheduler.schedule(step.expire_after, lambda: self.expire_stale(record.id))
        return record

    async def _send(
        self, call_control_id: str | None, commands: list[CallCommand], call_id: str
    ) -> None:
        """Issue commands without waiting on their outcome; failures are only logged."""
        actions = ", ".join(c.action.value for c in commands)
        if not call_control_id:
            logger.warning(f"Call {call_id} has no provider id - dropping {actions}")
            return
        try:
            await asyncio.to_thread(self.telephony.execute, call_control_id, commands, call_id)
        except Exception:
            logger.exception(f"Call control failed for {call_id} ({actions})")

    async def _transcribe(self, recording_url: str | None, call_id: str) -> str | None:
        if not recording_url:
            logger.warning(f"Recording for call {call_id} has no media reference")
            return None
        try:
            return await self.transcriber.transcribe(recording_url)
        except Exception:
            logger.exception(f"Transcription failed for call {call_id}")
            return None

    async def _navigate_menu(self, record: CallRecord, recording_url: str | None) -> CallRecord:
        menu_transcript = await self._transcribe(recording_url, record.id)
        digit = await self.navigator.select_digit(menu_transcript or "", record.query)

        async with self.locks.hold(record.id):
            current = self.store.get_call(record.id) or record
            step = plan_question(current, digit, menu_transcript, self.context)
            if step is None:
                logger.info(f"Call {record.id} moved on during menu navigation")
                return current
            return await self._commit(step)

    async def _classify_answer(self, record: CallRecord, recording_url: str | None) -> CallRecord:
        transcript = await self._transcribe(recording_url, record.id)
        if transcript is None:
            result = fallback_result()
        else:
            try:
                result = await self.classifier.classify(
                    transcript, record.query, record.restaurant_name
                )
            except Exception:
                logger.exception(f"Classification failed for call {record.id}")
                result = fallback_result()

        async with self.locks.hold(record.id):
            current = self.store.get_call(record.id) or record
            step = complete_call(current, transcript, result, self.context)
            if step is None:
                logger.info(f"Call {record.id} already closed - dropping classification")
                return current
            return await self._commit(step)
