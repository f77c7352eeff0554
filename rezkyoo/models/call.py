"""Outbound call data models: records, results, webhook events and commands."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rezkyoo.models.search import SearchQuery


class CallStatus(str, Enum):
    """Lifecycle status of a call. Only ever moves forward."""

    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.COMPLETED, CallStatus.FAILED)

    def can_advance_to(self, other: "CallStatus") -> bool:
        """Whether moving from this status to ``other`` keeps the order monotonic."""
        if self.is_terminal:
            return False
        return _STATUS_RANK[other] >= _STATUS_RANK[self]


_STATUS_RANK = {
    CallStatus.INITIATED: 0,
    CallStatus.IN_PROGRESS: 1,
    CallStatus.COMPLETED: 2,
    CallStatus.FAILED: 2,
}


class CallStage(str, Enum):
    """What the call is currently waiting for."""

    DIALING = "dialing"
    RINGING = "ringing"
    DETECTING = "detecting"
    MENU_PROBE = "menu_probe"
    NAVIGATING = "navigating"
    AWAITING_ANSWER = "awaiting_answer"
    CLASSIFYING = "classifying"
    ENDED = "ended"


class CallOutcome(str, Enum):
    """Interpreted outcome of a reservation call."""

    AVAILABLE = "available"
    ALTERNATIVE_OFFERED = "alternative_offered"
    CREDIT_CARD_REQUIRED = "credit_card_required"
    LEFT_MESSAGE = "left_message"
    OPT_OUT = "opt_out"
    NO_RESERVATION_LINE = "no_reservation_line"
    MACHINE_DETECTED = "machine_detected"
    OTHER = "other"
    PENDING = "pending"


class CallResult(BaseModel):
    """Structured result of a call."""

    outcome: CallOutcome = Field(default=CallOutcome.PENDING)
    summary: str = Field(default="Call in progress", description="Human-readable summary")
    credit_card_required: bool = Field(default=False)
    alternative_time: str | None = Field(None, description="Time offered instead")


class CallRecord(BaseModel):
    """State of one outbound call, owned by its call state machine."""

    id: str = Field(..., description="Internal call identifier")
    batch_id: str = Field(..., description="Owning batch")
    call_control_id: str | None = Field(None, description="Provider call identifier")
    place_id: str = Field(..., description="Called candidate")
    restaurant_name: str
    phone_number: str
    query: SearchQuery = Field(..., description="Search the call is made for")
    status: CallStatus = Field(default=CallStatus.INITIATED)
    stage: CallStage = Field(default=CallStage.DIALING)
    transcript: str | None = Field(None, description="Transcript of the answer")
    menu_transcript: str | None = Field(None, description="Transcript of the phone menu")
    menu_digit: int | None = Field(None, description="Digit pressed on the phone menu")
    result: CallResult = Field(default_factory=CallResult)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    ended_at: datetime | None = None
    hangup_received_at: datetime | None = Field(
        None, description="When the provider reported a hangup that could not be applied yet"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def status_item(self) -> dict[str, Any]:
        """Client-facing view used in batch status responses."""
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "placeId": self.place_id,
            "name": self.restaurant_name,
            "phone": self.phone_number,
            "status": self.status.value,
            "result": self.result.model_dump(mode="json"),
            "raw": self.transcript,
        }


class CallEventType(str, Enum):
    """Provider-neutral webhook event types."""

    CALL_INITIATED = "call.initiated"
    CALL_ANSWERED = "call.answered"
    MACHINE_DETECTION = "call.machine.detection.ended"
    RECORDING_STOPPED = "call.recording.saved"
    CALL_HANGUP = "call.hangup"


class DetectionResult(str, Enum):
    """Answering-machine detection verdicts."""

    HUMAN = "human"
    MACHINE = "machine"
    SILENCE = "silence"
    BEEP = "beep"
    FAX = "fax"
    UNKNOWN = "unknown"


class CallEvent(BaseModel):
    """A telephony webhook event, normalized from the provider payload."""

    model_config = ConfigDict(frozen=True)

    type: CallEventType
    call_control_id: str | None = Field(None, description="Provider call identifier")
    call_id: str | None = Field(None, description="Internal call id, when echoed back")
    detection: DetectionResult | None = None
    recording_url: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict, description="Raw payload")


class CommandAction(str, Enum):
    """Call-control commands the engine issues to the provider."""

    ANSWER = "answer"
    START_MACHINE_DETECTION = "start_machine_detection"
    SPEAK = "speak"
    START_RECORDING = "start_recording"
    STOP_RECORDING = "stop_recording"
    SEND_DIGITS = "send_digits"
    HANGUP = "hangup"


class RecordingPurpose(str, Enum):
    """Why a recording was started."""

    MENU = "menu"
    ANSWER = "answer"


class CallCommand(BaseModel):
    """A single call-control command."""

    model_config = ConfigDict(frozen=True)

    action: CommandAction
    text: str | None = None
    digits: str | None = None
    max_length: int | None = Field(None, description="Recording length cap in seconds")
    silence_timeout: int | None = Field(None, description="Trailing silence in seconds")
    purpose: RecordingPurpose | None = None

    @classmethod
    def speak(cls, text: str) -> "CallCommand":
        return cls(action=CommandAction.SPEAK, text=text)

    @classmethod
    def send_digits(cls, digits: str) -> "CallCommand":
        return cls(action=CommandAction.SEND_DIGITS, digits=digits)

    @classmethod
    def record(
        cls,
        purpose: RecordingPurpose,
        max_length: int,
        silence_timeout: int | None = None,
    ) -> "CallCommand":
        return cls(
            action=CommandAction.START_RECORDING,
            purpose=purpose,
            max_length=max_length,
            silence_timeout=silence_timeout,
        )
