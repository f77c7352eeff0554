"""Data models for the RezKyoo system."""

from rezkyoo.models.batch import (
    Batch,
    BatchPage,
    BatchProgress,
    BatchStatus,
    DoNotCallEntry,
)
from rezkyoo.models.call import (
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
from rezkyoo.models.restaurant import (
    Candidate,
    DayTime,
    GeoPoint,
    OpeningHours,
    OpeningPeriod,
)
from rezkyoo.models.search import (
    DiningPreferences,
    SearchIntent,
    SearchPreferences,
    SearchQuery,
)

__all__ = [
    "Batch",
    "BatchPage",
    "BatchProgress",
    "BatchStatus",
    "CallCommand",
    "CallEvent",
    "CallEventType",
    "CallOutcome",
    "CallRecord",
    "CallResult",
    "CallStage",
    "CallStatus",
    "Candidate",
    "CommandAction",
    "DayTime",
    "DetectionResult",
    "DiningPreferences",
    "DoNotCallEntry",
    "GeoPoint",
    "OpeningHours",
    "OpeningPeriod",
    "RecordingPurpose",
    "SearchIntent",
    "SearchPreferences",
    "SearchQuery",
]
