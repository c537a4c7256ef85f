"""gnomalies core exports."""

from .anomaly import Anomaly, AnomalyHandler, BaseHandler, CallbackHandler, State
from .config import Settings, configure_logging, get_settings
from .errors import (
    DetectNotImplementedError,
    ExtractionError,
    FatalError,
    GnomaliesError,
    InvalidParametersError,
    InvalidStateError,
    MissingSystemError,
    NominalError,
    ReversionIncompleteError,
    UnknownKeysError,
    UnknownStateError,
    UsageError,
)
from .events import (
    ActivityEvent,
    AnomalyEvent,
    EventChannel,
    EventRecorder,
    LogEvent,
    PauseEvent,
    ResumeEvent,
    StateEvent,
)
from .fingerprint import fingerprint
from .keys import Key, KeyDiff, ValueKind, diff, extract, snapshot
from .processor import Processor

__all__ = [
    "ActivityEvent",
    "Anomaly",
    "AnomalyEvent",
    "AnomalyHandler",
    "BaseHandler",
    "CallbackHandler",
    "DetectNotImplementedError",
    "EventChannel",
    "EventRecorder",
    "ExtractionError",
    "FatalError",
    "GnomaliesError",
    "InvalidParametersError",
    "InvalidStateError",
    "Key",
    "KeyDiff",
    "LogEvent",
    "MissingSystemError",
    "NominalError",
    "PauseEvent",
    "Processor",
    "ResumeEvent",
    "ReversionIncompleteError",
    "Settings",
    "State",
    "StateEvent",
    "UnknownKeysError",
    "UnknownStateError",
    "UsageError",
    "ValueKind",
    "configure_logging",
    "diff",
    "extract",
    "fingerprint",
    "get_settings",
    "snapshot",
]
