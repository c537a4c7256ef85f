"""Error taxonomy for anomaly processing."""
from __future__ import annotations

from typing import Iterable, Optional


class GnomaliesError(RuntimeError):
    """Base error for everything raised by the anomaly core."""

    criticality: Optional[str] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NominalError(GnomaliesError):
    """Raised by handlers for an ordinary failure the processor may recover from."""

    criticality = "nominal"


class FatalError(GnomaliesError):
    """Raised when processing must stop and the anomaly needs manual review."""

    criticality = "fatal"


class UsageError(FatalError):
    """Base error for caller bugs and violated preconditions."""


class InvalidStateError(UsageError):
    """Raised for an unknown state name or an operation invalid in the current state."""


class InvalidParametersError(UsageError):
    """Raised when construction parameters fail validation."""


class MissingSystemError(UsageError):
    """Raised when a lifecycle method is called without a system."""


class DetectNotImplementedError(UsageError):
    """Raised when a handler does not provide a detection predicate."""


class ExtractionError(UsageError):
    """Raised when keys cannot be extracted from a value."""


class UnknownKeysError(UsageError):
    """Raised when restricted fingerprint keys are absent from the system."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(
            "Fingerprint keys not found in system: " + ", ".join(self.missing)
        )


class UnknownStateError(FatalError):
    """Raised when the system matches neither recorded fingerprint during a revert."""


class ReversionIncompleteError(FatalError):
    """Raised when a revert finished without restoring the pre-action fingerprint."""


__all__ = [
    "DetectNotImplementedError",
    "ExtractionError",
    "FatalError",
    "GnomaliesError",
    "InvalidParametersError",
    "InvalidStateError",
    "MissingSystemError",
    "NominalError",
    "ReversionIncompleteError",
    "UnknownKeysError",
    "UnknownStateError",
    "UsageError",
]
