"""Pydantic models describing the persisted anomaly envelope."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_STATES = ("preaction", "postaction", "resolved")
LOG_TYPES = ("debug", "info", "warn", "error")


def utc_timestamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class HistoryEntry(BaseModel):
    """One append-only record in an anomaly's history."""

    timestamp: str = Field(default_factory=utc_timestamp, description="ISO-8601 UTC timestamp")
    type: str = Field(default="info", description="debug, info, warn or error")
    message: str = Field(default="", description="Human readable message")
    data: Dict[str, Any] = Field(default_factory=dict, description="Structured context")

    model_config = ConfigDict(extra="allow")

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        if value not in LOG_TYPES:
            raise ValueError(f"Invalid log type: {value}")
        return value


class Fingerprints(BaseModel):
    """Pre- and post-action content hashes of the system."""

    preaction: Optional[str] = None
    postaction: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class AnomalyRecord(BaseModel):
    """Serialization envelope for an anomaly.

    The constructor of :class:`gnomalies.anomaly.Anomaly` validates its
    parameters through this model and :meth:`Anomaly.as_dict` emits it.
    """

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    state: str = "preaction"
    paused: bool = False
    dirty: bool = False
    fingerprint_keys: Optional[List[str]] = None
    fingerprints: Fingerprints = Field(default_factory=Fingerprints)
    history: List[HistoryEntry] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("state")
    @classmethod
    def _known_state(cls, value: str) -> str:
        if value not in ALLOWED_STATES:
            raise ValueError(f"Invalid state: {value}")
        return value

    @field_validator("history", "fingerprint_keys", mode="before")
    @classmethod
    def _require_list(cls, value: Any) -> Any:
        if value is not None and not isinstance(value, (list, tuple)):
            raise ValueError(f"Expected a list, got {type(value).__name__}")
        return value

    @field_validator("fingerprints", mode="before")
    @classmethod
    def _default_fingerprints(cls, value: Any) -> Any:
        return {} if value is None else value


__all__ = ["ALLOWED_STATES", "AnomalyRecord", "Fingerprints", "HistoryEntry", "LOG_TYPES", "utc_timestamp"]
