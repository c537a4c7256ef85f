"""Lifecycle events and the explicit channel used to deliver them."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .anomaly import Anomaly

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnomalyEvent:
    """Base payload for every event raised by an anomaly."""

    kind: ClassVar[str] = "event"

    anomaly: "Anomaly"

    def as_dict(self) -> dict[str, object]:
        return {"event": self.kind, "anomaly": self.anomaly.id, "name": self.anomaly.name}


@dataclass(frozen=True)
class LogEvent(AnomalyEvent):
    """A history entry was recorded."""

    kind: ClassVar[str] = "log"

    type: str = "info"
    message: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        payload = super().as_dict()
        payload.update({"type": self.type, "message": self.message, "data": dict(self.data)})
        return payload


@dataclass(frozen=True)
class StateEvent(AnomalyEvent):
    """The anomaly moved between lifecycle states."""

    kind: ClassVar[str] = "state"

    old_state: str = ""
    new_state: str = ""

    def as_dict(self) -> dict[str, object]:
        payload = super().as_dict()
        payload.update({"old_state": self.old_state, "new_state": self.new_state})
        return payload


@dataclass(frozen=True)
class PauseEvent(AnomalyEvent):
    kind: ClassVar[str] = "pause"

    reason: str = ""

    def as_dict(self) -> dict[str, object]:
        payload = super().as_dict()
        payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class ResumeEvent(AnomalyEvent):
    kind: ClassVar[str] = "resume"

    reason: str = ""

    def as_dict(self) -> dict[str, object]:
        payload = super().as_dict()
        payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class ActivityEvent(AnomalyEvent):
    """Start (0) or end (100) of an action, evaluate or revert phase."""

    kind: ClassVar[str] = "activity"

    activity: str = ""
    progress: int = 0

    def as_dict(self) -> dict[str, object]:
        payload = super().as_dict()
        payload.update({"activity": self.activity, "progress": self.progress})
        return payload


EVENT_KINDS: Tuple[str, ...] = (
    LogEvent.kind,
    StateEvent.kind,
    PauseEvent.kind,
    ResumeEvent.kind,
    ActivityEvent.kind,
)

Listener = Callable[[AnomalyEvent], None]


class EventChannel:
    """Delivers events to callbacks registered explicitly by their owners."""

    def __init__(self, listener: Optional[Listener] = None) -> None:
        self._subscribers: List[Tuple[Listener, Optional[frozenset[str]]]] = []
        if listener is not None:
            self.subscribe(listener)

    def subscribe(
        self,
        callback: Listener,
        kinds: Optional[Iterable[str]] = None,
    ) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it again.

        ``kinds`` restricts delivery to the named event kinds; ``None``
        delivers everything.
        """

        selected = None
        if kinds is not None:
            selected = frozenset(kinds)
            unknown = selected.difference(EVENT_KINDS)
            if unknown:
                raise ValueError(f"Unknown event kinds: {', '.join(sorted(unknown))}")
        entry = (callback, selected)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event: AnomalyEvent) -> None:
        for callback, selected in list(self._subscribers):
            if selected is not None and event.kind not in selected:
                continue
            callback(event)

    @contextmanager
    def forward_to(self, other: "EventChannel") -> Iterator["EventChannel"]:
        """Re-emit every event of this channel on ``other`` inside the block."""

        unsubscribe = self.subscribe(other.emit)
        try:
            yield self
        finally:
            unsubscribe()

    def __len__(self) -> int:
        return len(self._subscribers)


class EventRecorder:
    """Listener that keeps every event it receives, grouped by kind."""

    def __init__(self) -> None:
        self.events: List[AnomalyEvent] = []

    def __call__(self, event: AnomalyEvent) -> None:
        logger.debug("Recorded %s event for anomaly %s", event.kind, event.anomaly.id)
        self.events.append(event)

    def of_kind(self, kind: str) -> List[AnomalyEvent]:
        return [event for event in self.events if event.kind == kind]

    def counts(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for event in self.events:
            totals[event.kind] = totals.get(event.kind, 0) + 1
        return totals


__all__ = [
    "ActivityEvent",
    "AnomalyEvent",
    "EVENT_KINDS",
    "EventChannel",
    "EventRecorder",
    "Listener",
    "LogEvent",
    "PauseEvent",
    "ResumeEvent",
    "StateEvent",
]
