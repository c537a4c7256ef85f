"""Anomaly lifecycle: detect, act, evaluate and, on failure, revert."""
from __future__ import annotations

import inspect
import logging
import re
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from pydantic import ValidationError

from .config import Settings, get_settings
from .errors import (
    DetectNotImplementedError,
    InvalidParametersError,
    InvalidStateError,
    MissingSystemError,
    ReversionIncompleteError,
    UnknownStateError,
    UsageError,
)
from .events import ActivityEvent, EventChannel, Listener, LogEvent, PauseEvent, ResumeEvent, StateEvent
from .fingerprint import fingerprint
from .keys import KeyDiff, diff, snapshot
from .models import AnomalyRecord, Fingerprints, HistoryEntry

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class State(str, Enum):
    """Lifecycle states of an anomaly."""

    PREACTION = "preaction"
    POSTACTION = "postaction"
    RESOLVED = "resolved"

    @classmethod
    def parse(cls, value: Union["State", str]) -> "State":
        """Return the matching state or raise :class:`InvalidStateError`."""

        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidStateError(f"Invalid state: {value}") from exc


Hook = Callable[..., Union[Any, Awaitable[Any]]]


@runtime_checkable
class AnomalyHandler(Protocol):
    """Behaviour of one kind of anomaly.

    Hooks may be plain functions or coroutine functions and signal failure by
    raising. ``detect`` decides whether a new anomaly should be queued.
    """

    name: str
    description: str
    fingerprint_keys: Optional[Sequence[str]]

    def detect(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    def perform_action(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    def perform_revert(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    def perform_evaluate(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        ...


class BaseHandler:
    """Handler with no-op hooks. Subclasses must at least provide :meth:`detect`."""

    name: str = ""
    description: str = ""
    fingerprint_keys: Optional[Sequence[str]] = None

    def __init__(
        self,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        fingerprint_keys: Optional[Sequence[str]] = None,
    ) -> None:
        self.name = name or self.name or type(self).__name__
        self.description = description if description is not None else self.description
        if fingerprint_keys is not None:
            self.fingerprint_keys = tuple(fingerprint_keys)

    def detect(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        raise DetectNotImplementedError(f"{self.name}.detect() not implemented - please override me!")

    def perform_action(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        return None

    def perform_revert(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        return None

    def perform_evaluate(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class CallbackHandler(BaseHandler):
    """Handler assembled from plain callables instead of a subclass.

    ``detect`` receives ``(system, opts)``; ``action``, ``revert`` and
    ``evaluate`` receive ``(anomaly, system, opts)``.
    """

    def __init__(
        self,
        name: str,
        *,
        detect: Optional[Hook] = None,
        action: Optional[Hook] = None,
        revert: Optional[Hook] = None,
        evaluate: Optional[Hook] = None,
        description: str = "",
        fingerprint_keys: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(name=name, description=description, fingerprint_keys=fingerprint_keys)
        self._detect = detect
        self._action = action
        self._revert = revert
        self._evaluate = evaluate

    def detect(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        if self._detect is None:
            return super().detect(system, opts)
        return self._detect(system, opts)

    def perform_action(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        if self._action is None:
            return None
        return self._action(anomaly, system, opts)

    def perform_revert(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        if self._revert is None:
            return None
        return self._revert(anomaly, system, opts)

    def perform_evaluate(self, anomaly: "Anomaly", system: Any, opts: Optional[Mapping[str, Any]] = None) -> Any:
        if self._evaluate is None:
            return None
        return self._evaluate(anomaly, system, opts)


async def call_hook(hook: Hook, *args: Any) -> Any:
    """Call ``hook`` and await the result when it is awaitable."""

    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class AnomalyLog:
    """``anomaly.log.info(...)`` style access to an anomaly's history."""

    def __init__(self, anomaly: "Anomaly") -> None:
        self._anomaly = anomaly

    def debug(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._anomaly._record("debug", message, data)

    def info(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._anomaly._record("info", message, data)

    def warn(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._anomaly._record("warn", message, data)

    def error(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._anomaly._record("error", message, data)


class Anomaly:
    """One detected deficiency and its auditable lifecycle.

    The anomaly fingerprints the system before and after the handler's action
    so that a later revert can tell "nothing changed" apart from "the action
    changed something that must be undone", and can verify the undo.
    """

    def __init__(
        self,
        handler: Optional[AnomalyHandler] = None,
        *,
        id: Optional[str] = None,
        description: Optional[str] = None,
        state: Union[State, str] = State.PREACTION,
        paused: bool = False,
        dirty: bool = False,
        fingerprint_keys: Optional[Sequence[str]] = None,
        fingerprints: Optional[Mapping[str, Optional[str]]] = None,
        history: Optional[List[Mapping[str, Any]]] = None,
        listener: Optional[Listener] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.handler: AnomalyHandler = handler if handler is not None else BaseHandler()

        try:
            record = AnomalyRecord.model_validate(
                {
                    "id": id,
                    "description": description,
                    "state": state.value if isinstance(state, State) else state,
                    "paused": paused,
                    "dirty": dirty,
                    "fingerprint_keys": fingerprint_keys,
                    "fingerprints": fingerprints,
                    "history": history if history is not None else [],
                }
            )
        except ValidationError as exc:
            raise InvalidParametersError(f"Invalid anomaly parameters: {exc}") from exc

        self._settings = settings or get_settings()
        self._id = record.id or str(uuid.uuid4())
        self._name = getattr(self.handler, "name", "") or type(self.handler).__name__
        self._description = (
            record.description
            if record.description is not None
            else getattr(self.handler, "description", "")
        )
        self._state = State(record.state)
        self._paused = record.paused
        self._dirty = record.dirty
        self._fingerprint_keys: Optional[Tuple[str, ...]] = (
            tuple(record.fingerprint_keys) if record.fingerprint_keys else None
        )
        self._fingerprints: Dict[str, Optional[str]] = record.fingerprints.model_dump()
        self._history: List[Dict[str, Any]] = [entry.model_dump() for entry in record.history]

        self.events = EventChannel(listener)
        self.log = AnomalyLog(self)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def state(self) -> State:
        return self._state

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def dirty(self) -> bool:
        return self._dirty

    @dirty.setter
    def dirty(self, value: bool) -> None:
        value = bool(value)
        if value:
            self.log.error("Marked dirty: reversion could not restore the preaction fingerprint")
        elif self._dirty:
            self.log.info("Dirty flag cleared")
        self._dirty = value

    @property
    def fingerprint_keys(self) -> Optional[Tuple[str, ...]]:
        return self._fingerprint_keys

    @property
    def fingerprints(self) -> Fingerprints:
        return Fingerprints(**self._fingerprints)

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def iterations(self, state: Union[State, str] = State.POSTACTION) -> int:
        """Count how many times this anomaly has transitioned into ``state``."""

        target = State.parse(state)
        pattern = re.compile(rf"^Changing state from \w+ to {target.value}$", re.IGNORECASE)
        return sum(1 for entry in self._history if pattern.match(entry["message"]))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def fingerprint(self, system: Any) -> str:
        """Fingerprint ``system`` restricted to this anomaly's fingerprint keys."""

        return fingerprint(
            system,
            self._fingerprint_keys,
            algorithm=self._settings.fingerprint_algorithm,
        )

    async def action(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> None:
        """Run the handler's action, recording fingerprints on both sides of it.

        A failing action still records a postaction fingerprint and leaves
        the anomaly in ``postaction`` before re-raising, because the system
        may have been partially changed.
        """

        self._require_system(system, "action")
        if self._state is not State.PREACTION:
            message = "Cannot action an anomaly not in a preaction state"
            self.log.error(message, {"state": self._state.value})
            raise InvalidStateError(message)

        self._activity("action", 0)
        try:
            before = self._observe(system)
            self._fingerprints["preaction"] = self._observe_fingerprint(system)
            self._fingerprints["postaction"] = None
            self.log.debug("Preaction fingerprint recorded", {"fingerprint": self._fingerprints["preaction"]})

            try:
                await call_hook(self.handler.perform_action, self, system, opts)
            except Exception as exc:
                changes = self._record_postaction(system, before)
                self.log.error(
                    f"Action failed: {exc}",
                    {
                        "error": type(exc).__name__,
                        "fingerprint": self._fingerprints["postaction"],
                        "changes": changes.as_dict(),
                    },
                )
                raise

            changes = self._record_postaction(system, before)
            self.log.info(
                f"Action complete ({len(changes.changed)} keys changed)",
                {"fingerprint": self._fingerprints["postaction"], "changes": changes.as_dict()},
            )
        finally:
            self._activity("action", 100)

    async def evaluate(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> None:
        """Run the handler's evaluation and resolve the anomaly if it passes."""

        if self._state is not State.POSTACTION:
            message = "Cannot evaluate an anomaly not in a postaction state"
            self.log.error(message, {"state": self._state.value})
            raise InvalidStateError(message)

        self._activity("evaluate", 0)
        try:
            try:
                await call_hook(self.handler.perform_evaluate, self, system, opts)
            except Exception as exc:
                self.log.error(f"Evaluation failed: {exc}", {"error": type(exc).__name__})
                raise
            self._set_state(State.RESOLVED)
            self.log.info("Resolved")
        finally:
            self._activity("evaluate", 100)

    async def revert(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> None:
        """Undo the action and return to ``preaction``.

        If the system still matches the preaction fingerprint nothing stuck
        and the handler's revert hook is skipped. Otherwise the system has to
        match the postaction fingerprint before the hook runs, and the
        preaction fingerprint afterwards.
        """

        self._require_system(system, "revert")
        self._activity("revert", 0)
        try:
            preaction = self._fingerprints["preaction"]
            postaction = self._fingerprints["postaction"]
            current = self._observe_fingerprint(system)

            if current == preaction:
                self.log.info("System matches preaction fingerprint; nothing to revert")
                self._set_state(State.PREACTION)
                return

            if current != postaction:
                message = (
                    f"Unable to revert - current fingerprint {current} "
                    f"does not match postaction fingerprint {postaction}"
                )
                self.log.error(message, {"current": current, "preaction": preaction, "postaction": postaction})
                raise UnknownStateError(message)

            try:
                await call_hook(self.handler.perform_revert, self, system, opts)
            except Exception as exc:
                self.log.error(f"Revert failed: {exc}", {"error": type(exc).__name__})
                raise

            restored = self._observe_fingerprint(system)
            if restored != preaction:
                message = (
                    f"Reversion incomplete - fingerprint {restored} "
                    f"does not match preaction fingerprint {preaction}"
                )
                self.log.error(message, {"current": restored, "preaction": preaction})
                raise ReversionIncompleteError(message)

            self._set_state(State.PREACTION)
            self.log.info("Reverted")
        finally:
            self._activity("revert", 100)

    def pause(self, reason: str) -> None:
        self._paused = True
        self.log.warn(f"Paused because: {reason}", {"reason": reason})
        self.events.emit(PauseEvent(anomaly=self, reason=reason))

    def resume(self, reason: str) -> None:
        self._paused = False
        self.log.info(f"Resumed because: {reason}", {"reason": reason})
        self.events.emit(ResumeEvent(anomaly=self, reason=reason))

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_record(self) -> AnomalyRecord:
        return AnomalyRecord(
            id=self._id,
            name=self._name,
            description=self._description,
            state=self._state.value,
            paused=self._paused,
            dirty=self._dirty,
            fingerprint_keys=list(self._fingerprint_keys) if self._fingerprint_keys else None,
            fingerprints=Fingerprints(**self._fingerprints),
            history=[HistoryEntry(**entry) for entry in self._history],
        )

    def as_dict(self, keys: Optional[Iterable[str]] = None) -> dict[str, object]:
        """Return the serialization envelope, optionally limited to ``keys``."""

        return self.to_record().model_dump(include=self._envelope_fields(keys))

    def to_json(self, keys: Optional[Iterable[str]] = None) -> str:
        return self.to_record().model_dump_json(include=self._envelope_fields(keys))

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        handler: Optional[AnomalyHandler] = None,
        **kwargs: Any,
    ) -> "Anomaly":
        """Restore an anomaly from :meth:`as_dict` output.

        The stored ``name`` is informational; the handler determines it.
        """

        if not isinstance(payload, Mapping):
            raise InvalidParametersError("Anomaly payload must be a mapping")
        try:
            record = AnomalyRecord.model_validate(dict(payload))
        except ValidationError as exc:
            raise InvalidParametersError(f"Invalid anomaly payload: {exc}") from exc
        return cls._from_record(record, handler, **kwargs)

    @classmethod
    def from_json(cls, text: str, handler: Optional[AnomalyHandler] = None, **kwargs: Any) -> "Anomaly":
        try:
            record = AnomalyRecord.model_validate_json(text)
        except ValidationError as exc:
            raise InvalidParametersError(f"Invalid anomaly payload: {exc}") from exc
        return cls._from_record(record, handler, **kwargs)

    @classmethod
    def _from_record(cls, record: AnomalyRecord, handler: Optional[AnomalyHandler], **kwargs: Any) -> "Anomaly":
        params = record.model_dump(exclude={"name"})
        params.update(kwargs)
        return cls(handler, **params)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _envelope_fields(keys: Optional[Iterable[str]]) -> Optional[set[str]]:
        if keys is None:
            return None
        selected = set(keys)
        unknown = selected.difference(AnomalyRecord.model_fields)
        if unknown:
            raise InvalidParametersError(f"Unknown serialization keys: {', '.join(sorted(unknown))}")
        return selected

    def _record(self, type_: str, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        entry = HistoryEntry(type=type_, message=message, data=dict(data or {})).model_dump()
        self._history.append(entry)
        if self._settings.mirror_history:
            logger.log(_LOG_LEVELS[type_], "%s (%s): %s", self._name, self._id, message)
        self.events.emit(LogEvent(anomaly=self, type=type_, message=message, data=entry["data"]))

    def _set_state(self, state: Union[State, str]) -> None:
        new_state = State.parse(state)
        if new_state is self._state:
            return
        old_state = self._state
        self.log.debug(f"Changing state from {old_state.value} to {new_state.value}")
        self._state = new_state
        self.events.emit(StateEvent(anomaly=self, old_state=old_state.value, new_state=new_state.value))

    def _activity(self, activity: str, progress: int) -> None:
        self.events.emit(ActivityEvent(anomaly=self, activity=activity, progress=progress))

    def _require_system(self, system: Any, operation: str) -> None:
        if system is None:
            message = f"{operation}() requires a system"
            self.log.error(message)
            raise MissingSystemError(message)

    def _observe(self, system: Any) -> Dict[str, Any]:
        try:
            return snapshot(system)
        except UsageError as exc:
            self.log.error(f"Unable to read system: {exc}", {"error": type(exc).__name__})
            raise

    def _record_postaction(self, system: Any, before: Dict[str, Any]) -> KeyDiff:
        """Fingerprint the system after the action hook and move to ``postaction``.

        The hook has already run, so a system that can no longer be
        fingerprinted is an unknown state rather than a caller bug.
        """

        try:
            self._fingerprints["postaction"] = self.fingerprint(system)
            changes = diff(before, snapshot(system))
        except UsageError as exc:
            self._fingerprints["postaction"] = None
            self._set_state(State.POSTACTION)
            message = f"Unable to fingerprint system after action: {exc}"
            self.log.error(message, {"error": type(exc).__name__})
            raise UnknownStateError(message) from exc
        self._set_state(State.POSTACTION)
        return changes

    def _observe_fingerprint(self, system: Any) -> str:
        try:
            return self.fingerprint(system)
        except UsageError as exc:
            self.log.error(f"Unable to fingerprint system: {exc}", {"error": type(exc).__name__})
            raise

    def __str__(self) -> str:
        return f"Anomaly {self._name} ({self._id}) {{ state: {self._state.value} }}"

    def __repr__(self) -> str:
        return (
            f"Anomaly(name={self._name!r}, id={self._id!r}, state={self._state.value!r}, "
            f"paused={self._paused!r}, dirty={self._dirty!r})"
        )


__all__ = [
    "Anomaly",
    "AnomalyHandler",
    "AnomalyLog",
    "BaseHandler",
    "CallbackHandler",
    "State",
    "call_hook",
]
