"""Detection and sequential processing of anomalies."""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from .anomaly import Anomaly, AnomalyHandler, State, call_hook
from .config import Settings, get_settings
from .errors import InvalidParametersError, UsageError
from .events import EventChannel, Listener

logger = logging.getLogger(__name__)


class Processor:
    """Runs every registered handler's detector and works through the queue.

    Anomalies are processed one at a time in detection order. A failure
    reverts the anomaly and pauses it so the next call moves on; usage errors
    are caller bugs and propagate unchanged.
    """

    def __init__(
        self,
        handlers: Optional[List[AnomalyHandler]] = None,
        *,
        listener: Optional[Listener] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if handlers is None:
            handlers = []
        if not isinstance(handlers, list):
            raise InvalidParametersError("Processor handlers must be a list")
        self._handlers: List[AnomalyHandler] = handlers
        self._anomalies: List[Anomaly] = []
        self._settings = settings or get_settings()
        self.events = EventChannel(listener)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def handlers(self) -> List[AnomalyHandler]:
        return self._handlers

    @property
    def anomalies(self) -> List[Anomaly]:
        return self._anomalies

    def subscribe(
        self,
        callback: Listener,
        kinds: Optional[Iterable[str]] = None,
    ) -> Callable[[], None]:
        """Receive events of every anomaly while it is being processed."""

        return self.events.subscribe(callback, kinds)

    def anomalies_with_state(self, state: Union[State, str]) -> List[Anomaly]:
        target = State.parse(state)
        return [anomaly for anomaly in self._anomalies if anomaly.state is target]

    async def detect(self, system: Any, opts: Optional[Mapping[str, Any]] = None) -> List[Anomaly]:
        """Ask each handler whether it sees a problem and queue an anomaly if so.

        Returns the anomalies created by this call. Repeated calls create
        repeated anomalies; deduplication is left to the caller.
        """

        detected: List[Anomaly] = []
        for handler in self._handlers:
            if not await call_hook(handler.detect, system, opts):
                continue
            anomaly = Anomaly(
                handler,
                fingerprint_keys=getattr(handler, "fingerprint_keys", None),
                settings=self._settings,
            )
            with anomaly.events.forward_to(self.events):
                anomaly.log.info("Detected")
            logger.info("Detected anomaly %s (%s)", anomaly.name, anomaly.id)
            detected.append(anomaly)
        self._anomalies.extend(detected)
        return detected

    def next_eligible(self) -> Optional[Anomaly]:
        """Return the first anomaly that is in ``preaction`` and not paused."""

        for anomaly in self._anomalies:
            if anomaly.state is State.PREACTION and not anomaly.paused:
                return anomaly
        return None

    async def process_one(
        self,
        system: Any,
        opts: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Anomaly]:
        """Action and evaluate the next eligible anomaly.

        Returns the anomaly that was worked on, or ``None`` when nothing is
        eligible. On success the anomaly is ``resolved``. On failure it is
        reverted and paused; if the revert also fails it is paused and marked
        dirty because the system is in an unknown state.
        """

        anomaly = self.next_eligible()
        if anomaly is None:
            logger.debug("No eligible anomalies to process")
            return None

        logger.debug("Processing anomaly %s (%s)", anomaly.name, anomaly.id)
        with anomaly.events.forward_to(self.events):
            try:
                await anomaly.action(system, opts)
                await anomaly.evaluate(system, opts)
            except UsageError as err:
                anomaly.log.error(
                    f"process_one(): usage error while processing anomaly: {err}",
                    {"error": type(err).__name__},
                )
                raise
            except Exception as err:
                anomaly.log.error(
                    f"process_one(): exception thrown while processing anomaly: {err}",
                    {"error": type(err).__name__},
                )
                await self._recover(anomaly, err, system, opts)
        return anomaly

    async def process(
        self,
        system: Any,
        opts: Optional[Mapping[str, Any]] = None,
    ) -> List[Anomaly]:
        """Process eligible anomalies until none remain and return them in order."""

        processed: List[Anomaly] = []
        while True:
            anomaly = await self.process_one(system, opts)
            if anomaly is None:
                break
            processed.append(anomaly)
        logger.info(
            "Processed %d anomalies (%d resolved, %d paused)",
            len(processed),
            sum(1 for anomaly in processed if anomaly.state is State.RESOLVED),
            sum(1 for anomaly in processed if anomaly.paused),
        )
        return processed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _recover(
        self,
        anomaly: Anomaly,
        err: Exception,
        system: Any,
        opts: Optional[Mapping[str, Any]],
    ) -> None:
        try:
            await anomaly.revert(system, opts)
        except Exception as revert_err:
            logger.error(
                "Revert of anomaly %s (%s) failed: %s", anomaly.name, anomaly.id, revert_err
            )
            anomaly.pause(
                f"revert() failed after action() - anomaly is in unknown state (error: '{revert_err}')"
            )
            anomaly.dirty = True
            return
        anomaly.pause(str(err))


__all__ = ["Processor"]
