from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gnomalies.anomaly import Anomaly
from gnomalies.events import (
    EVENT_KINDS,
    ActivityEvent,
    EventChannel,
    EventRecorder,
    LogEvent,
    PauseEvent,
    StateEvent,
)


def test_subscribe_and_unsubscribe():
    channel = EventChannel()
    received = []
    unsubscribe = channel.subscribe(received.append)
    anomaly = Anomaly(id="a-1")

    channel.emit(PauseEvent(anomaly=anomaly, reason="first"))
    unsubscribe()
    unsubscribe()
    channel.emit(PauseEvent(anomaly=anomaly, reason="second"))

    assert [event.reason for event in received] == ["first"]
    assert len(channel) == 0


def test_kind_filtering():
    channel = EventChannel()
    states = []
    channel.subscribe(states.append, kinds=["state"])
    anomaly = Anomaly()

    channel.emit(LogEvent(anomaly=anomaly, message="ignored"))
    channel.emit(StateEvent(anomaly=anomaly, old_state="preaction", new_state="postaction"))

    assert len(states) == 1
    assert states[0].kind == "state"


def test_unknown_kinds_are_rejected():
    with pytest.raises(ValueError, match="Unknown event kinds"):
        EventChannel().subscribe(print, kinds=["state", "explode"])


def test_forward_to_is_scoped():
    source = EventChannel()
    target = EventChannel()
    recorder = EventRecorder()
    target.subscribe(recorder)
    anomaly = Anomaly()

    with source.forward_to(target):
        source.emit(ActivityEvent(anomaly=anomaly, activity="action", progress=0))
    source.emit(ActivityEvent(anomaly=anomaly, activity="action", progress=100))

    assert [event.progress for event in recorder.events] == [0]
    assert len(source) == 0


def test_listener_passed_at_construction():
    recorder = EventRecorder()
    anomaly = Anomaly(listener=recorder)

    anomaly.pause("because")

    assert recorder.counts() == {"log": 1, "pause": 1}
    assert recorder.of_kind("pause")[0].anomaly is anomaly


def test_event_payloads():
    anomaly = Anomaly(id="abc")

    assert EVENT_KINDS == ("log", "state", "pause", "resume", "activity")
    assert LogEvent(anomaly=anomaly, type="warn", message="m", data={"k": 1}).as_dict() == {
        "event": "log",
        "anomaly": "abc",
        "name": "BaseHandler",
        "type": "warn",
        "message": "m",
        "data": {"k": 1},
    }
    assert StateEvent(anomaly=anomaly, old_state="a", new_state="b").as_dict()["new_state"] == "b"
    assert ActivityEvent(anomaly=anomaly, activity="revert", progress=100).as_dict()["progress"] == 100
