from __future__ import annotations

import re
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gnomalies import CallbackHandler, EventRecorder, Processor, State

SAD = "\U0001F614"
HAPPY = "\U0001F642"


async def has_lowercase(system, opts):
    return re.search(r"[a-z]", system["str"]) is not None


async def uppercase(anomaly, system, opts):
    system["str"] = system["str"].upper()


async def has_sad_face(system, opts):
    return SAD in system["str"]


async def cheer_up(anomaly, system, opts):
    system["str"] = system["str"].replace(SAD, HAPPY)


@pytest.mark.asyncio
async def test_lowercase_and_sad_faces_are_fixed():
    recorder = EventRecorder()
    processor = Processor(
        [
            CallbackHandler("EvilLowercase", detect=has_lowercase, action=uppercase),
            CallbackHandler("SadFace", detect=has_sad_face, action=cheer_up),
        ],
        listener=recorder,
    )
    system = {"str": f"Hello World {SAD}"}

    detected = await processor.detect(system)
    assert [anomaly.name for anomaly in detected] == ["EvilLowercase", "SadFace"]

    await processor.process(system)

    assert system["str"] == f"HELLO WORLD {HAPPY}"
    assert len(processor.anomalies_with_state(State.RESOLVED)) == 2
    assert recorder.counts()["activity"] == 8
