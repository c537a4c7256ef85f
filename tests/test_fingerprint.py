from __future__ import annotations

import hashlib
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gnomalies.errors import UnknownKeysError, UsageError
from gnomalies.fingerprint import canonical_payload, fingerprint, supported_algorithms


def build_system():
    return {
        "test": "test",
        "count": 3,
        "nested": {"inner": [1, 2, {"deep": True}]},
        "meta": SimpleNamespace(owner="ops", empty={}),
    }


def test_fingerprint_is_stable_for_unmodified_system():
    system = build_system()

    first = fingerprint(system)
    second = fingerprint(system)

    assert first == second
    assert len(first) == 64
    assert first == first.lower()
    int(first, 16)


def test_fingerprint_ignores_insertion_order():
    left = {"a": 1, "b": {"x": 1, "y": 2}}
    right = {"b": {"y": 2, "x": 1}, "a": 1}

    assert fingerprint(left) == fingerprint(right)


def test_fingerprint_matches_sha256_of_canonical_payload():
    system = {"b": "two", "a": 1}

    payload = canonical_payload(system)

    assert json.loads(payload) == [["a", 1], ["b", "two"]]
    assert fingerprint(system) == hashlib.sha256(payload).hexdigest()


@pytest.mark.parametrize(
    "mutate",
    [
        lambda system: system.__setitem__("test", "modified"),
        lambda system: system["nested"]["inner"].append(4),
        lambda system: setattr(system["meta"], "owner", "dev"),
        lambda system: system["meta"].empty.update({"now": "filled"}),
    ],
)
def test_mutating_any_leaf_changes_the_fingerprint(mutate):
    system = build_system()
    before = fingerprint(system)

    mutate(system)

    assert fingerprint(system) != before


def test_restricted_keys_ignore_other_leaves():
    system = build_system()
    keys = ["test", "nested.inner.0"]
    before = fingerprint(system, keys)

    system["count"] = 99
    system["meta"].owner = "dev"
    assert fingerprint(system, keys) == before

    system["test"] = "modified"
    assert fingerprint(system, keys) != before


def test_empty_key_list_means_all_keys():
    system = build_system()

    assert fingerprint(system, []) == fingerprint(system)
    assert fingerprint(system, None) == fingerprint(system)


def test_duplicate_restricted_keys_are_ignored():
    system = build_system()

    assert fingerprint(system, ["test", "test"]) == fingerprint(system, ["test"])


def test_unknown_restricted_keys_name_every_missing_path():
    system = build_system()

    with pytest.raises(UnknownKeysError) as excinfo:
        fingerprint(system, ["test", "nope", "nested.missing"])

    assert excinfo.value.missing == ("nope", "nested.missing")
    assert "nope" in str(excinfo.value)
    assert "nested.missing" in str(excinfo.value)
    assert isinstance(excinfo.value, UsageError)


def test_function_leaves_do_not_affect_the_fingerprint():
    system = {"value": 1, "callback": len}
    before = fingerprint(system)

    system["callback"] = print

    assert fingerprint(system) == before


def test_sha3_algorithm_is_selectable():
    system = build_system()

    assert "sha3_256" in supported_algorithms()
    digest = fingerprint(system, algorithm="sha3_256")

    assert len(digest) == 64
    assert digest != fingerprint(system)
    assert digest == hashlib.sha3_256(canonical_payload(system)).hexdigest()


def test_unknown_algorithm_is_a_usage_error():
    with pytest.raises(UsageError, match="Unsupported fingerprint algorithm"):
        fingerprint({"a": 1}, algorithm="md5")
