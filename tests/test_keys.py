from __future__ import annotations

import dataclasses
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gnomalies.errors import ExtractionError, UsageError
from gnomalies.keys import Key, ValueKind, canonical_value, classify, diff, extract, snapshot


def fullnames(keys):
    return [key.fullname for key in keys]


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, ValueKind.NULL),
        (dataclasses.MISSING, ValueKind.UNDEFINED),
        (True, ValueKind.BOOLEAN),
        (3, ValueKind.NUMBER),
        (2.5, ValueKind.NUMBER),
        (Decimal("1.10"), ValueKind.NUMBER),
        ("text", ValueKind.STRING),
        (b"raw", ValueKind.STRING),
        (date(2024, 1, 1), ValueKind.DATE),
        (datetime(2024, 1, 1, 12, 0), ValueKind.DATE),
        ({}, ValueKind.MAP),
        ([], ValueKind.ARRAY),
        ((1, 2), ValueKind.ARRAY),
        ({1, 2}, ValueKind.SET),
        (frozenset(), ValueKind.SET),
        (len, ValueKind.FUNCTION),
        (lambda: None, ValueKind.FUNCTION),
        (SimpleNamespace(a=1), ValueKind.OBJECT),
        (object(), ValueKind.OBJECT),
    ],
)
def test_classify_tags_values(value, expected):
    assert classify(value) is expected


def test_extract_flat_mapping():
    keys = extract({"a": 1, "b": "two"})

    assert fullnames(keys) == ["a", "b"]
    assert [key.kind for key in keys] == [ValueKind.NUMBER, ValueKind.STRING]
    assert all(key.path == "" for key in keys)


def test_empty_nested_mapping_is_a_single_leaf():
    keys = extract({"a_map": {}})

    assert len(keys) == 1
    assert keys[0].fullname == "a_map"
    assert keys[0].kind is ValueKind.MAP


def test_populated_nested_mapping_yields_child_leaves_only():
    keys = extract({"a_map": {"x": 1, "y": 2}})

    assert fullnames(keys) == ["a_map.x", "a_map.y"]
    assert "a_map" not in fullnames(keys)
    assert keys[0].path == "a_map"


def test_nested_arrays_objects_and_sets():
    system = {
        "list": [10, [20, 30]],
        "obj": SimpleNamespace(name="n", inner=SimpleNamespace(flag=False)),
        "tags": {"b", "a"},
        "empty_list": [],
        "empty_obj": SimpleNamespace(),
    }

    keys = {key.fullname: key for key in extract(system)}

    assert set(keys) == {
        "list.0",
        "list.1.0",
        "list.1.1",
        "obj.name",
        "obj.inner.flag",
        "tags.0",
        "tags.1",
        "empty_list",
        "empty_obj",
    }
    assert keys["tags.0"].value == "a"
    assert keys["tags.1"].value == "b"
    assert keys["empty_list"].kind is ValueKind.ARRAY
    assert keys["empty_obj"].kind is ValueKind.OBJECT
    assert keys["obj.inner.flag"].kind is ValueKind.BOOLEAN


def test_mapping_keys_are_stringified_and_last_wins():
    keys = extract({0: "int", "0": "str", 1: "one"})

    assert fullnames(keys) == ["0", "1"]
    assert keys[0].value == "str"


def test_slotless_object_is_a_leaf():
    marker = object()
    keys = extract({"marker": marker})

    assert len(keys) == 1
    assert keys[0].kind is ValueKind.OBJECT
    assert keys[0].value is marker


def test_extract_rejects_scalars():
    with pytest.raises(ExtractionError):
        extract("not an aggregate")

    assert issubclass(ExtractionError, UsageError)


def test_extract_detects_cycles():
    system = {"a": {}}
    system["a"]["self"] = system

    with pytest.raises(ExtractionError, match="Circular reference"):
        extract(system)


def test_shared_references_are_not_cycles():
    shared = {"x": 1}
    keys = extract({"left": shared, "right": shared})

    assert fullnames(keys) == ["left.x", "right.x"]


def test_key_ordering_and_equality_use_fullname():
    a = Key("a", ValueKind.NUMBER, "root", 1)
    b = Key("b", ValueKind.STRING, "root", "x")
    same_as_a = Key("a", "string", "root", "different")

    assert Key.compare(a, b) == -1
    assert Key.compare(b, a) == 1
    assert Key.compare(a, same_as_a) == 0
    assert a.compare_to(b) == -1
    assert a == same_as_a
    assert sorted([b, a]) == [a, b]
    assert hash(a) == hash(same_as_a)
    assert same_as_a.kind is ValueKind.STRING


def test_key_compare_rejects_other_types():
    with pytest.raises(TypeError):
        Key.compare(Key("a", ValueKind.NULL), "a")


def test_key_can_have_keys_and_rendering():
    key = Key("items", ValueKind.ARRAY, "system")

    assert key.can_have_keys
    assert not Key("n", ValueKind.NUMBER).can_have_keys
    assert str(key) == "'system.items' -> array"
    assert key.as_dict() == {
        "name": "items",
        "path": "system",
        "fullname": "system.items",
        "type": "array",
    }


def test_canonical_value_renders_json_compatible_values():
    assert canonical_value(b"\x01\xff") == "01ff"
    assert canonical_value(Decimal("1.10")) == "1.10"
    assert canonical_value(1 + 2j) == [1.0, 2.0]
    assert canonical_value(date(2024, 5, 6)) == "2024-05-06"
    assert canonical_value(dataclasses.MISSING) is None
    assert canonical_value({3, 1, 2}) == [1, 2, 3]
    assert canonical_value(SimpleNamespace(a=[1])) == {"a": [1]}


def test_snapshot_skips_functions_and_diff_reports_changes():
    system = {"a": 1, "b": {"c": "x"}, "fn": len}
    before = snapshot(system)

    assert before == {"a": 1, "b.c": "x"}

    system["a"] = 2
    del system["b"]
    system["d"] = None
    changes = diff(before, snapshot(system))

    assert changes.added == ("d",)
    assert changes.removed == ("b.c",)
    assert changes.modified == ("a",)
    assert changes.changed == ("a", "b.c", "d")
    assert changes


def test_diff_of_identical_snapshots_is_empty():
    state = snapshot({"a": [1, 2]})

    changes = diff(state, dict(state))

    assert not changes
    assert changes.as_dict() == {"added": [], "removed": [], "modified": []}
