"""Structural key extraction for nested aggregates."""
from __future__ import annotations

import dataclasses
import numbers
from collections.abc import Mapping, Sequence, Set
from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, List, Optional, Tuple

from .errors import ExtractionError


class ValueKind(str, Enum):
    """Runtime type tag of a value found inside a system."""

    OBJECT = "object"
    ARRAY = "array"
    MAP = "map"
    SET = "set"
    FUNCTION = "function"
    DATE = "date"
    NULL = "null"
    UNDEFINED = "undefined"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"

    @property
    def is_aggregate(self) -> bool:
        return self in _AGGREGATE_KINDS


_AGGREGATE_KINDS = frozenset({ValueKind.OBJECT, ValueKind.ARRAY, ValueKind.MAP, ValueKind.SET})


def classify(value: Any) -> ValueKind:
    """Return the :class:`ValueKind` of ``value``.

    Scalars are tested first so that strings and bytes never count as
    sequences. Anything left over that is not callable is an ``object``
    whose members are its instance attributes (possibly none).
    """

    if value is None:
        return ValueKind.NULL
    if value is dataclasses.MISSING:
        return ValueKind.UNDEFINED
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, numbers.Number):
        return ValueKind.NUMBER
    if isinstance(value, (str, bytes, bytearray)):
        return ValueKind.STRING
    if isinstance(value, (date, time)):
        return ValueKind.DATE
    if isinstance(value, Mapping):
        return ValueKind.MAP
    if isinstance(value, Set):
        return ValueKind.SET
    if isinstance(value, Sequence):
        return ValueKind.ARRAY
    if callable(value):
        return ValueKind.FUNCTION
    return ValueKind.OBJECT


@total_ordering
@dataclass(frozen=True, eq=False)
class Key:
    """A terminal location inside a nested aggregate, addressed by a dotted path."""

    name: str
    kind: ValueKind
    path: str = ""
    value: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ValueKind(self.kind))
        object.__setattr__(self, "path", self.path or "")

    @property
    def fullname(self) -> str:
        return f"{self.path}.{self.name}" if self.path else self.name

    @property
    def can_have_keys(self) -> bool:
        return self.kind.is_aggregate

    @staticmethod
    def compare(a: "Key", b: "Key") -> int:
        """Three-way comparison of two keys by ``fullname``."""

        if not isinstance(a, Key) or not isinstance(b, Key):
            raise TypeError("Key.compare() expects two Key instances")
        if a.fullname < b.fullname:
            return -1
        if a.fullname > b.fullname:
            return 1
        return 0

    def compare_to(self, other: "Key") -> int:
        return Key.compare(self, other)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.fullname == other.fullname

    def __lt__(self, other: "Key") -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.fullname < other.fullname

    def __hash__(self) -> int:
        return hash(self.fullname)

    def __str__(self) -> str:
        return f"'{self.fullname}' -> {self.kind.value}"

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "path": self.path,
            "fullname": self.fullname,
            "type": self.kind.value,
        }


def extract(obj: Any) -> List[Key]:
    """Flatten ``obj`` into the list of its leaf keys.

    Mappings are read with stringified keys, so ``0`` and ``"0"`` address the
    same location and the later entry wins. Sets are read as sequences in a
    canonical element order. A nested aggregate with no members is reported
    as a leaf of its own kind instead of disappearing.
    """

    kind = classify(obj)
    if not kind.is_aggregate:
        raise ExtractionError(
            f"Unable to extract keys from a {kind.value} value; expected an object, array, map or set"
        )
    keys: List[Key] = []
    _extract(obj, kind, keys, None, set())
    return keys


def _extract(
    obj: Any,
    kind: ValueKind,
    keys: List[Key],
    parent: Optional[Key],
    ancestors: set[int],
) -> None:
    members = _members(obj, kind)
    if parent is not None and not members:
        keys.append(Key(parent.name, kind, parent.path, obj))
        return

    marker = id(obj)
    if marker in ancestors:
        location = parent.fullname if parent is not None else "<root>"
        raise ExtractionError(f"Circular reference detected at '{location}'")
    ancestors.add(marker)
    try:
        prefix = parent.fullname if parent is not None else ""
        for name, value in members:
            child_kind = classify(value)
            child = Key(name, child_kind, prefix, value)
            if child.can_have_keys:
                _extract(value, child_kind, keys, child, ancestors)
            else:
                keys.append(child)
    finally:
        ancestors.discard(marker)


def _members(obj: Any, kind: ValueKind) -> List[Tuple[str, Any]]:
    if kind is ValueKind.MAP:
        return list({str(name): value for name, value in obj.items()}.items())
    if kind is ValueKind.ARRAY:
        return [(str(index), value) for index, value in enumerate(obj)]
    if kind is ValueKind.SET:
        ordered = sorted(obj, key=_set_order)
        return [(str(index), value) for index, value in enumerate(ordered)]
    try:
        attributes = vars(obj)
    except TypeError:
        return []
    return [(str(name), value) for name, value in attributes.items()]


def _set_order(value: Any) -> Tuple[str, str]:
    return type(value).__name__, repr(canonical_value(value))


def canonical_value(value: Any, kind: Optional[ValueKind] = None) -> Any:
    """Return a JSON-compatible rendering of a leaf value."""

    kind = kind or classify(value)
    if kind in (ValueKind.NULL, ValueKind.UNDEFINED):
        return None
    if kind is ValueKind.STRING:
        return value.hex() if isinstance(value, (bytes, bytearray)) else value
    if kind is ValueKind.NUMBER:
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, complex):
            return [value.real, value.imag]
        # Decimal, Fraction and friends keep their exact text form
        return str(value)
    if kind is ValueKind.DATE:
        return value.isoformat()
    if kind is ValueKind.ARRAY:
        return [canonical_value(item) for item in value]
    if kind is ValueKind.SET:
        return [canonical_value(item) for item in sorted(value, key=_set_order)]
    if kind is ValueKind.MAP:
        return {str(name): canonical_value(item) for name, item in value.items()}
    if kind is ValueKind.FUNCTION:
        return getattr(value, "__qualname__", type(value).__qualname__)
    if kind is ValueKind.OBJECT:
        try:
            attributes = vars(value)
        except TypeError:
            return {}
        return {str(name): canonical_value(item) for name, item in attributes.items()}
    return value


@dataclass(frozen=True)
class KeyDiff:
    """Leaf paths that differ between two snapshots."""

    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    modified: Tuple[str, ...] = ()

    @property
    def changed(self) -> Tuple[str, ...]:
        return tuple(sorted(set(self.added) | set(self.removed) | set(self.modified)))

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": list(self.modified),
        }


def snapshot(obj: Any) -> Dict[str, Any]:
    """Capture ``{fullname: canonical value}`` for every non-function leaf of ``obj``."""

    return {
        key.fullname: canonical_value(key.value, key.kind)
        for key in sorted(extract(obj))
        if key.kind is not ValueKind.FUNCTION
    }


def diff(before: Mapping[str, Any], after: Mapping[str, Any]) -> KeyDiff:
    """Compare two snapshots produced by :func:`snapshot`."""

    added = sorted(name for name in after if name not in before)
    removed = sorted(name for name in before if name not in after)
    modified = sorted(
        name for name in before if name in after and before[name] != after[name]
    )
    return KeyDiff(added=tuple(added), removed=tuple(removed), modified=tuple(modified))


__all__ = [
    "Key",
    "KeyDiff",
    "ValueKind",
    "canonical_value",
    "classify",
    "diff",
    "extract",
    "snapshot",
]
