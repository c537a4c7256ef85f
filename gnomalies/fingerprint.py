"""Content fingerprints of a system snapshot."""
from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from cryptography.hazmat.primitives import hashes

from .errors import UnknownKeysError, UsageError
from .keys import ValueKind, canonical_value, extract

DEFAULT_ALGORITHM = "sha256"

_ALGORITHMS = {
    "sha256": hashes.SHA256,
    "sha3_256": hashes.SHA3_256,
}


def canonical_payload(system: Any, keys: Optional[Iterable[str]] = None) -> bytes:
    """Serialize the fingerprinted leaves of ``system`` to canonical bytes.

    Function leaves are skipped. Leaves are ordered by ``fullname`` before
    serialization, so the native insertion order of the system never affects
    the result. When ``keys`` is given, only those paths are kept and every
    requested path has to exist.
    """

    extracted = sorted(key for key in extract(system) if key.kind is not ValueKind.FUNCTION)

    wanted = list(dict.fromkeys(keys or ()))
    if wanted:
        available = {key.fullname for key in extracted}
        missing = [name for name in wanted if name not in available]
        if missing:
            raise UnknownKeysError(missing)
        selected = set(wanted)
        extracted = [key for key in extracted if key.fullname in selected]

    pairs = [[key.fullname, canonical_value(key.value, key.kind)] for key in extracted]
    return json.dumps(pairs, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def fingerprint(
    system: Any,
    keys: Optional[Iterable[str]] = None,
    *,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Return the hex digest of :func:`canonical_payload` for ``system``."""

    try:
        algorithm_cls = _ALGORITHMS[algorithm]
    except KeyError as exc:
        raise UsageError(f"Unsupported fingerprint algorithm: {algorithm}") from exc

    digest = hashes.Hash(algorithm_cls())
    digest.update(canonical_payload(system, keys))
    return digest.finalize().hex()


def supported_algorithms() -> tuple[str, ...]:
    return tuple(_ALGORITHMS)


__all__ = ["DEFAULT_ALGORITHM", "canonical_payload", "fingerprint", "supported_algorithms"]
