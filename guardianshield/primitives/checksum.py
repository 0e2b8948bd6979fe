"""
GuardianShield — Value Checksums

Fast, deterministic, non-cryptographic fingerprints of serialized values.
Used for cheap local tamper signalling and for sync payload fingerprints.
Not a security boundary: authority always lives on the server.
"""

from __future__ import annotations

from typing import Any

import orjson

FNV64_OFFSET = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF

_DUMP_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS


def fnv1a64(data: bytes, seed: int = FNV64_OFFSET) -> int:
    h = seed & _MASK64
    for b in data:
        h ^= b
        h = (h * FNV64_PRIME) & _MASK64
    return h


def _fallback(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).hex()
    return repr(obj)


def canonical_bytes(value: Any) -> bytes:
    """Serialize ``value`` with sorted keys so equal values always encode identically."""
    return orjson.dumps(value, default=_fallback, option=_DUMP_OPTIONS)


def checksum(value: Any) -> str:
    """16 hex digit FNV-1a fingerprint of ``value``'s canonical serialization."""
    return f"{fnv1a64(canonical_bytes(value)):016x}"


def checksum_bytes(data: bytes | bytearray | memoryview) -> str:
    """Fingerprint of a raw byte region."""
    return f"{fnv1a64(bytes(data)):016x}"
