"""
GuardianShield — Primitives

Shared enums, base models, and checksums.
"""

from guardianshield.primitives.checksum import canonical_bytes, checksum, checksum_bytes, fnv1a64
from guardianshield.primitives.common import (
    DetectionKind,
    EnforcementAction,
    GuardBaseModel,
    Severity,
    clip,
    new_id,
    utc_now,
)

__all__ = [
    "DetectionKind",
    "EnforcementAction",
    "GuardBaseModel",
    "Severity",
    "canonical_bytes",
    "checksum",
    "checksum_bytes",
    "clip",
    "fnv1a64",
    "new_id",
    "utc_now",
]
