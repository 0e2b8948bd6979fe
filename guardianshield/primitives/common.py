"""
GuardianShield — Common Primitives

Shared enums, base classes, and utilities used by the client shield,
the sync protocol, and the server authority.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def clip(value: object, limit: int, default: str | None = None) -> str | None:
    """Return ``value`` truncated to ``limit`` characters, or ``default`` for non-strings."""
    if isinstance(value, str):
        return value[:limit]
    return default


# ─── Enums ────────────────────────────────────────────────────────


class Severity(enum.StrEnum):
    """How serious a detection or report is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> Severity:
        """Map arbitrary client input onto a severity; anything unrecognised is UNKNOWN."""
        if isinstance(raw, str):
            try:
                return cls(raw.strip().lower())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


class EnforcementAction(enum.StrEnum):
    """Action hint returned to the client with every enforcement decision."""

    WARN = "warn"
    BAN = "ban"


class DetectionKind(enum.StrEnum):
    """Classification of a client-side detection."""

    MEMORY_TAMPERING = "memory_tampering"
    VALUE_TAMPERING = "value_tampering"
    TOOL_DETECTED = "tool_detected"
    DEBUGGER_DETECTED = "debugger_detected"
    EMULATOR_DETECTED = "emulator_detected"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"


# ─── Base Models ──────────────────────────────────────────────────


class GuardBaseModel(BaseModel):
    """Base model for all GuardianShield primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}
