"""
GuardianShield — Shield Types

Data types for client-side detection: probe results and the cheat
detection events raised by the LocalGuardian.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from guardianshield.primitives.common import (
    DetectionKind,
    GuardBaseModel,
    Severity,
    new_id,
    utc_now,
)


class DetectionResult(GuardBaseModel):
    """Outcome of one probe run."""

    detected: bool = False
    kind: DetectionKind | None = None
    confidence: Severity = Severity.LOW
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def clean(cls) -> DetectionResult:
        return cls(detected=False)


class CheatDetectionEvent(GuardBaseModel):
    """A positive detection surfaced by a guardian cycle."""

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    kind: DetectionKind
    severity: Severity
    source: str  # probe name or container key
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_severe(self) -> bool:
        return self.severity in (Severity.HIGH, Severity.CRITICAL)
