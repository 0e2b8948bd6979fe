"""
GuardianShield — Sync Protocol Messages

Wire models shared by the client transport and the HTTP routers.
Field names are camelCase on the wire and snake_case in Python.
"""

from __future__ import annotations

import enum
import math
from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from guardianshield.primitives.common import EnforcementAction, GuardBaseModel, Severity

GameValues = dict[str, Any]


class _Wire(GuardBaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SyncStatus(enum.StrEnum):
    VALID = "valid"
    INVALID = "invalid"


# ─── Tampering Reports ────────────────────────────────────────────


class TamperingReport(_Wire):
    """Client-originated tampering report (fire-and-forget)."""

    type: str
    severity: Severity = Severity.UNKNOWN
    device_id: str = "unknown"
    player_id: str | None = None
    session_id: str | None = None
    app_version: str | None = None
    timestamp: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class TamperingAck(_Wire):
    """Server answer to a tampering report."""

    message: str
    action: EnforcementAction
    request_id: str
    duration: int | None = None


# ─── Registration ─────────────────────────────────────────────────


def _bounded_id(value: str, name: str) -> str:
    if not value or len(value) > 100:
        raise ValueError(f"Invalid {name}")
    return value


def _has_non_finite(value: Any) -> bool:
    """True when a NaN or infinity appears anywhere inside ``value``."""
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, dict):
        return any(_has_non_finite(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(_has_non_finite(v) for v in value)
    return False


class RegisterPlayerRequest(_Wire):
    player_id: str = Field(..., strict=True)
    device_id: str = Field(..., strict=True)
    initial_data: GameValues | None = None

    @field_validator("player_id")
    @classmethod
    def _player_id(cls, value: str) -> str:
        return _bounded_id(value, "player ID")

    @field_validator("device_id")
    @classmethod
    def _device_id(cls, value: str) -> str:
        return _bounded_id(value, "device ID")

    @field_validator("initial_data", mode="before")
    @classmethod
    def _initial_data(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return None
        if _has_non_finite(value):
            raise ValueError("Invalid initial data")
        return value


class RegisterPlayerResponse(_Wire):
    message: str
    player_id: str


# ─── Value Sync ───────────────────────────────────────────────────


class SyncRequest(_Wire):
    player_id: str = Field(..., strict=True)
    session_id: str | None = None
    game_values: GameValues
    client_timestamp: Any = None  # ISO-8601 string, epoch ms, or datetime
    checksum: str | None = None

    @field_validator("player_id")
    @classmethod
    def _player_id(cls, value: str) -> str:
        return _bounded_id(value, "player ID")

    @field_validator("game_values")
    @classmethod
    def _game_values(cls, value: GameValues) -> GameValues:
        if _has_non_finite(value):
            raise ValueError("Invalid game values")
        return value


class SyncResult(_Wire):
    """Server answer to a value sync."""

    status: SyncStatus
    server_timestamp: datetime | None = None
    verified_values: GameValues | None = None
    message: str | None = None
    reason: str | None = None
    server_values: GameValues | None = None
    action: EnforcementAction | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == SyncStatus.VALID

    @property
    def authoritative_values(self) -> GameValues | None:
        """Values the client mirror should adopt, if any."""
        if self.is_valid:
            return self.verified_values
        return self.server_values
