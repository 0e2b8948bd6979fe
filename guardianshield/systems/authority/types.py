"""
GuardianShield — Authority Type Definitions

Server-side records: players, tampering events, sync log entries, and
the results of verification and escalation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from guardianshield.primitives.common import (
    EnforcementAction,
    GuardBaseModel,
    Severity,
    clip,
    new_id,
    utc_now,
)

# Request string limits
MAX_TYPE_LEN = 50
MAX_ID_LEN = 100
MAX_APP_VERSION_LEN = 20


class ViolationEntry(GuardBaseModel):
    """One entry of a player's bounded tampering history."""

    timestamp: datetime = Field(default_factory=utc_now)
    invalid_values: bool = False
    reason: str | None = None
    type: str | None = None
    severity: Severity | None = None
    session_id: str | None = None


class PlayerRecord(GuardBaseModel):
    """
    Authoritative state of one player.

    ``is_banned`` is never cleared by the core. ``tampering_attempts`` only
    grows, except through an explicit reset.
    """

    player_id: str
    device_id: str
    created: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)
    game_data: dict[str, Any] = Field(default_factory=dict)
    tampering_attempts: int = Field(0, ge=0)
    is_banned: bool = False
    last_sync: datetime | None = None
    ban_timestamp: datetime | None = None
    tampering: list[ViolationEntry] = Field(default_factory=list)

    def public_view(self) -> dict[str, Any]:
        """Management view with the device id and history stripped."""
        return {
            "playerId": self.player_id,
            "created": self.created.isoformat(),
            "lastSeen": self.last_seen.isoformat(),
            "gameData": self.game_data,
            "tamperingAttempts": self.tampering_attempts,
            "isBanned": self.is_banned,
            "banTimestamp": self.ban_timestamp.isoformat() if self.ban_timestamp else None,
        }


class TamperingEvent(GuardBaseModel):
    """An immutable, sanitised client tampering report."""

    model_config = {"populate_by_name": True, "from_attributes": True, "frozen": True}

    id: str = Field(default_factory=new_id)
    server_timestamp: datetime = Field(default_factory=utc_now)
    client_timestamp: str | None = None
    severity: Severity = Severity.UNKNOWN
    type: str = "unknown"
    device_id: str = "unknown"
    player_id: str | None = None
    session_id: str | None = None
    app_version: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_untrusted(cls, body: dict[str, Any]) -> TamperingEvent:
        """Build an event from a raw request body, clipping and defaulting every field."""
        now = utc_now()
        raw_ts = body.get("timestamp")
        details = body.get("details")
        return cls(
            server_timestamp=now,
            client_timestamp=raw_ts if isinstance(raw_ts, str) else now.isoformat(),
            severity=Severity.parse(body.get("severity")),
            type=clip(body.get("type"), MAX_TYPE_LEN, "unknown") or "unknown",
            device_id=clip(body.get("deviceId"), MAX_ID_LEN, "unknown") or "unknown",
            player_id=clip(body.get("playerId"), MAX_ID_LEN) or None,
            session_id=clip(body.get("sessionId"), MAX_ID_LEN),
            app_version=clip(body.get("appVersion"), MAX_APP_VERSION_LEN),
            details=details if isinstance(details, dict) else {},
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "serverTimestamp": self.server_timestamp.isoformat(),
            "clientTimestamp": self.client_timestamp,
            "severity": str(self.severity),
            "type": self.type,
            "deviceId": self.device_id,
            "playerId": self.player_id,
            "sessionId": self.session_id,
            "appVersion": self.app_version,
            "details": self.details,
        }


class SyncLogEntry(GuardBaseModel):
    """A successful sync, as recorded in the per-player sync log."""

    player_id: str
    session_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    values: dict[str, Any] = Field(default_factory=dict)
    status: str = "success"
    checksum: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "playerId": self.player_id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "values": self.values,
            "status": self.status,
            "checksum": self.checksum,
        }


class VerificationResult(GuardBaseModel):
    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> VerificationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> VerificationResult:
        return cls(valid=False, reason=reason)


class EscalationOutcome(GuardBaseModel):
    """What the escalator decided, and the record it decided on (if any)."""

    action: EnforcementAction
    record: PlayerRecord | None = None
    newly_banned: bool = False

    @property
    def is_ban(self) -> bool:
        return self.action == EnforcementAction.BAN
