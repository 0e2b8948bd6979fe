"""
GuardianShield — Value Verifier

Decides whether a proposed set of game values is physically reachable
from the stored record in the time the client claims has passed.

Rules, first failure wins:
  1. health above the cap without a health powerup
  2. health regenerating faster than the regen rate
  3. coins growing faster than ``max_coins_per_minute``
  4. xp growing faster than ``max_xp_per_minute``

A bound is only checked when both the stored and the proposed value
exist. Reaching a bound exactly is allowed. The verifier never mutates
the record.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from guardianshield.config import GameRulesConfig
from guardianshield.primitives.checksum import checksum
from guardianshield.primitives.common import utc_now
from guardianshield.systems.authority.types import PlayerRecord, VerificationResult

logger = structlog.get_logger().bind(system="authority", component="verifier")

_BOUNDED = ("health", "coins", "xp")


def parse_client_timestamp(raw: Any) -> datetime | None:
    """ISO-8601 string, epoch milliseconds, or datetime. None when unparsable."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _is_number(value: Any) -> bool:
    """Finite int or float. Bools, NaN and infinities do not count."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _fmt(delta: float) -> str:
    return str(int(delta)) if float(delta).is_integer() else f"{delta:g}"


def _has_health_powerup(proposed: dict[str, Any]) -> bool:
    powerups = proposed.get("powerups")
    return isinstance(powerups, (list, tuple, set)) and "health" in powerups


class ValueVerifier:
    """Pure plausibility check for reported game values."""

    def __init__(self, rules: GameRulesConfig) -> None:
        self._rules = rules

    def verify(
        self,
        record: PlayerRecord,
        proposed: dict[str, Any],
        client_timestamp: Any,
        declared_checksum: str | None = None,
        now: datetime | None = None,
    ) -> VerificationResult:
        stored = record.game_data
        if not stored:
            return VerificationResult.ok()

        now = now or utc_now()
        client_ts = parse_client_timestamp(client_timestamp)
        if client_ts is None:
            return VerificationResult.reject("Invalid client timestamp")
        if client_ts > now + timedelta(seconds=self._rules.max_future_skew_s):
            return VerificationResult.reject("Client timestamp is too far in the future")

        if self._rules.enforce_payload_checksum and declared_checksum != checksum(proposed):
            return VerificationResult.reject("Checksum mismatch")

        for name in _BOUNDED:
            if name in proposed and name in stored and not _is_number(proposed[name]):
                return VerificationResult.reject(f"{name} must be numeric")

        baseline = record.last_sync or record.created
        elapsed = max(0.0, (client_ts - baseline).total_seconds()) / 60.0
        minutes = f"{elapsed:.2f}"

        if "health" in proposed and _is_number(stored.get("health")):
            new_health = proposed["health"]
            old_health = stored["health"]
            max_health = stored.get("maxHealth") or self._rules.default_max_health
            powerup = _has_health_powerup(proposed)

            if new_health > max_health and not powerup:
                return VerificationResult.reject("Health exceeds maximum allowed value")

            regen = stored.get("healthRegenRate") or self._rules.default_health_regen_rate
            if (
                new_health > old_health
                and old_health < max_health
                and new_health > old_health + regen * elapsed
                and not powerup
            ):
                return VerificationResult.reject(
                    f"Health increased too fast ({_fmt(new_health - old_health)} in {minutes} minutes)"
                )

        if "coins" in proposed and _is_number(stored.get("coins")):
            delta = proposed["coins"] - stored["coins"]
            if delta > self._rules.max_coins_per_minute * elapsed:
                return VerificationResult.reject(
                    f"Coins increased too fast ({_fmt(delta)} in {minutes} minutes)"
                )

        if "xp" in proposed and _is_number(stored.get("xp")):
            delta = proposed["xp"] - stored["xp"]
            if delta > self._rules.max_xp_per_minute * elapsed:
                return VerificationResult.reject(
                    f"XP increased too fast ({_fmt(delta)} in {minutes} minutes)"
                )

        return VerificationResult.ok()
