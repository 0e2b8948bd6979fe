"""
GuardianShield — Violation Escalator

Turns violations into enforcement. Per player:

  Active --violation, count < threshold--> Active (count + 1)   -> warn
  Active --violation, count >= threshold--> Suspended            -> ban

Suspended is terminal for the core. Counting goes through the store's
atomic ``increment_violation`` so concurrent reports never lose a count,
and ``mark_banned`` stamps ``ban_timestamp`` exactly once.

Direct client reports with severity ``critical`` ban unconditionally.
Reports are not deduplicated: resubmitting one counts twice.
"""

from __future__ import annotations

import structlog

from guardianshield.config import EscalationConfig
from guardianshield.primitives.common import EnforcementAction, Severity, utc_now
from guardianshield.systems.authority.errors import PlayerNotFound
from guardianshield.systems.authority.store import PlayerRecordStore
from guardianshield.systems.authority.types import (
    EscalationOutcome,
    PlayerRecord,
    TamperingEvent,
    ViolationEntry,
)

logger = structlog.get_logger().bind(system="authority", component="escalator")


class ViolationEscalator:
    def __init__(self, store: PlayerRecordStore, config: EscalationConfig) -> None:
        self._store = store
        self._config = config
        self._warnings = 0
        self._bans = 0

    @property
    def threshold(self) -> int:
        return self._config.max_tampering_attempts

    async def record_violation(
        self,
        record: PlayerRecord,
        reason: str,
        session_id: str | None = None,
    ) -> EscalationOutcome:
        """Count one failed verification against ``record``'s player."""
        entry = ViolationEntry(
            timestamp=utc_now(),
            invalid_values=True,
            reason=reason,
            session_id=session_id,
        )
        updated = await self._store.increment_violation(
            record.player_id, entry, self._config.tampering_history_limit
        )
        if updated is None:
            raise PlayerNotFound(record.player_id)
        return await self._decide(updated, reason=reason)

    async def record_direct_tampering_report(self, event: TamperingEvent) -> EscalationOutcome:
        """
        Append a client report to the tampering log and, when it names a
        known player, count it against them.
        """
        await self._store.append_tampering_event(event)
        logger.warning(
            "tampering_reported",
            event_id=event.id,
            severity=event.severity,
            type=event.type,
            device_id=event.device_id,
            player_id=event.player_id,
        )

        critical = event.severity == Severity.CRITICAL
        updated: PlayerRecord | None = None
        if event.player_id:
            entry = ViolationEntry(
                timestamp=event.server_timestamp,
                type=event.type,
                severity=event.severity,
                session_id=event.session_id,
            )
            updated = await self._store.increment_violation(
                event.player_id, entry, self._config.tampering_history_limit
            )

        if updated is None:
            # Anonymous or unknown player: only the severity decides
            if critical:
                self._bans += 1
                return EscalationOutcome(action=EnforcementAction.BAN)
            self._warnings += 1
            return EscalationOutcome(action=EnforcementAction.WARN)

        return await self._decide(updated, reason=f"client report: {event.type}", force_ban=critical)

    async def reset_violations(self, player_id: str) -> PlayerRecord:
        """Clear the counter. A suspension stays in place."""
        updated = await self._store.reset_violations(player_id)
        if updated is None:
            raise PlayerNotFound(player_id)
        logger.info("violations_reset", player_id=player_id, is_banned=updated.is_banned)
        return updated

    async def _decide(
        self,
        record: PlayerRecord,
        reason: str,
        force_ban: bool = False,
    ) -> EscalationOutcome:
        if not force_ban and not record.is_banned and record.tampering_attempts < self.threshold:
            self._warnings += 1
            logger.warning(
                "violation_recorded",
                player_id=record.player_id,
                attempts=record.tampering_attempts,
                threshold=self.threshold,
                reason=reason,
            )
            return EscalationOutcome(action=EnforcementAction.WARN, record=record)

        banned_at = utc_now()
        newly = await self._store.mark_banned(record.player_id, banned_at)
        if newly:
            record = record.model_copy(update={"is_banned": True, "ban_timestamp": banned_at})
            self._bans += 1
            logger.warning(
                "player_banned",
                player_id=record.player_id,
                attempts=record.tampering_attempts,
                reason=reason,
            )
        else:
            record = record.model_copy(update={"is_banned": True})
        return EscalationOutcome(action=EnforcementAction.BAN, record=record, newly_banned=newly)

    @property
    def stats(self) -> dict[str, int]:
        return {"warnings": self._warnings, "bans": self._bans}
