"""
GuardianShield — Authority Service

The server-side entry point used by the HTTP routers. Owns the store,
the verifier, and the escalator, and enforces the ordering rules:

  - one player's sync runs under that player's store lock
  - suspended players are rejected before any verification
  - a failed verification is escalated exactly once
  - a valid sync merges values, stamps ``last_sync`` and logs the sync
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog

from guardianshield.config import GuardianShieldConfig
from guardianshield.primitives.common import EnforcementAction, utc_now
from guardianshield.systems.authority.errors import (
    InputValidationError,
    IntegrityViolation,
    PlayerNotFound,
    SuspensionError,
)
from guardianshield.systems.authority.escalator import ViolationEscalator
from guardianshield.systems.authority.store import PlayerRecordStore
from guardianshield.systems.authority.types import (
    EscalationOutcome,
    PlayerRecord,
    SyncLogEntry,
    TamperingEvent,
)
from guardianshield.systems.authority.verifier import ValueVerifier
from guardianshield.systems.sync.types import (
    RegisterPlayerRequest,
    SyncRequest,
    SyncResult,
    SyncStatus,
)


class AuthorityService:
    """
    Authoritative verification and enforcement.

    Usage:
        service = AuthorityService(store, config)
        await service.initialize()
        result = await service.sync_values(request)
    """

    def __init__(self, store: PlayerRecordStore, config: GuardianShieldConfig) -> None:
        self._store = store
        self._config = config
        self._verifier = ValueVerifier(config.rules)
        self._escalator = ViolationEscalator(store, config.escalation)
        self._logger = structlog.get_logger().bind(system="authority", component="service")

        self._total_syncs = 0
        self._invalid_syncs = 0
        self._reports = 0

    @property
    def store(self) -> PlayerRecordStore:
        return self._store

    @property
    def escalator(self) -> ViolationEscalator:
        return self._escalator

    async def initialize(self) -> None:
        await self._store.connect()
        self._logger.info(
            "authority_initialized",
            backend=type(self._store).__name__,
            threshold=self._escalator.threshold,
        )

    async def shutdown(self) -> None:
        await self._store.close()
        self._logger.info("authority_shutdown", **self.stats)

    # ─── Tampering Reports ───────────────────────────────────────

    async def report_tampering(self, body: dict[str, Any]) -> tuple[TamperingEvent, EscalationOutcome]:
        event = TamperingEvent.from_untrusted(body)
        self._reports += 1
        outcome = await self._escalator.record_direct_tampering_report(event)
        return event, outcome

    # ─── Registration ────────────────────────────────────────────

    async def register_player(self, request: RegisterPlayerRequest) -> bool:
        """True when a new record was created, False when an existing one was updated."""
        now = utc_now()
        async with self._store.lock(request.player_id):
            existing = await self._store.touch_player(request.player_id, request.device_id, now)
            if existing is not None:
                self._logger.info("player_updated", player_id=request.player_id)
                return False

            record = PlayerRecord(
                player_id=request.player_id,
                device_id=request.device_id,
                created=now,
                last_seen=now,
                game_data=request.initial_data or {},
            )
            created = await self._store.create_player(record)
            if not created:
                await self._store.touch_player(request.player_id, request.device_id, now)
                return False

        self._logger.info("player_registered", player_id=request.player_id)
        return True

    # ─── Value Sync ──────────────────────────────────────────────

    async def sync_values(self, request: SyncRequest) -> SyncResult:
        """
        Verify and commit one sync. Raises PlayerNotFound or SuspensionError;
        a failed verification is answered, not raised.
        """
        self._total_syncs += 1
        async with self._store.lock(request.player_id):
            record = await self._store.get_player(request.player_id)
            if record is None:
                raise PlayerNotFound(request.player_id)
            if record.is_banned:
                raise SuspensionError(request.player_id)

            now = utc_now()
            try:
                self._verify(record, request, now)
            except IntegrityViolation as violation:
                return await self._reject(record, request, violation)

            merged = {**record.game_data, **request.game_values}
            updated = await self._store.commit_sync(request.player_id, merged, now)
            await self._store.append_sync_log(
                SyncLogEntry(
                    player_id=request.player_id,
                    session_id=request.session_id,
                    timestamp=now,
                    values=request.game_values,
                    checksum=request.checksum,
                )
            )

        self._logger.debug("sync_accepted", player_id=request.player_id)
        return SyncResult(
            status=SyncStatus.VALID,
            server_timestamp=now,
            verified_values=updated.game_data,
        )

    def _verify(self, record: PlayerRecord, request: SyncRequest, now: datetime) -> None:
        result = self._verifier.verify(
            record,
            request.game_values,
            request.client_timestamp,
            declared_checksum=request.checksum,
            now=now,
        )
        if not result.valid:
            raise IntegrityViolation(record.player_id, result.reason or "Invalid game values")

    async def _reject(
        self,
        record: PlayerRecord,
        request: SyncRequest,
        violation: IntegrityViolation,
    ) -> SyncResult:
        self._invalid_syncs += 1
        outcome = await self._escalator.record_violation(
            record, violation.reason, session_id=request.session_id
        )
        if outcome.is_ban:
            return SyncResult(
                status=SyncStatus.INVALID,
                message=self._config.escalation.terminal_message,
                action=EnforcementAction.BAN,
                reason=violation.reason,
            )

        self._logger.warning(
            "invalid_game_values",
            player_id=record.player_id,
            reason=violation.reason,
        )
        return SyncResult(
            status=SyncStatus.INVALID,
            message=self._config.escalation.warning_message,
            reason=violation.reason,
            server_values=record.game_data,
        )

    # ─── Management ──────────────────────────────────────────────

    async def player_report(self, player_id: str) -> dict[str, Any]:
        record = await self._store.get_player(player_id)
        if record is None:
            raise PlayerNotFound(player_id)
        tampering = await self._store.list_tampering_events(
            player_id=player_id,
            limit=self._config.management.player_tampering_limit,
        )
        syncs = await self._store.list_sync_logs(
            player_id, limit=self._config.management.player_sync_limit
        )
        return {
            "player": record.public_view(),
            "tampering": [e.to_wire() for e in tampering],
            "syncs": [s.to_wire() for s in syncs],
        }

    async def recent_tampering(self, days: int) -> list[dict[str, Any]]:
        max_days = self._config.management.logs_max_days
        if days < 1 or days > max_days:
            raise InputValidationError(f"Days parameter must be between 1 and {max_days}")
        since = utc_now() - timedelta(days=days)
        events = await self._store.list_tampering_events(
            since=since,
            limit=self._config.management.logs_limit,
        )
        return [e.to_wire() for e in events]

    async def reset_violations(self, player_id: str) -> PlayerRecord:
        async with self._store.lock(player_id):
            return await self._escalator.reset_violations(player_id)

    # ─── Health ──────────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        store = await self._store.health()
        return {
            "status": "ok" if store.get("status") == "connected" else "degraded",
            "timestamp": utc_now().isoformat(),
            "services": {"store": store.get("status", "disconnected")},
        }

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "syncs": self._total_syncs,
            "invalid_syncs": self._invalid_syncs,
            "reports": self._reports,
            **self._escalator.stats,
        }
