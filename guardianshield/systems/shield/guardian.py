"""
GuardianShield — Local Guardian

Client-side orchestrator. Owns the protected values, runs the detection
probes and container checks on a fixed interval, reports positives to the
authority, and applies server-corrected values back to the local mirror.

Local violation counting is advisory only; the authority decides bans.

Cycle (one pass of ``run_checks``):
  1. Probes in priority order (tool, memory, debugger, emulator),
     stopping at the first positive.
  2. ``verify()`` on every protected container.
  3. Each positive becomes a CheatDetectionEvent: countermeasures,
     on-cheat callback, fire-and-forget report.

The cycle is a non-reentrant critical section. While it runs, validation
hooks installed through ``protect_value`` answer True, and a nested or
overlapping cycle is suppressed rather than queued.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Coroutine, Iterator
from typing import Any, TypeVar

import structlog

from guardianshield.config import ShieldConfig
from guardianshield.primitives.common import DetectionKind, Severity, new_id, utc_now
from guardianshield.systems.shield.container import IntegrityContainer, ValidationHook
from guardianshield.systems.shield.probes import (
    DetectionProbe,
    MemoryRegionProbe,
    default_probes,
    run_in_order,
)
from guardianshield.systems.shield.types import CheatDetectionEvent
from guardianshield.systems.sync.client import SyncClient
from guardianshield.systems.sync.types import (
    GameValues,
    RegisterPlayerResponse,
    SyncResult,
    TamperingAck,
    TamperingReport,
)

T = TypeVar("T")

CheatCallback = Callable[[CheatDetectionEvent], None]
ServerResponse = SyncResult | TamperingAck | RegisterPlayerResponse
ResponseCallback = Callable[[ServerResponse], None]


class CycleSection:
    """Non-reentrant critical section. A second entry is refused, not queued."""

    def __init__(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @contextlib.contextmanager
    def enter(self) -> Iterator[bool]:
        if self._active:
            yield False
            return
        self._active = True
        try:
            yield True
        finally:
            self._active = False


class LocalGuardian:
    """
    Periodic integrity checking for one game client.

    Usage:
        guardian = LocalGuardian(ShieldConfig(server_endpoint="https://..."))
        health = guardian.protect_value("health", 100)
        if not await guardian.start():
            ...  # critical detection at startup
        health.set(90)
        await guardian.stop()
    """

    def __init__(
        self,
        config: ShieldConfig | None = None,
        probes: list[DetectionProbe] | None = None,
        sync_client: SyncClient | None = None,
        device_id: str | None = None,
        app_version: str | None = None,
    ) -> None:
        self._config = config or ShieldConfig()
        self._probes = (
            probes
            if probes is not None
            else default_probes(
                max_clock_gap_ms=self._config.clock_gap_limit_ms,
                allow_emulator=self._config.allow_emulator,
            )
        )
        if sync_client is None and self._config.server_endpoint:
            sync_client = SyncClient(self._config)
        self._sync = sync_client

        self._device_id = device_id or new_id()
        self._session_id = new_id()
        self._app_version = app_version
        self._player_id: str | None = None

        self._containers: dict[str, IntegrityContainer[Any]] = {}
        self._game_values: GameValues = {}
        self._section = CycleSection()
        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()

        self._on_cheat: CheatCallback | None = None
        self._on_response: ResponseCallback | None = None

        self._violations = 0
        self._total_cycles = 0
        self._suppressed_cycles = 0
        self._total_events = 0

        self._logger = structlog.get_logger().bind(
            system="shield",
            component="guardian",
            session_id=self._session_id,
        )

    # ─── Properties ──────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def player_id(self) -> str | None:
        return self._player_id

    @property
    def violation_count(self) -> int:
        return self._violations

    @property
    def game_values(self) -> GameValues:
        return dict(self._game_values)

    def container(self, key: str) -> IntegrityContainer[Any] | None:
        return self._containers.get(key)

    # ─── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> bool:
        """
        Run one check immediately, then schedule the periodic cycle.
        Returns False (and stays stopped) if that first check found a
        critical issue.
        """
        if self._running:
            return True

        # A stopped guardian did not scan, so the previous scan time is stale
        for probe in self._probes:
            if isinstance(probe, MemoryRegionProbe):
                probe.rebase()

        events = self.run_checks()
        if any(e.severity == Severity.CRITICAL for e in events):
            self._logger.warning(
                "guardian_start_refused",
                kinds=[str(e.kind) for e in events],
            )
            return False

        self._running = True
        self._loop_task = asyncio.create_task(
            self._check_loop(),
            name="guardian_check_loop",
        )
        self._logger.info(
            "guardian_started",
            interval_ms=self._config.check_interval_ms,
            probes=[p.probe_name for p in self._probes],
            containers=len(self._containers),
        )
        return True

    async def stop(self) -> None:
        """Cancel the scheduling loop. In-flight calls finish, their callbacks become no-ops."""
        if not self._running:
            return
        self._running = False
        task, self._loop_task = self._loop_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._logger.info("guardian_stopped", **self.stats)

    async def close(self) -> None:
        """Stop and release the transport."""
        await self.stop()
        await self.wait_pending()
        if self._sync is not None:
            await self._sync.close()

    async def wait_pending(self) -> None:
        """Wait for every spawned network call to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _check_loop(self) -> None:
        interval = self._config.check_interval_ms / 1000.0
        while True:
            try:
                await asyncio.sleep(interval)
                self.run_checks()
            except asyncio.CancelledError:
                return
            except Exception as exc:
                self._logger.warning("guardian_cycle_error", error=str(exc))

    # ─── Callbacks ───────────────────────────────────────────────

    def on_cheat_detected(self, callback: CheatCallback) -> None:
        self._on_cheat = callback

    def on_server_response(self, callback: ResponseCallback) -> None:
        self._on_response = callback

    # ─── Protected Values ────────────────────────────────────────

    def protect_value(
        self,
        key: str,
        initial_value: T,
        validation_hook: ValidationHook | None = None,
    ) -> IntegrityContainer[T]:
        container: IntegrityContainer[T] = IntegrityContainer(
            key,
            initial_value,
            self._guard_hook(validation_hook),
        )
        self._containers[key] = container
        return container

    def _guard_hook(self, hook: ValidationHook | None) -> ValidationHook:
        def guarded(value: Any) -> bool:
            if self._section.active:
                return True
            return hook(value) if hook is not None else True

        return guarded

    # ─── Cycle ───────────────────────────────────────────────────

    def run_checks(self) -> list[CheatDetectionEvent]:
        """One guardian cycle. Returns the events it raised (empty when suppressed)."""
        with self._section.enter() as entered:
            if not entered:
                self._suppressed_cycles += 1
                self._logger.debug("guardian_cycle_suppressed")
                return []

            self._total_cycles += 1
            events: list[CheatDetectionEvent] = []

            hit = run_in_order(self._probes)
            if hit is not None:
                probe, result = hit
                events.append(
                    CheatDetectionEvent(
                        kind=result.kind or DetectionKind.SUSPICIOUS_BEHAVIOR,
                        severity=result.confidence,
                        source=probe.probe_name,
                        details=result.details,
                    )
                )

            tampered = [key for key, c in self._containers.items() if not c.verify()]
            if tampered:
                events.append(
                    CheatDetectionEvent(
                        kind=DetectionKind.VALUE_TAMPERING,
                        severity=Severity.HIGH,
                        source="containers",
                        details={"tampered_keys": tampered},
                    )
                )

            for event in events:
                self._handle_event(event)
            return events

    def report_suspicious_activity(
        self,
        kind: DetectionKind,
        severity: Severity,
        details: dict[str, Any] | None = None,
    ) -> CheatDetectionEvent:
        """Raise a detection from game code, outside the periodic cycle."""
        event = CheatDetectionEvent(
            kind=kind,
            severity=severity,
            source="manual",
            details=details or {},
        )
        self._handle_event(event)
        return event

    def _handle_event(self, event: CheatDetectionEvent) -> None:
        self._total_events += 1
        self._logger.warning(
            "cheat_detected",
            kind=event.kind,
            severity=event.severity,
            source=event.source,
        )
        self._apply_countermeasures(event)

        if self._on_cheat is not None:
            try:
                self._on_cheat(event)
            except Exception as exc:
                self._logger.error("cheat_callback_failed", error=str(exc))

        if self._sync is not None:
            self._spawn(self._report(event), name=f"guardian_report_{event.id[-8:]}")

    def _apply_countermeasures(self, event: CheatDetectionEvent) -> None:
        self._violations += 1
        if self._violations >= self._config.max_tampering_attempts:
            self._logger.warning(
                "terminal_countermeasures",
                violations=self._violations,
                limit=self._config.max_tampering_attempts,
            )
            for container in self._containers.values():
                container.reset()
            return

        self._logger.info(
            "warning_countermeasures",
            violations=self._violations,
            limit=self._config.max_tampering_attempts,
        )
        if event.is_severe:
            for key in event.details.get("tampered_keys", []):
                if (container := self._containers.get(key)) is not None:
                    container.reset()

    # ─── Server Sync ─────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            task = asyncio.create_task(coro, name=name)
        except RuntimeError:
            coro.close()
            self._logger.warning("guardian_no_event_loop", task=name)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _report(self, event: CheatDetectionEvent) -> None:
        if self._sync is None:
            return
        report = TamperingReport(
            type=str(event.kind),
            severity=event.severity,
            device_id=self._device_id,
            player_id=self._player_id,
            session_id=self._session_id,
            app_version=self._app_version,
            timestamp=event.timestamp,
            details=event.details,
        )
        ack = await self._sync.report_tampering(report)
        if ack is None or not self._running:
            return
        self._notify(ack)

    def set_player_id(self, player_id: str) -> None:
        """
        Bind this client to a player and register with the authority.
        Values registered before this call are sent as initial data, then
        synced once registration succeeds.
        """
        self._player_id = player_id
        self._logger.info("player_id_set", player_id=player_id)
        if self._sync is not None:
            self._spawn(self._register(), name="guardian_register")

    async def _register(self) -> None:
        if self._sync is None or self._player_id is None:
            return
        registered = await self._sync.register_player(
            self._player_id,
            self._device_id,
            dict(self._game_values),
        )
        if registered is None:
            return
        if self._running:
            self._notify(registered)
        if self._game_values:
            await self.sync_values()

    def register_game_value(self, key: str, value: Any) -> None:
        self._game_values[key] = value
        self._request_sync()

    def update_game_value(self, key: str, value: Any) -> None:
        if key not in self._game_values:
            self._logger.warning("unregistered_game_value", key=key)
            return
        self._game_values[key] = value
        self._request_sync()

    def _request_sync(self) -> None:
        if self._sync is not None and self._player_id is not None:
            self._spawn(self.sync_values(), name="guardian_sync")

    async def sync_values(self) -> SyncResult | None:
        """Send the mirror to the authority and adopt whatever it says is authoritative."""
        if self._sync is None or self._player_id is None:
            return None
        result = await self._sync.sync_values(
            self._player_id,
            self._session_id,
            dict(self._game_values),
        )
        if result is None or not self._running:
            return result

        if result.is_valid:
            self._logger.info("game_values_synced")
        else:
            self._logger.warning("game_values_rejected", reason=result.reason, action=result.action)
        if (values := result.authoritative_values) is not None:
            self.apply_server_values(values)
        self._notify(result)
        return result

    def apply_server_values(self, server_values: GameValues) -> None:
        """Overwrite the mirror and matching containers with server values."""
        for key in list(self._game_values):
            if key not in server_values:
                continue
            value = server_values[key]
            self._game_values[key] = value
            if (container := self._containers.get(key)) is not None:
                container.set(value)
            self._logger.info("value_corrected_from_server", key=key)

    def _notify(self, response: ServerResponse) -> None:
        if self._on_response is None:
            return
        try:
            self._on_response(response)
        except Exception as exc:
            self._logger.error("response_callback_failed", error=str(exc))

    # ─── Introspection ───────────────────────────────────────────

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "cycles": self._total_cycles,
            "suppressed_cycles": self._suppressed_cycles,
            "events": self._total_events,
            "violations": self._violations,
            "containers": len(self._containers),
        }

    def health(self) -> dict[str, Any]:
        return {
            "status": "running" if self._running else "stopped",
            "timestamp": utc_now().isoformat(),
            **self.stats,
        }
