"""
Tests for ViolationEscalator.

Covers:
  - Threshold escalation (warn, warn, ban)
  - Critical direct reports banning immediately
  - Anonymous and unknown-player reports
  - Ban monotonicity and explicit counter reset
  - Concurrent violations never losing a count
"""

from __future__ import annotations

import asyncio

import pytest

from guardianshield.config import EscalationConfig
from guardianshield.primitives.common import EnforcementAction, Severity
from guardianshield.systems.authority.errors import PlayerNotFound
from guardianshield.systems.authority.escalator import ViolationEscalator
from guardianshield.systems.authority.store import InMemoryPlayerStore
from guardianshield.systems.authority.types import PlayerRecord, TamperingEvent


async def _make_escalator(
    threshold: int = 3,
    player_id: str | None = "p1",
) -> tuple[ViolationEscalator, InMemoryPlayerStore]:
    store = InMemoryPlayerStore()
    if player_id:
        await store.create_player(PlayerRecord(player_id=player_id, device_id="d1"))
    escalator = ViolationEscalator(store, EscalationConfig(max_tampering_attempts=threshold))
    return escalator, store


def _make_event(severity: Severity = Severity.MEDIUM, player_id: str | None = "p1") -> TamperingEvent:
    return TamperingEvent(type="memory_tampering", severity=severity, player_id=player_id)


class TestRecordViolation:
    @pytest.mark.asyncio
    async def test_warn_until_threshold_then_ban(self):
        escalator, store = await _make_escalator(threshold=3)
        record = await store.get_player("p1")

        actions = [
            (await escalator.record_violation(record, "Coins increased too fast")).action
            for _ in range(3)
        ]

        assert actions == [EnforcementAction.WARN, EnforcementAction.WARN, EnforcementAction.BAN]
        stored = await store.get_player("p1")
        assert stored.tampering_attempts == 3
        assert stored.is_banned is True
        assert stored.ban_timestamp is not None

    @pytest.mark.asyncio
    async def test_history_entry_appended(self):
        escalator, store = await _make_escalator()
        record = await store.get_player("p1")
        await escalator.record_violation(record, "XP increased too fast", session_id="s1")
        stored = await store.get_player("p1")
        assert stored.tampering[-1].invalid_values is True
        assert stored.tampering[-1].reason == "XP increased too fast"
        assert stored.tampering[-1].session_id == "s1"

    @pytest.mark.asyncio
    async def test_ban_timestamp_set_once(self):
        escalator, store = await _make_escalator(threshold=1)
        record = await store.get_player("p1")
        first = await escalator.record_violation(record, "r")
        stamp = (await store.get_player("p1")).ban_timestamp
        second = await escalator.record_violation(record, "r")

        assert first.newly_banned is True
        assert second.newly_banned is False
        assert second.action == EnforcementAction.BAN
        assert (await store.get_player("p1")).ban_timestamp == stamp

    @pytest.mark.asyncio
    async def test_unknown_player_raises(self):
        escalator, _ = await _make_escalator(player_id=None)
        with pytest.raises(PlayerNotFound):
            await escalator.record_violation(PlayerRecord(player_id="ghost", device_id="d"), "r")

    @pytest.mark.asyncio
    async def test_concurrent_violations_are_all_counted(self):
        escalator, store = await _make_escalator(threshold=100)
        record = await store.get_player("p1")
        await asyncio.gather(*(escalator.record_violation(record, "r") for _ in range(20)))
        assert (await store.get_player("p1")).tampering_attempts == 20


class TestDirectReports:
    @pytest.mark.asyncio
    async def test_critical_report_bans_immediately(self):
        escalator, store = await _make_escalator()
        outcome = await escalator.record_direct_tampering_report(_make_event(Severity.CRITICAL))
        assert outcome.action == EnforcementAction.BAN
        assert (await store.get_player("p1")).is_banned is True

    @pytest.mark.asyncio
    async def test_anonymous_critical_report_answers_ban(self):
        escalator, store = await _make_escalator(player_id=None)
        outcome = await escalator.record_direct_tampering_report(
            _make_event(Severity.CRITICAL, player_id=None)
        )
        assert outcome.action == EnforcementAction.BAN
        assert outcome.record is None
        assert len(await store.list_tampering_events()) == 1

    @pytest.mark.asyncio
    async def test_report_counts_towards_threshold(self):
        escalator, store = await _make_escalator(threshold=2)
        first = await escalator.record_direct_tampering_report(_make_event())
        second = await escalator.record_direct_tampering_report(_make_event())
        assert first.action == EnforcementAction.WARN
        assert second.action == EnforcementAction.BAN
        history = (await store.get_player("p1")).tampering
        assert [h.severity for h in history] == [Severity.MEDIUM, Severity.MEDIUM]

    @pytest.mark.asyncio
    async def test_unknown_player_report_is_logged_and_warned(self):
        escalator, store = await _make_escalator(player_id=None)
        outcome = await escalator.record_direct_tampering_report(_make_event(player_id="nobody"))
        assert outcome.action == EnforcementAction.WARN
        assert [e.player_id for e in await store.list_tampering_events()] == ["nobody"]

    @pytest.mark.asyncio
    async def test_duplicate_reports_count_twice(self):
        escalator, store = await _make_escalator(threshold=10)
        event = _make_event()
        await escalator.record_direct_tampering_report(event)
        await escalator.record_direct_tampering_report(event)
        assert (await store.get_player("p1")).tampering_attempts == 2


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_clears_counter_but_not_ban(self):
        escalator, store = await _make_escalator(threshold=1)
        record = await store.get_player("p1")
        await escalator.record_violation(record, "r")

        reset = await escalator.reset_violations("p1")

        assert reset.tampering_attempts == 0
        assert reset.is_banned is True

    @pytest.mark.asyncio
    async def test_reset_unknown_player(self):
        escalator, _ = await _make_escalator(player_id=None)
        with pytest.raises(PlayerNotFound):
            await escalator.reset_violations("ghost")

    @pytest.mark.asyncio
    async def test_banned_player_stays_banned_after_reset_and_violation(self):
        escalator, store = await _make_escalator(threshold=3)
        record = await store.get_player("p1")
        await store.mark_banned("p1", record.created)
        await escalator.reset_violations("p1")

        outcome = await escalator.record_violation(record, "r")
        assert outcome.action == EnforcementAction.BAN
        assert (await store.get_player("p1")).is_banned is True
