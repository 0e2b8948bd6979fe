"""
Tests for ValueVerifier.

Covers:
  - First sync trust
  - Timestamp parsing and future-skew rejection
  - Health cap / regen, coins and xp rate limits
  - Rule precedence and inclusive boundaries
  - Purity (record never mutated)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from guardianshield.config import GameRulesConfig
from guardianshield.primitives.checksum import checksum
from guardianshield.systems.authority.types import PlayerRecord
from guardianshield.systems.authority.verifier import ValueVerifier, parse_client_timestamp

BASE = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _make_record(game_data: dict | None = None, last_sync: datetime | None = BASE) -> PlayerRecord:
    return PlayerRecord(
        player_id="p1",
        device_id="d1",
        created=BASE - timedelta(hours=1),
        last_seen=BASE,
        game_data=game_data if game_data is not None else {"health": 50, "coins": 100, "xp": 0},
        last_sync=last_sync,
    )


def _verify(proposed: dict, minutes: float = 1.0, record: PlayerRecord | None = None, **rules):
    verifier = ValueVerifier(GameRulesConfig(**rules))
    client_ts = BASE + timedelta(minutes=minutes)
    return verifier.verify(
        record or _make_record(),
        proposed,
        client_ts.isoformat(),
        now=client_ts,
    )


class TestTimestamps:
    def test_parse_iso_with_z(self):
        assert parse_client_timestamp("2026-01-01T12:00:00Z") == BASE

    def test_parse_epoch_millis(self):
        assert parse_client_timestamp(BASE.timestamp() * 1000) == BASE

    def test_parse_naive_datetime_assumed_utc(self):
        assert parse_client_timestamp(datetime(2026, 1, 1, 12)) == BASE

    @pytest.mark.parametrize("raw", [None, "", "yesterday", True, {"t": 1}])
    def test_unparsable(self, raw):
        assert parse_client_timestamp(raw) is None

    def test_invalid_timestamp_rejected(self):
        verifier = ValueVerifier(GameRulesConfig())
        result = verifier.verify(_make_record(), {"coins": 100}, "not-a-date", now=BASE)
        assert result.valid is False
        assert result.reason == "Invalid client timestamp"

    def test_future_timestamp_rejected(self):
        verifier = ValueVerifier(GameRulesConfig())
        client_ts = BASE + timedelta(minutes=6)
        result = verifier.verify(_make_record(), {"coins": 100}, client_ts.isoformat(), now=BASE)
        assert result.valid is False
        assert result.reason == "Client timestamp is too far in the future"

    def test_small_clock_skew_tolerated(self):
        verifier = ValueVerifier(GameRulesConfig())
        client_ts = BASE + timedelta(minutes=4)
        result = verifier.verify(_make_record(), {"coins": 100}, client_ts.isoformat(), now=BASE)
        assert result.valid is True


class TestFirstSync:
    def test_empty_record_accepts_anything(self):
        verifier = ValueVerifier(GameRulesConfig())
        record = _make_record(game_data={})
        result = verifier.verify(record, {"coins": 10**9}, "garbage", now=BASE)
        assert result.valid is True


class TestCoinsAndXp:
    def test_coins_too_fast(self):
        result = _verify({"coins": 5100}, minutes=1)
        assert result.valid is False
        assert result.reason == "Coins increased too fast (5000 in 1.00 minutes)"

    def test_coins_at_bound_are_valid(self):
        assert _verify({"coins": 1100}, minutes=1).valid is True

    def test_coins_one_over_bound(self):
        assert _verify({"coins": 1101}, minutes=1).valid is False

    def test_spending_coins_is_fine(self):
        assert _verify({"coins": 0}, minutes=0).valid is True

    def test_xp_too_fast(self):
        result = _verify({"xp": 1000}, minutes=1)
        assert result.reason == "XP increased too fast (1000 in 1.00 minutes)"

    def test_xp_at_bound(self):
        assert _verify({"xp": 500}, minutes=1).valid is True

    def test_unknown_stored_value_not_checked(self):
        record = _make_record(game_data={"health": 50})
        assert _verify({"coins": 10**9}, record=record).valid is True

    def test_elapsed_measured_from_created_without_sync(self):
        record = _make_record(last_sync=None)
        # created is one hour before BASE, so 61 minutes have elapsed
        assert _verify({"coins": 100 + 61_000}, minutes=1, record=record).valid is True

    def test_non_numeric_value_rejected(self):
        result = _verify({"coins": "lots"})
        assert result.valid is False
        assert result.reason == "coins must be numeric"

    @pytest.mark.parametrize("name", ["coins", "xp", "health"])
    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_value_rejected(self, name, bad):
        result = _verify({name: bad})
        assert result.valid is False
        assert result.reason == f"{name} must be numeric"

    def test_configured_rate_is_used(self):
        assert _verify({"coins": 200}, minutes=1, max_coins_per_minute=50).valid is False


class TestHealth:
    def test_health_over_cap(self):
        result = _verify({"health": 101})
        assert result.reason == "Health exceeds maximum allowed value"

    def test_health_cap_from_record(self):
        record = _make_record(game_data={"health": 140, "maxHealth": 150})
        assert _verify({"health": 145}, record=record).valid is True

    def test_health_powerup_bypasses_cap(self):
        assert _verify({"health": 200, "powerups": ["health"]}).valid is True

    def test_health_regen_too_fast(self):
        result = _verify({"health": 60}, minutes=1)
        assert result.valid is False
        assert result.reason == "Health increased too fast (10 in 1.00 minutes)"

    def test_health_regen_at_rate(self):
        assert _verify({"health": 55}, minutes=1).valid is True

    def test_regen_rate_from_record(self):
        record = _make_record(game_data={"health": 50, "healthRegenRate": 20})
        assert _verify({"health": 70}, minutes=1, record=record).valid is True

    def test_losing_health_is_fine(self):
        assert _verify({"health": 1}, minutes=0).valid is True


class TestPrecedence:
    def test_health_cap_reported_before_coins(self):
        result = _verify({"health": 500, "coins": 10**6, "xp": 10**6})
        assert result.reason == "Health exceeds maximum allowed value"

    def test_coins_reported_before_xp(self):
        result = _verify({"coins": 10**6, "xp": 10**6})
        assert result.reason.startswith("Coins increased too fast")


class TestChecksumAndPurity:
    def test_checksum_ignored_by_default(self):
        verifier = ValueVerifier(GameRulesConfig())
        client_ts = BASE + timedelta(minutes=1)
        result = verifier.verify(
            _make_record(), {"coins": 150}, client_ts.isoformat(), declared_checksum="bogus", now=client_ts
        )
        assert result.valid is True

    def test_checksum_enforced_when_enabled(self):
        verifier = ValueVerifier(GameRulesConfig(enforce_payload_checksum=True))
        client_ts = BASE + timedelta(minutes=1)
        proposed = {"coins": 150}
        bad = verifier.verify(_make_record(), proposed, client_ts.isoformat(), "bogus", now=client_ts)
        good = verifier.verify(
            _make_record(), proposed, client_ts.isoformat(), checksum(proposed), now=client_ts
        )
        assert bad.reason == "Checksum mismatch"
        assert good.valid is True

    def test_record_is_not_mutated(self):
        record = _make_record()
        before = record.model_dump()
        _verify({"coins": 5100, "health": 99}, record=record)
        assert record.model_dump() == before
