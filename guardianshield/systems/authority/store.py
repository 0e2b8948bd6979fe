"""
GuardianShield — Player Record Store

The authoritative persistence contract and its two adapters:
  InMemoryPlayerStore — default, single process, used by tests
  RedisPlayerStore    — shared state over redis.asyncio

Both offer a per-player lock for serialising one player's sync, and an
atomic ``increment_violation`` so concurrent reports never lose a count.
Backend failures surface as StoreUnavailable.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any, ParamSpec, TypeVar

import structlog
from redis.exceptions import RedisError

from guardianshield.clients.redis import RedisClient
from guardianshield.systems.authority.errors import StoreUnavailable
from guardianshield.systems.authority.types import (
    PlayerRecord,
    SyncLogEntry,
    TamperingEvent,
    ViolationEntry,
)

logger = structlog.get_logger().bind(system="authority", component="store")

P = ParamSpec("P")
R = TypeVar("R")

# Upper bound on retained sync log entries per player
_SYNC_LOG_RETENTION = 1000


class PlayerRecordStore(ABC):
    """Persistence contract for the authority."""

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abstractmethod
    async def health(self) -> dict[str, Any]: ...

    # ─── Players ─────────────────────────────────────────────────

    @abstractmethod
    async def get_player(self, player_id: str) -> PlayerRecord | None: ...

    @abstractmethod
    async def create_player(self, record: PlayerRecord) -> bool:
        """Insert ``record``. False if the player already exists."""

    @abstractmethod
    async def touch_player(
        self, player_id: str, device_id: str, seen_at: datetime
    ) -> PlayerRecord | None:
        """Update ``device_id`` and ``last_seen`` only."""

    @abstractmethod
    async def commit_sync(
        self, player_id: str, game_data: dict[str, Any], synced_at: datetime
    ) -> PlayerRecord:
        """Replace ``game_data`` and set ``last_sync``."""

    @abstractmethod
    async def increment_violation(
        self, player_id: str, entry: ViolationEntry, history_limit: int
    ) -> PlayerRecord | None:
        """Atomically bump ``tampering_attempts`` and append ``entry``. None if unknown."""

    @abstractmethod
    async def mark_banned(self, player_id: str, at: datetime) -> bool:
        """Set ``is_banned``. True only for the call that actually banned the player."""

    @abstractmethod
    async def reset_violations(self, player_id: str) -> PlayerRecord | None: ...

    # ─── Logs ────────────────────────────────────────────────────

    @abstractmethod
    async def append_tampering_event(self, event: TamperingEvent) -> None: ...

    @abstractmethod
    async def list_tampering_events(
        self,
        player_id: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[TamperingEvent]:
        """Newest first."""

    @abstractmethod
    async def append_sync_log(self, entry: SyncLogEntry) -> None: ...

    @abstractmethod
    async def list_sync_logs(self, player_id: str, limit: int = 20) -> list[SyncLogEntry]:
        """Newest first."""

    # ─── Serialisation ───────────────────────────────────────────

    @abstractmethod
    def lock(self, player_id: str) -> contextlib.AbstractAsyncContextManager[None]: ...


# ─── In-Memory Adapter ────────────────────────────────────────────


class InMemoryPlayerStore(PlayerRecordStore):
    """
    Process-local store. Records are copied in and out so callers never
    share state with the store.
    """

    def __init__(self) -> None:
        self._players: dict[str, PlayerRecord] = {}
        self._tampering_log: list[TamperingEvent] = []
        self._sync_logs: dict[str, list[SyncLogEntry]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def health(self) -> dict[str, Any]:
        return {"status": "connected", "backend": "memory", "players": len(self._players)}

    async def get_player(self, player_id: str) -> PlayerRecord | None:
        record = self._players.get(player_id)
        return record.model_copy(deep=True) if record else None

    async def create_player(self, record: PlayerRecord) -> bool:
        if record.player_id in self._players:
            return False
        self._players[record.player_id] = record.model_copy(deep=True)
        return True

    async def touch_player(
        self, player_id: str, device_id: str, seen_at: datetime
    ) -> PlayerRecord | None:
        record = self._players.get(player_id)
        if record is None:
            return None
        record.device_id = device_id
        record.last_seen = seen_at
        return record.model_copy(deep=True)

    async def commit_sync(
        self, player_id: str, game_data: dict[str, Any], synced_at: datetime
    ) -> PlayerRecord:
        record = self._players[player_id]
        record.game_data = dict(game_data)
        record.last_sync = synced_at
        return record.model_copy(deep=True)

    async def increment_violation(
        self, player_id: str, entry: ViolationEntry, history_limit: int
    ) -> PlayerRecord | None:
        record = self._players.get(player_id)
        if record is None:
            return None
        record.tampering_attempts += 1
        record.tampering.append(entry)
        if len(record.tampering) > history_limit:
            del record.tampering[: len(record.tampering) - history_limit]
        return record.model_copy(deep=True)

    async def mark_banned(self, player_id: str, at: datetime) -> bool:
        record = self._players.get(player_id)
        if record is None or record.is_banned:
            return False
        record.is_banned = True
        record.ban_timestamp = at
        return True

    async def reset_violations(self, player_id: str) -> PlayerRecord | None:
        record = self._players.get(player_id)
        if record is None:
            return None
        record.tampering_attempts = 0
        return record.model_copy(deep=True)

    async def append_tampering_event(self, event: TamperingEvent) -> None:
        self._tampering_log.append(event)

    async def list_tampering_events(
        self,
        player_id: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[TamperingEvent]:
        events = [
            e
            for e in self._tampering_log
            if (player_id is None or e.player_id == player_id)
            and (since is None or e.server_timestamp >= since)
        ]
        events.sort(key=lambda e: e.server_timestamp, reverse=True)
        return events[:limit]

    async def append_sync_log(self, entry: SyncLogEntry) -> None:
        log = self._sync_logs[entry.player_id]
        log.append(entry)
        if len(log) > _SYNC_LOG_RETENTION:
            del log[0]

    async def list_sync_logs(self, player_id: str, limit: int = 20) -> list[SyncLogEntry]:
        return list(reversed(self._sync_logs.get(player_id, [])))[:limit]

    def lock(self, player_id: str) -> contextlib.AbstractAsyncContextManager[None]:
        return self._locks[player_id]  # type: ignore[return-value]


# ─── Redis Adapter ────────────────────────────────────────────────


def _guarded(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Translate Redis failures into StoreUnavailable."""

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await fn(*args, **kwargs)
        except RedisError as exc:
            logger.error("store_operation_failed", operation=fn.__name__, error=str(exc))
            raise StoreUnavailable(str(exc)) from exc

    return wrapper


class RedisPlayerStore(PlayerRecordStore):
    """
    Redis layout (all keys carry the client prefix):
      player:{id}            JSON record without counters or history
      player:{id}:state      hash: tampering_attempts, is_banned, ban_timestamp
      player:{id}:history    list of violation entries, newest first
      tampering              sorted set of events scored by server time
      tampering:{id}         the same, per player
      sync:{id}              list of sync log entries, newest first
      lock:{id}              per-player lock
    """

    def __init__(self, redis: RedisClient, lock_timeout_s: float = 5.0) -> None:
        self._redis = redis
        self._lock_timeout_s = lock_timeout_s

    async def connect(self) -> None:
        try:
            await self._redis.connect()
        except RedisError as exc:
            logger.error("store_connect_failed", error=str(exc))
            raise StoreUnavailable(str(exc)) from exc

    async def close(self) -> None:
        await self._redis.close()

    async def health(self) -> dict[str, Any]:
        return {**(await self._redis.health_check()), "backend": "redis"}

    @staticmethod
    def _record_key(player_id: str) -> str:
        return f"player:{player_id}"

    def _to_doc(self, record: PlayerRecord) -> dict[str, Any]:
        return record.model_dump(
            mode="json",
            exclude={"tampering_attempts", "is_banned", "ban_timestamp", "tampering"},
        )

    async def _load(self, player_id: str) -> PlayerRecord | None:
        doc = await self._redis.get_json(self._record_key(player_id))
        if doc is None:
            return None
        state = await self._redis.hgetall_raw(f"{self._record_key(player_id)}:state")
        history = await self._redis.range(f"{self._record_key(player_id)}:history", 1000)
        doc["tampering_attempts"] = int(state.get("tampering_attempts", 0))
        doc["is_banned"] = state.get("is_banned") == "1"
        doc["ban_timestamp"] = state.get("ban_timestamp") or None
        doc["tampering"] = list(reversed(history))
        return PlayerRecord.model_validate(doc)

    @_guarded
    async def get_player(self, player_id: str) -> PlayerRecord | None:
        return await self._load(player_id)

    @_guarded
    async def create_player(self, record: PlayerRecord) -> bool:
        created = await self._redis.set_json_if_absent(
            self._record_key(record.player_id), self._to_doc(record)
        )
        if created:
            state_key = f"{self._record_key(record.player_id)}:state"
            await self._redis.hset_raw(state_key, "tampering_attempts", record.tampering_attempts)
            await self._redis.hset_raw(state_key, "is_banned", "1" if record.is_banned else "0")
        return created

    @_guarded
    async def touch_player(
        self, player_id: str, device_id: str, seen_at: datetime
    ) -> PlayerRecord | None:
        doc = await self._redis.get_json(self._record_key(player_id))
        if doc is None:
            return None
        doc["device_id"] = device_id
        doc["last_seen"] = seen_at.isoformat()
        await self._redis.set_json(self._record_key(player_id), doc)
        return await self._load(player_id)

    @_guarded
    async def commit_sync(
        self, player_id: str, game_data: dict[str, Any], synced_at: datetime
    ) -> PlayerRecord:
        doc = await self._redis.get_json(self._record_key(player_id))
        if doc is None:
            raise StoreUnavailable(f"record {player_id} missing during commit")
        doc["game_data"] = game_data
        doc["last_sync"] = synced_at.isoformat()
        await self._redis.set_json(self._record_key(player_id), doc)
        record = await self._load(player_id)
        if record is None:
            raise StoreUnavailable(f"record {player_id} missing after commit")
        return record

    @_guarded
    async def increment_violation(
        self, player_id: str, entry: ViolationEntry, history_limit: int
    ) -> PlayerRecord | None:
        if await self._redis.get_json(self._record_key(player_id)) is None:
            return None
        await self._redis.hincrby(f"{self._record_key(player_id)}:state", "tampering_attempts")
        await self._redis.push(
            f"{self._record_key(player_id)}:history",
            entry.model_dump(mode="json"),
            max_len=history_limit,
        )
        return await self._load(player_id)

    @_guarded
    async def mark_banned(self, player_id: str, at: datetime) -> bool:
        state_key = f"{self._record_key(player_id)}:state"
        newly = await self._redis.hsetnx_raw(state_key, "ban_timestamp", at.isoformat())
        await self._redis.hset_raw(state_key, "is_banned", "1")
        return newly

    @_guarded
    async def reset_violations(self, player_id: str) -> PlayerRecord | None:
        if await self._redis.get_json(self._record_key(player_id)) is None:
            return None
        await self._redis.hset_raw(f"{self._record_key(player_id)}:state", "tampering_attempts", 0)
        return await self._load(player_id)

    @_guarded
    async def append_tampering_event(self, event: TamperingEvent) -> None:
        doc = event.model_dump(mode="json")
        score = event.server_timestamp.timestamp()
        await self._redis.zadd_json("tampering", score, doc)
        if event.player_id:
            await self._redis.zadd_json(f"tampering:{event.player_id}", score, doc)

    @_guarded
    async def list_tampering_events(
        self,
        player_id: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[TamperingEvent]:
        key = f"tampering:{player_id}" if player_id else "tampering"
        docs = await self._redis.zrevrange_json(
            key,
            limit,
            min_score=since.timestamp() if since else None,
        )
        return [TamperingEvent.model_validate(d) for d in docs]

    @_guarded
    async def append_sync_log(self, entry: SyncLogEntry) -> None:
        await self._redis.push(
            f"sync:{entry.player_id}",
            entry.model_dump(mode="json"),
            max_len=_SYNC_LOG_RETENTION,
        )

    @_guarded
    async def list_sync_logs(self, player_id: str, limit: int = 20) -> list[SyncLogEntry]:
        docs = await self._redis.range(f"sync:{player_id}", limit)
        return [SyncLogEntry.model_validate(d) for d in docs]

    @contextlib.asynccontextmanager
    async def lock(self, player_id: str) -> AsyncIterator[None]:  # type: ignore[override]
        redis_lock = self._redis.lock(player_id, timeout=self._lock_timeout_s)
        try:
            acquired = await redis_lock.acquire()
        except RedisError as exc:
            logger.error("store_lock_failed", player_id=player_id, error=str(exc))
            raise StoreUnavailable(str(exc)) from exc
        if not acquired:
            logger.error("store_lock_timeout", player_id=player_id)
            raise StoreUnavailable("lock timeout")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except RedisError as exc:
                # Lock expired while held; the timeout already freed it
                logger.warning("store_lock_release_failed", player_id=player_id, error=str(exc))
