"""
GuardianShield — Redis Client

Async Redis for the authoritative player store: player records,
the append-only tampering log, per-player sync logs, and per-player locks.
"""

from __future__ import annotations

from typing import Any

import orjson
import structlog
from redis.asyncio import Redis
from redis.asyncio.lock import Lock

from guardianshield.config import RedisConfig

logger = structlog.get_logger()


class RedisClient:
    """
    Async Redis client with key prefixing for multi-instance support.
    """

    def __init__(self, config: RedisConfig, client: Redis | None = None) -> None:
        self._config = config
        self._client: Redis | None = client

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._client is None:
            self._client = Redis.from_url(
                self._config.full_url,
                decode_responses=True,
            )
        # Verify connectivity
        await self._client.ping()
        logger.info("redis_connected", prefix=self._config.prefix)

    async def close(self) -> None:
        """Close the connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    def _key(self, key: str) -> str:
        """Prefix a key with the instance prefix."""
        return f"{self._config.prefix}:{key}"

    async def health_check(self) -> dict[str, Any]:
        """Check connectivity."""
        try:
            await self.client.ping()
            return {"status": "connected"}
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {"status": "disconnected", "error": str(e)}

    # ─── JSON Helpers ─────────────────────────────────────────────

    async def set_json(self, key: str, value: Any) -> None:
        """Store a JSON-serialisable value."""
        await self.client.set(self._key(key), orjson.dumps(value).decode())

    async def set_json_if_absent(self, key: str, value: Any) -> bool:
        """Store a JSON value only when the key does not exist yet."""
        raw = orjson.dumps(value).decode()
        return bool(await self.client.set(self._key(key), raw, nx=True))

    async def get_json(self, key: str) -> Any | None:
        """Retrieve a JSON value."""
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        return orjson.loads(raw)

    # ─── Counters ─────────────────────────────────────────────────

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        """Atomically increment an integer hash field."""
        return int(await self.client.hincrby(self._key(key), field, amount))

    async def hset_raw(self, key: str, field: str, value: str | int) -> None:
        """Set a plain (non-JSON) hash field."""
        await self.client.hset(self._key(key), field, value)

    async def hsetnx_raw(self, key: str, field: str, value: str | int) -> bool:
        """Set a plain hash field only if it does not exist yet."""
        return bool(await self.client.hsetnx(self._key(key), field, value))

    async def hgetall_raw(self, key: str) -> dict[str, str]:
        """Get all hash fields without JSON decoding."""
        return await self.client.hgetall(self._key(key))

    # ─── List Operations (Sync Logs, Histories) ───────────────────

    async def push(self, key: str, value: Any, max_len: int | None = None) -> None:
        """Push a JSON value to the head of a list, optionally capping its length."""
        raw = orjson.dumps(value).decode()
        k = self._key(key)
        pipe = self.client.pipeline()
        pipe.lpush(k, raw)
        if max_len:
            pipe.ltrim(k, 0, max_len - 1)
        await pipe.execute()

    async def range(self, key: str, limit: int) -> list[Any]:
        """Newest-first slice of a list."""
        items = await self.client.lrange(self._key(key), 0, max(limit, 1) - 1)
        return [orjson.loads(item) for item in items]

    # ─── Sorted Sets (Tampering Log) ──────────────────────────────

    async def zadd_json(self, key: str, score: float, value: Any) -> None:
        """Add a JSON value to a sorted set under ``score``."""
        raw = orjson.dumps(value).decode()
        await self.client.zadd(self._key(key), {raw: score})

    async def zrevrange_json(
        self,
        key: str,
        limit: int,
        min_score: float | None = None,
    ) -> list[Any]:
        """Highest-score-first members, optionally bounded below by ``min_score``."""
        items = await self.client.zrevrangebyscore(
            self._key(key),
            "+inf",
            "-inf" if min_score is None else min_score,
            start=0,
            num=limit,
        )
        return [orjson.loads(item) for item in items]

    # ─── Locks ────────────────────────────────────────────────────

    def lock(self, key: str, timeout: float) -> Lock:
        """Distributed lock scoped to ``key``."""
        return self.client.lock(
            self._key(f"lock:{key}"),
            timeout=timeout,
            blocking_timeout=timeout,
        )
