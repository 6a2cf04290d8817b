"""Idempotency ledgers: conditional-insert-or-fail key-value stores.

Two implementations of :class:`~billing_events.core.interfaces.IIdempotencyLedger`:

* :class:`MemoryIdempotencyLedger`: dict-backed, for tests and local replay.
  A claim has no ``await`` between the existence check and the write, so it
  is atomic within one event loop.
* :class:`RedisIdempotencyLedger`: ``SET key value NX EX ttl``. Redis
  applies the TTL, so expired records disappear without a sweep.

Both raise :class:`ConditionalCheckFailed` when the key already exists.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from billing_events.core.clock import IClock, WallClock
from billing_events.core.errors import ConditionalCheckFailed, TransientStorageError
from billing_events.core.models import IdempotencyRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_GET_LIMIT = 100


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def _serialize(record: IdempotencyRecord) -> str:
    return record.model_dump_json()


def _deserialize(raw: str | bytes | None) -> IdempotencyRecord | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return IdempotencyRecord.model_validate(json.loads(raw))


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class MemoryIdempotencyLedger:
    """In-memory ledger honouring record TTLs against an injected clock."""

    def __init__(
        self,
        clock: IClock | None = None,
        batch_get_limit: int = DEFAULT_BATCH_GET_LIMIT,
    ) -> None:
        self._clock = clock or WallClock()
        self._batch_get_limit = batch_get_limit
        self._records: dict[str, IdempotencyRecord] = {}

    @property
    def batch_get_limit(self) -> int:
        return self._batch_get_limit

    def _live(self, key: str) -> IdempotencyRecord | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.ttl <= self._clock.epoch_seconds():
            del self._records[key]
            return None
        return record

    async def put_if_absent(self, record: IdempotencyRecord) -> None:
        if self._live(record.key) is not None:
            raise ConditionalCheckFailed(record.key)
        self._records[record.key] = record

    async def get_many(self, keys: list[str]) -> dict[str, IdempotencyRecord]:
        if len(keys) > self._batch_get_limit:
            raise ValueError(
                f"get_many accepts at most {self._batch_get_limit} keys, "
                f"got {len(keys)}"
            )
        found: dict[str, IdempotencyRecord] = {}
        for key in keys:
            record = self._live(key)
            if record is not None:
                found[key] = record
        return found

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def get(self, key: str) -> IdempotencyRecord | None:
        return self._live(key)

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

class RedisIdempotencyLedger:
    """Redis-backed ledger.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
        prefix: Key namespace prefix.
        batch_get_limit: Maximum keys per ``MGET``.
        client: Pre-built client; skips :meth:`connect`.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "billing:idempotency:",
        batch_get_limit: int = DEFAULT_BATCH_GET_LIMIT,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._url = redis_url
        self._prefix = prefix
        self._batch_get_limit = batch_get_limit
        self._redis = client

    # -- lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """Establish the Redis connection pool."""
        if self._redis is not None:
            return
        self._redis = aioredis.from_url(self._url, decode_responses=False)
        await self._redis.ping()
        logger.info("Idempotency ledger connected: %s", self._url.split("@")[-1])

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError(
                "RedisIdempotencyLedger not connected. Call connect() first."
            )
        return self._redis

    @property
    def batch_get_limit(self) -> int:
        return self._batch_get_limit

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    # -- operations ------------------------------------------------------------

    async def put_if_absent(self, record: IdempotencyRecord) -> None:
        expire_in = max(record.ttl - record.processed_at, 1)
        try:
            written: Any = await self.redis.set(
                self._key(record.key),
                _serialize(record),
                nx=True,
                ex=expire_in,
            )
        except RedisError as exc:
            raise TransientStorageError(
                f"Idempotency ledger write failed for {record.key}"
            ) from exc
        if not written:
            raise ConditionalCheckFailed(record.key)

    async def get_many(self, keys: list[str]) -> dict[str, IdempotencyRecord]:
        if len(keys) > self._batch_get_limit:
            raise ValueError(
                f"get_many accepts at most {self._batch_get_limit} keys, "
                f"got {len(keys)}"
            )
        if not keys:
            return {}
        try:
            raw_values = await self.redis.mget([self._key(k) for k in keys])
        except RedisError as exc:
            raise TransientStorageError("Idempotency ledger read failed") from exc

        found: dict[str, IdempotencyRecord] = {}
        for key, raw in zip(keys, raw_values):
            record = _deserialize(raw)
            if record is not None:
                found[key] = record
        return found
