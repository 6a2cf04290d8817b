"""Cancellation schedule stores.

A scheduled cancellation is an action registered elsewhere (when a
subscription is set to cancel) under the name
``subscription-cancel-{subscription_id}``. This engine only ever deletes
schedules, when a subscription is uncancelled.
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from billing_events.core.errors import ScheduleNotFound, TransientStorageError

logger = logging.getLogger(__name__)


def cancellation_schedule_name(subscription_id: str) -> str:
    return f"subscription-cancel-{subscription_id}"


class MemoryScheduleStore:
    """In-memory schedule store."""

    def __init__(self) -> None:
        self._schedules: dict[str, dict[str, Any]] = {}

    async def create_schedule(self, name: str, payload: dict[str, Any]) -> None:
        self._schedules[name] = payload

    async def delete_schedule(self, name: str) -> None:
        if name not in self._schedules:
            raise ScheduleNotFound(name)
        del self._schedules[name]

    def __contains__(self, name: str) -> bool:
        return name in self._schedules


class RedisScheduleStore:
    """Schedules kept as Redis keys under a prefix."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "billing:schedule:",
        client: aioredis.Redis | None = None,
    ) -> None:
        self._url = redis_url
        self._prefix = prefix
        self._redis = client

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(self._url, decode_responses=True)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError(
                "RedisScheduleStore not connected. Call connect() first."
            )
        return self._redis

    async def delete_schedule(self, name: str) -> None:
        try:
            deleted = await self.redis.delete(f"{self._prefix}{name}")
        except RedisError as exc:
            raise TransientStorageError(f"Schedule store unavailable: {name}") from exc
        if not deleted:
            raise ScheduleNotFound(name)
