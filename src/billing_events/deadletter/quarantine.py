"""Quarantine targets for dead-letter messages that exhausted their retries.

Quarantined messages wait for manual inspection; nothing in this engine
reads them back.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from billing_events.core.errors import TransientStorageError

logger = logging.getLogger(__name__)


@dataclass
class QuarantinedMessage:
    body: dict[str, Any]
    attributes: dict[str, str] = field(default_factory=dict)


class MemoryQuarantine:
    """In-memory quarantine for tests and local replay."""

    def __init__(self) -> None:
        self._messages: list[QuarantinedMessage] = []

    async def send(self, body: dict[str, Any], attributes: dict[str, str]) -> None:
        self._messages.append(QuarantinedMessage(body=body, attributes=dict(attributes)))

    @property
    def messages(self) -> list[QuarantinedMessage]:
        return list(self._messages)


class RedisQuarantine:
    """Quarantine backed by a Redis list (``LPUSH``)."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        key: str = "billing:quarantine",
        client: aioredis.Redis | None = None,
    ) -> None:
        self._url = redis_url
        self._key = key
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
            raise RuntimeError("RedisQuarantine not connected. Call connect() first.")
        return self._redis

    async def send(self, body: dict[str, Any], attributes: dict[str, str]) -> None:
        payload = json.dumps({"body": body, "attributes": attributes}, default=str)
        try:
            await self.redis.lpush(self._key, payload)
        except RedisError as exc:
            raise TransientStorageError("Quarantine unavailable") from exc
