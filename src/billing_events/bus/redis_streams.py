"""Redis Streams event bus implementation.

Each bus name maps to one stream; every entry becomes one ``XADD``.
Entries of a publish call are sent in a single non-transactional pipeline
so a failure of one entry is reported per entry and never hides the
others. Connection-level failures are raised as
:class:`TransientStorageError` so the invoking transport retries.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from billing_events.core.errors import TransientStorageError
from billing_events.core.ids import isoformat
from billing_events.core.models import BusEntry, EntryResult, PublishResult

logger = logging.getLogger(__name__)


class RedisStreamsBus:
    """Production bus backed by Redis Streams."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        max_entries_per_call: int = 10,
        max_stream_length: int = 10_000,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._max_entries = max_entries_per_call
        self._max_len = max_stream_length
        self._redis = client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url, decode_responses=True
            )

    async def stop(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def max_entries_per_call(self) -> int:
        return self._max_entries

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    @staticmethod
    def _fields(entry: BusEntry) -> dict[str, str]:
        fields = {
            "_id": entry.entry_id,
            "_source": entry.source,
            "_type": entry.detail_type,
            "_data": json.dumps(entry.detail, default=str),
        }
        if entry.time is not None:
            fields["_time"] = isoformat(entry.time)
        return fields

    async def publish(self, entries: list[BusEntry]) -> PublishResult:
        if not self._redis:
            raise RuntimeError("RedisStreamsBus not started")
        if len(entries) > self._max_entries:
            raise ValueError(
                f"publish accepts at most {self._max_entries} entries, "
                f"got {len(entries)}"
            )

        pipe = self._redis.pipeline(transaction=False)
        for entry in entries:
            pipe.xadd(
                entry.bus_name,
                self._fields(entry),
                maxlen=self._max_len,
                approximate=True,
            )
        try:
            replies: list[Any] = await pipe.execute(raise_on_error=False)
        except RedisError as exc:
            raise TransientStorageError("Event bus unavailable") from exc

        results: list[EntryResult] = []
        failed = 0
        for entry, reply in zip(entries, replies):
            if isinstance(reply, Exception):
                failed += 1
                logger.warning(
                    "XADD failed for %s on %s: %s",
                    entry.detail_type, entry.bus_name, reply,
                )
                results.append(EntryResult(
                    error_code=type(reply).__name__,
                    error_message=str(reply),
                ))
            else:
                results.append(EntryResult(event_id=str(reply)))

        return PublishResult(failed_entry_count=failed, entries=results)
