"""Idempotency guard.

Claims a deterministic key exactly once. The ledger's conditional insert
is the race-resolution mechanism for concurrent duplicate deliveries:
whichever write lands first wins, every other claimant sees
``is_duplicate=True`` and must perform zero side effects.

``batch_check_idempotency`` is a read-only, advisory pre-check. It does
not claim keys; callers still claim each key before emitting.
"""

from __future__ import annotations

import logging
from typing import Any

from billing_events.core.clock import IClock, WallClock
from billing_events.core.errors import ConditionalCheckFailed
from billing_events.core.interfaces import IIdempotencyLedger
from billing_events.core.models import IdempotencyRecord, IdempotencyResult
from billing_events.observability.metrics import record_duplicate

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86_400


class IdempotencyGuard:
    """Wraps an :class:`IIdempotencyLedger` with claim / pre-check semantics."""

    def __init__(
        self,
        ledger: IIdempotencyLedger,
        clock: IClock | None = None,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._ledger = ledger
        self._clock = clock or WallClock()
        self._default_ttl = default_ttl_seconds

    async def ensure_idempotency(
        self,
        key: str,
        data: dict[str, Any] | None = None,
        ttl_seconds: int | None = None,
    ) -> IdempotencyResult:
        """Claim *key*.

        Returns ``is_duplicate=False`` when this call wrote the record and
        the caller should proceed. Any storage failure other than the
        key-exists condition propagates.
        """
        now = self._clock.epoch_seconds()
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        record = IdempotencyRecord(
            key=key,
            processed_at=now,
            ttl=now + ttl,
            data=data,
        )

        try:
            await self._ledger.put_if_absent(record)
        except ConditionalCheckFailed:
            logger.info("Event already processed: key=%s", key)
            record_duplicate(key)
            return IdempotencyResult(is_duplicate=True)
        except Exception:
            logger.error("Error claiming idempotency key=%s", key, exc_info=True)
            raise

        logger.info("Event marked as processed: key=%s", key)
        return IdempotencyResult(is_duplicate=False)

    async def batch_check_idempotency(
        self, keys: list[str]
    ) -> dict[str, IdempotencyResult]:
        """Read-only bulk check, chunked to the ledger's per-request limit.

        Empty input returns an empty dict without touching the ledger.
        """
        results: dict[str, IdempotencyResult] = {}
        if not keys:
            return results

        limit = self._ledger.batch_get_limit
        for start in range(0, len(keys), limit):
            chunk = keys[start:start + limit]
            try:
                found = await self._ledger.get_many(chunk)
            except Exception:
                logger.error(
                    "Error in batch idempotency check: batch_size=%d",
                    len(chunk),
                    exc_info=True,
                )
                raise

            for key in chunk:
                record = found.get(key)
                if record is not None:
                    results[key] = IdempotencyResult(
                        is_duplicate=True, existing_data=record.data,
                    )
                else:
                    results[key] = IdempotencyResult(is_duplicate=False)

        return results
