"""Publishing helpers shared by every handler.

A non-zero failed-entry count is always surfaced as
:class:`PartialBatchFailure`, never swallowed.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from billing_events.core.errors import PartialBatchFailure
from billing_events.core.interfaces import IEventBus
from billing_events.core.models import BusEntry, PublishResult
from billing_events.observability.metrics import record_emitted

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def send_events(bus: IEventBus, entries: list[BusEntry]) -> PublishResult:
    """Publish one call's worth of entries, raising on any failed entry."""
    result = await bus.publish(entries)

    if result.failed_entry_count > 0:
        logger.error(
            "Bus publish partial failure: failed_entry_count=%d errors=%s",
            result.failed_entry_count,
            [(e.error_code, e.error_message) for e in result.failed_entries],
        )
        raise PartialBatchFailure(result.failed_entry_count)

    for detail_type, count in Counter(e.detail_type for e in entries).items():
        record_emitted(detail_type, count)
    return result


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def publish_in_batches(
    bus: IEventBus,
    candidates: Sequence[T],
    to_entries: Callable[[list[T]], Awaitable[list[BusEntry]]],
) -> int:
    """Publish *candidates* in sequential batches of the bus's max size.

    *to_entries* turns one batch of candidates into the entries to send,
    typically by claiming each candidate's idempotency key and dropping
    duplicates. It runs per batch, right before that batch is sent, so a
    failed batch stops the run without touching later candidates, and
    batches already accepted are never sent again.

    Returns the number of entries accepted by the bus.
    """
    accepted = 0
    for index, batch in enumerate(chunked(candidates, bus.max_entries_per_call)):
        entries = await to_entries(batch)
        if not entries:
            continue
        try:
            await send_events(bus, entries)
        except Exception:
            logger.error(
                "Batch %d failed after %d entries accepted", index, accepted,
            )
            raise
        accepted += len(entries)
    return accepted
