"""Protocol interfaces for the billing event engine.

All external collaborators are defined here as Protocol classes.
Implementations (memory / redis) are swapped at wiring time without
changing the handlers that use them.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .models import BusEntry, IdempotencyRecord, PublishResult


# ---------------------------------------------------------------------------
# Idempotency ledger
# ---------------------------------------------------------------------------

@runtime_checkable
class IIdempotencyLedger(Protocol):
    """Conditional-insert-or-fail key-value store."""

    async def put_if_absent(self, record: IdempotencyRecord) -> None:
        """Write *record* only if its key is absent.

        Raises ``ConditionalCheckFailed`` when the key exists and
        ``TransientStorageError`` for any other storage failure.
        """
        ...

    async def get_many(self, keys: list[str]) -> dict[str, IdempotencyRecord]:
        """Read up to ``batch_get_limit`` keys. Missing keys are omitted."""
        ...

    @property
    def batch_get_limit(self) -> int: ...


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------

@runtime_checkable
class IEventBus(Protocol):
    """Stateless batch publisher."""

    @property
    def max_entries_per_call(self) -> int: ...

    async def publish(self, entries: list[BusEntry]) -> PublishResult:
        """Publish up to ``max_entries_per_call`` entries.

        Per-entry failures are reported in the result, not raised.
        """
        ...


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

@runtime_checkable
class IScheduleStore(Protocol):
    """Scheduled cancellation actions, keyed by name."""

    async def delete_schedule(self, name: str) -> None:
        """Raises ``ScheduleNotFound`` when no schedule has that name."""
        ...


# ---------------------------------------------------------------------------
# Quarantine
# ---------------------------------------------------------------------------

@runtime_checkable
class IQuarantine(Protocol):
    """Terminal store for messages that exhausted their retries."""

    async def send(self, body: dict[str, Any], attributes: dict[str, str]) -> None: ...
