"""Shared fixtures for the billing-events test suite."""

from __future__ import annotations

from typing import Any

import pytest

from billing_events.bus.memory_bus import MemoryEventBus
from billing_events.core.clock import FixedClock
from billing_events.core.context import HandlerContext
from billing_events.core.models import SubscriptionSnapshot, SubscriptionUpdatedEvent
from billing_events.deadletter.quarantine import MemoryQuarantine
from billing_events.idempotency.guard import IdempotencyGuard
from billing_events.idempotency.ledger import MemoryIdempotencyLedger
from billing_events.scheduler.store import MemoryScheduleStore

NOW = 1_700_000_000  # 2023-11-14T22:13:20Z
DAY = 86_400
BUS_NAME = "billing-events-test"


# ---------------------------------------------------------------------------
# Provider payload builders
# ---------------------------------------------------------------------------

class Payloads:
    """Builds provider-shaped payloads (snake_case, ``items.data`` lists)."""

    now = NOW
    day = DAY

    def item(
        self,
        item_id: str = "si_1",
        quantity: int | None = 1,
        period_start: int = NOW - DAY,
        period_end: int = NOW + 30 * DAY,
        usage_type: str = "licensed",
        price_id: str = "price_1",
        product: str = "prod_1",
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "id": item_id,
            "object": "subscription_item",
            "quantity": quantity,
            "current_period_start": period_start,
            "current_period_end": period_end,
            "price": {
                "id": price_id,
                "product": product,
                "recurring": {"interval": "month", "usage_type": usage_type},
                "metadata": {"tier": "pro"},
            },
            "metadata": metadata or {},
        }

    def subscription(
        self,
        sub_id: str = "sub_1",
        items: list[dict[str, Any]] | None = None,
        status: str = "active",
        **fields: Any,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": sub_id,
            "object": "subscription",
            "customer": "cus_1",
            "status": status,
            "cancel_at_period_end": False,
            "cancel_at": None,
            "trial_start": None,
            "trial_end": None,
            "created": NOW - 90 * DAY,
            "metadata": {},
            "items": {"object": "list", "data": items or [self.item()]},
        }
        data.update(fields)
        return data

    def updated(
        self,
        subscription: dict[str, Any] | None = None,
        previous: dict[str, Any] | None = None,
        event_id: str = "evt_1",
        created: int = NOW,
    ) -> dict[str, Any]:
        return {
            "id": event_id,
            "object": "event",
            "type": "customer.subscription.updated",
            "created": created,
            "data": {
                "object": subscription or self.subscription(),
                "previous_attributes": previous or {},
            },
        }

    def lifecycle(
        self,
        event_type: str,
        subscription: dict[str, Any] | None = None,
        event_id: str = "evt_2",
        created: int = NOW,
    ) -> dict[str, Any]:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created,
            "data": {"object": subscription or self.subscription()},
        }

    def envelope(
        self,
        detail: dict[str, Any],
        envelope_id: str = "env_1",
        detail_type: str = "Stripe Event",
    ) -> dict[str, Any]:
        return {
            "version": "0",
            "id": envelope_id,
            "detail-type": detail_type,
            "source": "stripe.webhook",
            "time": "2023-11-14T22:13:20Z",
            "detail": detail,
        }

    # -- typed helpers ---------------------------------------------------

    def updated_event(self, **kwargs: Any) -> SubscriptionUpdatedEvent:
        return SubscriptionUpdatedEvent.model_validate(self.updated(**kwargs))

    def snapshot(self, **kwargs: Any) -> SubscriptionSnapshot:
        return SubscriptionSnapshot.model_validate(self.subscription(**kwargs))


@pytest.fixture
def payloads() -> Payloads:
    return Payloads()


# ---------------------------------------------------------------------------
# Engine components
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def ledger(clock) -> MemoryIdempotencyLedger:
    return MemoryIdempotencyLedger(clock=clock)


@pytest.fixture
def guard(ledger, clock) -> IdempotencyGuard:
    return IdempotencyGuard(ledger, clock=clock)


@pytest.fixture
def memory_bus() -> MemoryEventBus:
    return MemoryEventBus(max_entries_per_call=10)


@pytest.fixture
def schedules() -> MemoryScheduleStore:
    return MemoryScheduleStore()


@pytest.fixture
def quarantine() -> MemoryQuarantine:
    return MemoryQuarantine()


@pytest.fixture
def ctx(guard, memory_bus, schedules, clock) -> HandlerContext:
    return HandlerContext(
        guard,
        memory_bus,
        schedules,
        bus_name=BUS_NAME,
        clock=clock,
    )
