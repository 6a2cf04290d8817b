"""Test the cancellation, uncancellation and renewal handlers."""

from unittest.mock import AsyncMock

import pytest

from billing_events.bus.memory_bus import MemoryEventBus
from billing_events.core.context import HandlerContext
from billing_events.core.errors import PartialBatchFailure, TransientStorageError
from billing_events.scheduler.store import cancellation_schedule_name
from billing_events.subscription.cancellation import handle_cancellation
from billing_events.subscription.renewal import handle_renewal, renewal_key
from billing_events.subscription.uncancellation import handle_uncancellation

NOW = 1_700_000_000
DAY = 86_400


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class TestCancellation:
    def _subscription(self, payloads):
        return payloads.snapshot(
            items=[
                payloads.item("si_1", period_end=NOW + 10 * DAY),
                payloads.item("si_2", period_end=NOW - DAY),
                payloads.item("si_3", quantity=4, period_end=NOW + 20 * DAY),
            ],
            cancel_at_period_end=True,
            cancel_at=NOW + 20 * DAY,
        )

    async def test_one_event_per_active_item(self, ctx, memory_bus, payloads):
        emitted = await handle_cancellation(ctx, self._subscription(payloads))

        assert emitted == 2
        history = memory_bus.get_history("LicenseCancelled")
        assert sorted(e.detail["itemId"] for e in history) == ["si_1", "si_3"]
        si_3 = next(e.detail for e in history if e.detail["itemId"] == "si_3")
        assert si_3["quantity"] == 4
        assert si_3["cancelAtPeriodEnd"] is True
        assert si_3["cancelAt"] == NOW + 20 * DAY
        assert si_3["expiresAt"] == NOW + 20 * DAY

    async def test_every_period_elapsed_emits_nothing(self, ctx, memory_bus, payloads):
        subscription = payloads.snapshot(
            items=[payloads.item(period_end=NOW - DAY)], cancel_at_period_end=True,
        )

        assert await handle_cancellation(ctx, subscription) == 0
        assert memory_bus.calls == []

    async def test_redelivery_emits_nothing(self, ctx, memory_bus, payloads):
        subscription = self._subscription(payloads)
        await handle_cancellation(ctx, subscription)

        assert await handle_cancellation(ctx, subscription) == 0
        assert len(memory_bus.get_history("LicenseCancelled")) == 2

    async def test_failure_is_raised_after_all_items_attempted(
        self, guard, schedules, clock, payloads,
    ):
        bus = MemoryEventBus(
            rejector=lambda e: "ThrottlingException" if e.detail["itemId"] == "si_1" else None,
        )
        ctx = HandlerContext(guard, bus, schedules, bus_name="b", clock=clock)

        with pytest.raises(PartialBatchFailure) as exc_info:
            await handle_cancellation(ctx, self._subscription(payloads))

        assert exc_info.value.failed_count == 1
        assert "1 cancellation events" in str(exc_info.value)
        assert len(bus.calls) == 2
        assert [e.detail["itemId"] for e in bus.get_history()] == ["si_3"]


# ---------------------------------------------------------------------------
# Uncancellation
# ---------------------------------------------------------------------------

class TestUncancellation:
    async def test_deletes_existing_schedule(self, ctx, schedules, payloads):
        name = cancellation_schedule_name("sub_1")
        await schedules.create_schedule(name, {"subscriptionId": "sub_1"})

        assert await handle_uncancellation(ctx, payloads.snapshot()) is True
        assert name not in schedules

    async def test_missing_schedule_is_not_an_error(self, ctx, payloads):
        assert await handle_uncancellation(ctx, payloads.snapshot()) is False

    async def test_other_errors_propagate(self, guard, memory_bus, clock, payloads):
        schedules = AsyncMock()
        schedules.delete_schedule.side_effect = TransientStorageError("scheduler down")
        ctx = HandlerContext(guard, memory_bus, schedules, bus_name="b", clock=clock)

        with pytest.raises(TransientStorageError):
            await handle_uncancellation(ctx, payloads.snapshot())
        schedules.delete_schedule.assert_awaited_once_with("subscription-cancel-sub_1")

    async def test_emits_no_bus_events(self, ctx, memory_bus, payloads):
        await handle_uncancellation(ctx, payloads.snapshot())
        assert memory_bus.calls == []


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------

class TestRenewal:
    def _subscription(self, payloads, offset: int = 0):
        return payloads.snapshot(items=[
            payloads.item(
                "si_1", period_start=NOW + offset, period_end=NOW + offset + 30 * DAY,
            ),
            payloads.item(
                "si_2",
                usage_type="metered",
                price_id="price_meter",
                period_start=NOW + offset - 3600,
                period_end=NOW + offset + 30 * DAY,
            ),
        ])

    async def test_emits_single_renewal_event(self, ctx, memory_bus, payloads):
        assert await handle_renewal(ctx, self._subscription(payloads)) is True

        history = memory_bus.get_history("SubscriptionRenewed")
        assert len(history) == 1
        detail = history[0].detail
        assert detail["earliestRenewalDate"] == NOW - 3600
        assert detail["cancelAtPeriodEnd"] is False
        assert [i["itemId"] for i in detail["items"]] == ["si_1", "si_2"]

    async def test_item_metadata_reflects_usage_type(self, ctx, memory_bus, payloads):
        await handle_renewal(ctx, self._subscription(payloads))

        licensed, metered = memory_bus.get_history()[0].detail["items"]
        assert licensed["metadata"] == {"tier": "pro", "usage_type": "licensed"}
        assert metered["metadata"] == {
            "tier": "pro", "metered": "true", "usage_type": "metered",
        }

    async def test_redelivery_is_duplicate(self, ctx, memory_bus, payloads):
        subscription = self._subscription(payloads)
        await handle_renewal(ctx, subscription)

        assert await handle_renewal(ctx, subscription) is False
        assert len(memory_bus.get_history()) == 1

    async def test_next_period_renews_again(self, ctx, memory_bus, payloads):
        await handle_renewal(ctx, self._subscription(payloads))

        assert await handle_renewal(ctx, self._subscription(payloads, offset=30 * DAY)) is True
        assert len(memory_bus.get_history("SubscriptionRenewed")) == 2

    def test_key_uses_earliest_period_start(self, payloads):
        assert renewal_key(self._subscription(payloads)) == (
            f"subscription-renewed-sub_1-{NOW - 3600}"
        )
