"""Test build_runtime wiring and the process entry points."""

import json

import pytest

from billing_events.bus.memory_bus import MemoryEventBus
from billing_events.bus.redis_streams import RedisStreamsBus
from billing_events.core.clock import FixedClock
from billing_events.core.config import Settings
from billing_events.core.enums import SubscriptionState
from billing_events.core.errors import ConfigError
from billing_events.deadletter.quarantine import MemoryQuarantine, RedisQuarantine
from billing_events.idempotency.ledger import MemoryIdempotencyLedger, RedisIdempotencyLedger
from billing_events.main import (
    build_runtime,
    handle_dead_letter_batch,
    handle_subscription_event,
)
from billing_events.scheduler.store import MemoryScheduleStore, RedisScheduleStore

NOW = 1_700_000_000
REDIS_URL = "redis://localhost:6379/0"


class TestBuildRuntime:
    def test_memory_backends_by_default(self):
        runtime = build_runtime(Settings(), clock=FixedClock(NOW))

        assert isinstance(runtime.ledger, MemoryIdempotencyLedger)
        assert isinstance(runtime.event_bus, MemoryEventBus)
        assert isinstance(runtime.schedules, MemoryScheduleStore)
        assert isinstance(runtime.quarantine, MemoryQuarantine)
        assert runtime.conductor.max_retries == 5

    def test_redis_backends_are_built_without_connecting(self):
        settings = Settings(
            ledger={"backend": "redis", "redis_url": REDIS_URL},
            bus={"backend": "redis", "redis_url": REDIS_URL},
            dead_letter={"quarantine_backend": "redis", "redis_url": REDIS_URL},
            scheduler={"backend": "redis", "redis_url": REDIS_URL},
        )

        runtime = build_runtime(settings)

        assert isinstance(runtime.ledger, RedisIdempotencyLedger)
        assert isinstance(runtime.event_bus, RedisStreamsBus)
        assert isinstance(runtime.schedules, RedisScheduleStore)
        assert isinstance(runtime.quarantine, RedisQuarantine)

    def test_invalid_settings_rejected(self):
        with pytest.raises(ConfigError):
            build_runtime(Settings(scheduler={"backend": "redis"}))

    async def test_start_and_stop_are_noops_for_memory(self):
        runtime = build_runtime(Settings())
        await runtime.start()
        await runtime.stop()


class TestEntryPoints:
    async def test_subscription_event(self, payloads):
        runtime = build_runtime(
            Settings(bus={"bus_name": "main-bus"}), clock=FixedClock(NOW),
        )
        detail = payloads.updated(
            subscription=payloads.subscription(items=[payloads.item(quantity=2)]),
            previous={"items": [{"id": "si_1", "quantity": 1}]},
        )

        result = await handle_subscription_event(runtime, payloads.envelope(detail))

        assert result.state == SubscriptionState.QUANTITY_CHANGED
        [entry] = runtime.event_bus.get_history()
        assert entry.bus_name == "main-bus"

    async def test_dead_letter_batch(self):
        runtime = build_runtime(
            Settings(dead_letter={"max_retries": 1}), clock=FixedClock(NOW),
        )
        body = json.dumps({
            "id": "evt-1",
            "detail-type": "LicenseCancelled",
            "source": "service.stripe",
            "time": "2023-11-14T20:00:00Z",
            "detail": {"stripeSubscriptionId": "sub_1"},
        })

        response = await handle_dead_letter_batch(runtime, {"Records": [
            {"messageId": "m1", "body": body},
            {
                "messageId": "m2",
                "body": body,
                "messageAttributes": {"retryCount": {"stringValue": "1", "dataType": "Number"}},
            },
        ]})

        assert response == {"batchItemFailures": []}
        assert len(runtime.event_bus.get_history("LicenseCancelled")) == 1
        assert len(runtime.quarantine.messages) == 1
