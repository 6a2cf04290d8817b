"""Application bootstrap.

Wires every collaborator once, from settings, and exposes the two
inbound entry points: subscription events and dead-letter batches.
Handlers receive their dependencies explicitly and never build clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .bus.bus import create_event_bus
from .bus.memory_bus import MemoryEventBus
from .bus.redis_streams import RedisStreamsBus
from .core.clock import IClock, WallClock
from .core.config import Settings, load_settings
from .core.context import HandlerContext
from .core.enums import Backend
from .deadletter.conductor import DeadLetterConductor
from .deadletter.quarantine import MemoryQuarantine, RedisQuarantine
from .idempotency.guard import IdempotencyGuard
from .idempotency.ledger import MemoryIdempotencyLedger, RedisIdempotencyLedger
from .observability.logger import set_trace_id, setup_logging
from .observability.metrics import start_metrics_server
from .scheduler.store import MemoryScheduleStore, RedisScheduleStore
from .subscription.router import RouteResult, SubscriptionEventRouter

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything one process needs to handle inbound events."""

    settings: Settings
    clock: IClock
    ledger: MemoryIdempotencyLedger | RedisIdempotencyLedger
    event_bus: MemoryEventBus | RedisStreamsBus
    schedules: MemoryScheduleStore | RedisScheduleStore
    quarantine: MemoryQuarantine | RedisQuarantine
    guard: IdempotencyGuard
    router: SubscriptionEventRouter
    conductor: DeadLetterConductor

    async def start(self) -> None:
        """Open connections for every redis-backed component."""
        if isinstance(self.ledger, RedisIdempotencyLedger):
            await self.ledger.connect()
        if isinstance(self.event_bus, RedisStreamsBus):
            await self.event_bus.start()
        if isinstance(self.schedules, RedisScheduleStore):
            await self.schedules.connect()
        if isinstance(self.quarantine, RedisQuarantine):
            await self.quarantine.connect()

    async def stop(self) -> None:
        if isinstance(self.ledger, RedisIdempotencyLedger):
            await self.ledger.close()
        if isinstance(self.event_bus, RedisStreamsBus):
            await self.event_bus.stop()
        if isinstance(self.schedules, RedisScheduleStore):
            await self.schedules.close()
        if isinstance(self.quarantine, RedisQuarantine):
            await self.quarantine.close()


def build_runtime(settings: Settings, clock: IClock | None = None) -> Runtime:
    """Construct every component from *settings*.

    Raises ``ConfigError`` when the settings cannot be wired.
    """
    settings.validate_runtime()
    clock = clock or WallClock()

    ledger: MemoryIdempotencyLedger | RedisIdempotencyLedger
    if settings.ledger.backend == Backend.REDIS:
        ledger = RedisIdempotencyLedger(
            settings.ledger.redis_url,
            prefix=settings.ledger.prefix,
            batch_get_limit=settings.ledger.batch_get_limit,
        )
    else:
        ledger = MemoryIdempotencyLedger(
            clock=clock, batch_get_limit=settings.ledger.batch_get_limit,
        )

    schedules: MemoryScheduleStore | RedisScheduleStore
    if settings.scheduler.backend == Backend.REDIS:
        schedules = RedisScheduleStore(
            settings.scheduler.redis_url, prefix=settings.scheduler.prefix,
        )
    else:
        schedules = MemoryScheduleStore()

    quarantine: MemoryQuarantine | RedisQuarantine
    if settings.dead_letter.quarantine_backend == Backend.REDIS:
        quarantine = RedisQuarantine(
            settings.dead_letter.redis_url, key=settings.dead_letter.quarantine_key,
        )
    else:
        quarantine = MemoryQuarantine()

    event_bus = create_event_bus(settings.bus)
    guard = IdempotencyGuard(
        ledger, clock=clock, default_ttl_seconds=settings.ledger.default_ttl_seconds,
    )
    ctx = HandlerContext(
        guard,
        event_bus,
        schedules,
        bus_name=settings.bus.bus_name,
        source=settings.service_source,
        clock=clock,
    )
    conductor = DeadLetterConductor(
        event_bus,
        quarantine,
        bus_name=settings.bus.bus_name,
        max_retries=settings.dead_letter.max_retries,
        clock=clock,
    )

    return Runtime(
        settings=settings,
        clock=clock,
        ledger=ledger,
        event_bus=event_bus,
        schedules=schedules,
        quarantine=quarantine,
        guard=guard,
        router=SubscriptionEventRouter(ctx),
        conductor=conductor,
    )


def configure_process(settings: Settings) -> None:
    """Logging and the optional metrics exporter."""
    obs = settings.observability
    setup_logging(
        level=obs.log_level, format=obs.log_format, stage=settings.stage,
    )
    start_metrics_server(obs.metrics_port)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def handle_subscription_event(
    runtime: Runtime, envelope: dict[str, Any],
) -> RouteResult:
    """Handle one inbound subscription envelope.

    Errors propagate so the invoking transport retries the delivery.
    """
    return await runtime.router.route(envelope)


async def handle_dead_letter_batch(
    runtime: Runtime, batch: dict[str, Any],
) -> dict[str, list[dict[str, str]]]:
    """Handle one dead-letter batch; returns the batch item failures."""
    set_trace_id(f"dlq-{runtime.clock.epoch_seconds()}")
    return await runtime.conductor.handle(batch)


async def run_subscription_events(
    envelopes: list[dict[str, Any]],
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> list[RouteResult]:
    """Load settings, wire a runtime and route *envelopes* in order."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    configure_process(settings)
    runtime = build_runtime(settings)

    await runtime.start()
    try:
        results = []
        for envelope in envelopes:
            results.append(await handle_subscription_event(runtime, envelope))
        return results
    finally:
        await runtime.stop()
        logger.info("Shutdown complete")


async def run_dead_letter_batch(
    batch: dict[str, Any],
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> dict[str, list[dict[str, str]]]:
    """Load settings, wire a runtime and process one dead-letter batch."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    configure_process(settings)
    runtime = build_runtime(settings)

    await runtime.start()
    try:
        return await handle_dead_letter_batch(runtime, batch)
    finally:
        await runtime.stop()
        logger.info("Shutdown complete")
