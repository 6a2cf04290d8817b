"""HandlerContext: the collaborators every subscription handler uses.

Built once at process start and passed explicitly into each handler.
Handlers never construct clients themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .clock import IClock, WallClock
from .interfaces import IEventBus, IScheduleStore

if TYPE_CHECKING:
    from billing_events.idempotency.guard import IdempotencyGuard


class HandlerContext:
    """Injected dependencies for subscription handlers."""

    def __init__(
        self,
        guard: IdempotencyGuard,
        event_bus: IEventBus,
        schedules: IScheduleStore,
        *,
        bus_name: str,
        source: str = "service.stripe",
        clock: IClock | None = None,
    ) -> None:
        self.guard = guard
        self.event_bus = event_bus
        self.schedules = schedules
        self.bus_name = bus_name
        self.source = source
        self.clock = clock or WallClock()
