"""Event bus factory.

Creates the appropriate event bus implementation from settings.
"""

from __future__ import annotations

from billing_events.core.config import BusConfig
from billing_events.core.enums import Backend

from .memory_bus import MemoryEventBus
from .redis_streams import RedisStreamsBus


def create_event_bus(config: BusConfig) -> MemoryEventBus | RedisStreamsBus:
    """Create an event bus for the configured backend.

    - MEMORY: MemoryEventBus (no external deps, inspectable)
    - REDIS: RedisStreamsBus (persistent, observable)
    """
    if config.backend == Backend.MEMORY:
        return MemoryEventBus(max_entries_per_call=config.max_entries_per_publish)
    return RedisStreamsBus(
        redis_url=config.redis_url,
        max_entries_per_call=config.max_entries_per_publish,
        max_stream_length=config.max_stream_length,
    )
