"""Event bus: memory and Redis Streams publishers, detail schemas, publish helpers."""

from billing_events.bus.bus import create_event_bus
from billing_events.bus.memory_bus import MemoryEventBus
from billing_events.bus.redis_streams import RedisStreamsBus

__all__ = ["MemoryEventBus", "RedisStreamsBus", "create_event_bus"]
