"""Exactly-once claims over a conditional-insert ledger."""

from billing_events.idempotency.guard import IdempotencyGuard
from billing_events.idempotency.ledger import MemoryIdempotencyLedger, RedisIdempotencyLedger

__all__ = ["IdempotencyGuard", "MemoryIdempotencyLedger", "RedisIdempotencyLedger"]
