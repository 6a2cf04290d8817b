"""Canonical ID and timestamp factories for the engine.

ID Categories
-------------
1. Internal IDs: UUID v4 strings (bus entry ids, trace ids)
2. External IDs: provider-assigned, opaque strings (subscription, item, customer)
3. Idempotency keys: ``{event_type}-{resource_id}-{timestamp}``, deterministic
   so repeated deliveries of one logical event collide on the same key.

Timestamp Rule
--------------
All datetimes are timezone-aware UTC. Provider timestamps stay as epoch
seconds (``int``) because they are part of idempotency keys.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    """ISO-8601 with a ``Z`` suffix, the format the bus uses for ``time``."""
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_event_id(
    event_type: str,
    resource_id: str,
    timestamp: int | None = None,
) -> str:
    """Build an idempotency key for a logical event.

    Parameters
    ----------
    event_type:
        Kind of event, e.g. ``"subscription-renewed"``.
    resource_id:
        Provider resource id, e.g. the subscription id.
    timestamp:
        Epoch seconds identifying the logical occurrence. Defaults to now,
        which makes the key unique per call.
    """
    ts = timestamp if timestamp is not None else int(utc_now().timestamp())
    return f"{event_type}-{resource_id}-{ts}"


def license_unit_key(
    subscription_id: str, item_id: str, occurred_at: int, unit_index: int,
) -> str:
    """Idempotency key for one unit of a quantity increase.

    *occurred_at* is the provider event's creation time, so redeliveries of
    one update collide unit by unit while a later increase on the same item
    gets fresh keys. *unit_index* is zero-based within the increase.
    """
    return f"license-created-{subscription_id}-{item_id}-{occurred_at}-{unit_index}"


def license_cancel_key(subscription_id: str, item_id: str, period_end: int) -> str:
    """Idempotency key for cancelling one item for one billing period."""
    return f"license-cancelled-{subscription_id}-{item_id}-{period_end}"
