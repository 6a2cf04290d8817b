"""Quantity change fan-out.

Every unit of a quantity increase becomes its own ``LicenseCreated``
event so downstream consumers can track seats one by one. Each unit is
claimed under its own idempotency key, so a redelivered or partially
failed update never re-emits a unit that was already claimed.

Decreases are only logged: seat removal is driven by a separate flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from billing_events.bus.publisher import publish_in_batches
from billing_events.bus.schemas import LicenseCreatedDetail, build_entry
from billing_events.core.context import HandlerContext
from billing_events.core.enums import DetailType
from billing_events.core.ids import license_unit_key
from billing_events.core.models import (
    BusEntry,
    PreviousItem,
    SubscriptionItem,
    SubscriptionSnapshot,
    SubscriptionUpdatedEvent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuantityChange:
    item_id: str
    previous_quantity: int
    current_quantity: int

    @property
    def difference(self) -> int:
        return self.current_quantity - self.previous_quantity


@dataclass(frozen=True)
class LicenseUnit:
    key: str
    item: SubscriptionItem
    unit_index: int


def _match_previous(
    index: int, item: SubscriptionItem, previous_items: list[PreviousItem],
) -> PreviousItem | None:
    for prev in previous_items:
        if prev.id == item.id:
            return prev
    # Previous attributes sometimes omit item ids; fall back to position.
    if index < len(previous_items) and previous_items[index].id is None:
        return previous_items[index]
    return None


def calculate_quantity_changes(
    previous_items: list[PreviousItem],
    current_items: list[SubscriptionItem],
) -> list[QuantityChange]:
    """Diff item quantities between the previous and current snapshot.

    Items new in the current snapshot count from zero; items missing from
    it are reported as dropping to zero. A previous item without a
    quantity is treated as unchanged.
    """
    changes: list[QuantityChange] = []
    matched: set[int] = set()

    for index, item in enumerate(current_items):
        prev = _match_previous(index, item, previous_items)
        if prev is not None:
            matched.add(id(prev))
            if prev.quantity is None:
                continue
            previous_quantity = prev.quantity
        else:
            previous_quantity = 0

        if item.quantity != previous_quantity:
            changes.append(QuantityChange(
                item_id=item.id,
                previous_quantity=previous_quantity,
                current_quantity=item.quantity,
            ))

    for prev in previous_items:
        if id(prev) in matched or prev.id is None:
            continue
        if prev.quantity:
            changes.append(QuantityChange(
                item_id=prev.id,
                previous_quantity=prev.quantity,
                current_quantity=0,
            ))

    return changes


def _license_entry(
    ctx: HandlerContext, subscription: SubscriptionSnapshot, unit: LicenseUnit,
) -> BusEntry:
    item = unit.item
    detail = LicenseCreatedDetail(
        stripe_subscription_id=subscription.id,
        stripe_customer_id=subscription.customer,
        item_id=item.id,
        unit_index=unit.unit_index,
        product_id=item.price.product,
        price_id=item.price.id,
        status=subscription.status,
        created_at=subscription.created,
        cancel_at_period_end=subscription.cancel_at_period_end,
        trial_start=subscription.trial_start,
        trial_end=subscription.trial_end,
        expires_at=item.current_period_end,
        metadata=item.metadata,
    )
    return build_entry(
        DetailType.LICENSE_CREATED,
        detail,
        source=ctx.source,
        bus_name=ctx.bus_name,
    )


async def handle_quantity_change(
    ctx: HandlerContext, event: SubscriptionUpdatedEvent,
) -> int:
    """Emit one ``LicenseCreated`` per unit of increase.

    Returns the number of events accepted by the bus.
    """
    subscription = event.subscription
    items_by_id = {item.id: item for item in subscription.items}
    changes = calculate_quantity_changes(event.previous.items or [], subscription.items)

    units: list[LicenseUnit] = []
    for change in changes:
        if change.difference < 0:
            logger.info(
                "Quantity decreased: subscription=%s item=%s %d -> %d",
                subscription.id, change.item_id,
                change.previous_quantity, change.current_quantity,
            )
            continue

        logger.info(
            "Quantity increased: subscription=%s item=%s %d -> %d",
            subscription.id, change.item_id,
            change.previous_quantity, change.current_quantity,
        )
        item = items_by_id[change.item_id]
        for unit_index in range(change.difference):
            units.append(LicenseUnit(
                key=license_unit_key(subscription.id, item.id, event.created, unit_index),
                item=item,
                unit_index=unit_index,
            ))

    if not units:
        return 0

    # Advisory: skip units an earlier delivery already claimed without
    # attempting a write. Claims below remain authoritative.
    known = await ctx.guard.batch_check_idempotency([u.key for u in units])
    pending = [u for u in units if not known[u.key].is_duplicate]
    if len(pending) < len(units):
        logger.info(
            "Skipping %d already-claimed license units for subscription=%s",
            len(units) - len(pending), subscription.id,
        )

    async def claim(batch: list[LicenseUnit]) -> list[BusEntry]:
        entries: list[BusEntry] = []
        for unit in batch:
            result = await ctx.guard.ensure_idempotency(
                unit.key,
                {
                    "subscriptionId": subscription.id,
                    "itemId": unit.item.id,
                    "unitIndex": unit.unit_index,
                },
            )
            if not result.is_duplicate:
                entries.append(_license_entry(ctx, subscription, unit))
        return entries

    accepted = await publish_in_batches(ctx.event_bus, pending, claim)
    logger.info(
        "Sent %d LicenseCreated events for subscription=%s", accepted, subscription.id,
    )
    return accepted
