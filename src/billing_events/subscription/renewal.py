"""Renewal handler.

A renewal period is announced exactly once: the idempotency key is the
subscription id plus the earliest ``current_period_start`` across items,
which is stable across redeliveries and changes with every new period.
"""

from __future__ import annotations

import logging
from typing import Any

from billing_events.bus.publisher import send_events
from billing_events.bus.schemas import RenewedItem, SubscriptionRenewedDetail, build_entry
from billing_events.core.context import HandlerContext
from billing_events.core.enums import DetailType, UsageType
from billing_events.core.ids import generate_event_id
from billing_events.core.models import SubscriptionItem, SubscriptionSnapshot

logger = logging.getLogger(__name__)


def earliest_period_start(subscription: SubscriptionSnapshot) -> int:
    return min(item.current_period_start for item in subscription.items)


def renewal_key(subscription: SubscriptionSnapshot) -> str:
    return generate_event_id(
        "subscription-renewed", subscription.id, earliest_period_start(subscription),
    )


def _item_metadata(item: SubscriptionItem) -> dict[str, Any]:
    metadata = dict(item.price.metadata)
    if item.is_metered:
        metadata.update({"metered": "true", "usage_type": UsageType.METERED.value})
    else:
        metadata["usage_type"] = UsageType.LICENSED.value
    return metadata


async def handle_renewal(
    ctx: HandlerContext, subscription: SubscriptionSnapshot,
) -> bool:
    """Emit one ``SubscriptionRenewed`` event. Returns ``False`` on duplicate."""
    earliest = earliest_period_start(subscription)
    key = renewal_key(subscription)

    claim = await ctx.guard.ensure_idempotency(
        key,
        {
            "subscriptionId": subscription.id,
            "customerId": subscription.customer,
            "earliestRenewalDate": earliest,
            "cancelAtPeriodEnd": subscription.cancel_at_period_end,
        },
    )
    if claim.is_duplicate:
        logger.info(
            "Renewal already processed: subscription=%s key=%s", subscription.id, key,
        )
        return False

    detail = SubscriptionRenewedDetail(
        stripe_subscription_id=subscription.id,
        stripe_customer_id=subscription.customer,
        earliest_renewal_date=earliest,
        cancel_at_period_end=subscription.cancel_at_period_end,
        items=[
            RenewedItem(
                item_id=item.id,
                quantity=item.quantity,
                started=item.current_period_start,
                expires_at=item.current_period_end,
                product_id=item.price.product,
                price_id=item.price.id,
                metadata=_item_metadata(item),
            )
            for item in subscription.items
        ],
    )
    await send_events(ctx.event_bus, [build_entry(
        DetailType.SUBSCRIPTION_RENEWED,
        detail,
        source=ctx.source,
        bus_name=ctx.bus_name,
    )])
    logger.info("Sent SubscriptionRenewed for subscription=%s", subscription.id)
    return True
