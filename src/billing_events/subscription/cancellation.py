"""Cancellation handler.

One ``LicenseCancelled`` event per item whose billing period has not yet
elapsed. Item attempts are independent: every one runs to completion, and
only then are failures aggregated into a single error.
"""

from __future__ import annotations

import asyncio
import logging

from billing_events.bus.publisher import send_events
from billing_events.bus.schemas import LicenseCancelledDetail, build_entry
from billing_events.core.context import HandlerContext
from billing_events.core.enums import DetailType
from billing_events.core.errors import PartialBatchFailure
from billing_events.core.ids import license_cancel_key
from billing_events.core.models import SubscriptionItem, SubscriptionSnapshot

logger = logging.getLogger(__name__)


async def _cancel_item(
    ctx: HandlerContext, subscription: SubscriptionSnapshot, item: SubscriptionItem,
) -> bool:
    """Returns ``True`` if an event was emitted, ``False`` on duplicate."""
    key = license_cancel_key(subscription.id, item.id, item.current_period_end)
    claim = await ctx.guard.ensure_idempotency(
        key,
        {
            "subscriptionId": subscription.id,
            "itemId": item.id,
            "cancelAt": subscription.cancel_at,
            "cancelAtPeriodEnd": subscription.cancel_at_period_end,
        },
    )
    if claim.is_duplicate:
        logger.info(
            "Cancellation already processed: subscription=%s item=%s",
            subscription.id, item.id,
        )
        return False

    detail = LicenseCancelledDetail(
        stripe_subscription_id=subscription.id,
        stripe_customer_id=subscription.customer,
        item_id=item.id,
        product_id=item.price.product,
        price_id=item.price.id,
        quantity=item.quantity,
        cancel_at=subscription.cancel_at,
        cancel_at_period_end=subscription.cancel_at_period_end,
        expires_at=item.current_period_end,
        metadata=item.metadata,
    )
    await send_events(ctx.event_bus, [build_entry(
        DetailType.LICENSE_CANCELLED,
        detail,
        source=ctx.source,
        bus_name=ctx.bus_name,
    )])
    return True


async def handle_cancellation(
    ctx: HandlerContext, subscription: SubscriptionSnapshot,
) -> int:
    """Emit cancellations for every item still inside its period.

    Returns the number of events emitted. Raises
    :class:`PartialBatchFailure` naming the failure count once all item
    attempts have finished.
    """
    now = ctx.clock.epoch_seconds()
    active = [i for i in subscription.items if i.current_period_end > now]
    skipped = len(subscription.items) - len(active)
    if skipped:
        logger.info(
            "Skipping %d items with elapsed periods for subscription=%s",
            skipped, subscription.id,
        )
    if not active:
        logger.warning(
            "Subscription %s has already ended, nothing to cancel", subscription.id,
        )
        return 0

    outcomes = await asyncio.gather(
        *(_cancel_item(ctx, subscription, item) for item in active),
        return_exceptions=True,
    )

    failures = [o for o in outcomes if isinstance(o, BaseException)]
    for item, outcome in zip(active, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(
                "Cancellation failed: subscription=%s item=%s error=%s",
                subscription.id, item.id, outcome,
            )
    if failures:
        raise PartialBatchFailure(len(failures), "cancellation events")

    emitted = sum(1 for o in outcomes if o is True)
    logger.info(
        "Sent %d LicenseCancelled events for subscription=%s", emitted, subscription.id,
    )
    return emitted
