"""Auto-upgrade policy.

Decides whether a subscription update is an upgrade (trial to paid, or
explicitly flagged by checkout metadata). The router invokes it
explicitly for updates classified as ``OTHER_UPDATE``; it is never a side
effect of the classifier and never suppresses a lifecycle handler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from billing_events.bus.publisher import send_events
from billing_events.bus.schemas import SubscriptionUpgradedDetail, UpgradedItem, build_entry
from billing_events.core.context import HandlerContext
from billing_events.core.enums import DetailType
from billing_events.core.ids import generate_event_id, isoformat
from billing_events.core.models import SubscriptionUpdatedEvent

logger = logging.getLogger(__name__)

TRIAL_TO_PAID = "trial_to_paid"


@dataclass(frozen=True)
class UpgradeDecision:
    is_upgrade: bool
    reason: str
    upgrade_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


def _trial_ended_early(event: SubscriptionUpdatedEvent) -> bool:
    subscription = event.subscription
    previous = event.previous
    return (
        previous.status == "trialing"
        and subscription.status == "active"
        and subscription.trial_end is not None
        and previous.trial_end is not None
        and subscription.trial_end < previous.trial_end
    )


def evaluate_upgrade(
    event: SubscriptionUpdatedEvent, upgraded_at: str,
) -> UpgradeDecision:
    """Apply the upgrade policy to one update.

    *upgraded_at* is stamped into derived metadata when the upgrade is
    inferred from a trial ending early rather than flagged explicitly.
    """
    subscription = event.subscription
    metadata = subscription.metadata

    if metadata.get("is_upgrade") == "true":
        if not metadata.get("upgrade_type"):
            return UpgradeDecision(
                is_upgrade=False, reason="flagged upgrade without upgrade_type",
            )
        return UpgradeDecision(
            is_upgrade=True,
            reason="metadata",
            upgrade_type=metadata["upgrade_type"],
            metadata=dict(metadata),
        )

    if _trial_ended_early(event):
        return UpgradeDecision(
            is_upgrade=True,
            reason="trial ended early",
            upgrade_type=TRIAL_TO_PAID,
            metadata={
                **metadata,
                "is_upgrade": "true",
                "upgrade_type": TRIAL_TO_PAID,
                "upgraded_at": upgraded_at,
                "original_trial_subscription_id": subscription.id,
            },
        )

    return UpgradeDecision(is_upgrade=False, reason="no upgrade signal")


async def handle_upgrade(
    ctx: HandlerContext,
    event: SubscriptionUpdatedEvent,
    decision: UpgradeDecision,
) -> bool:
    """Announce an upgrade once per subscription.

    Returns ``False`` when this subscription's upgrade was already
    announced.
    """
    subscription = event.subscription
    key = generate_event_id("subscription-upgraded", subscription.id, subscription.created)
    claim = await ctx.guard.ensure_idempotency(
        key,
        {"subscriptionId": subscription.id, "upgradeType": decision.upgrade_type},
    )
    if claim.is_duplicate:
        return False

    detail = SubscriptionUpgradedDetail(
        stripe_subscription_id=subscription.id,
        stripe_customer_id=subscription.customer,
        upgrade_type=decision.upgrade_type or TRIAL_TO_PAID,
        original_trial_subscription_id=decision.metadata.get(
            "original_trial_subscription_id"
        ),
        status=subscription.status,
        created_at=subscription.created,
        items=[
            UpgradedItem(
                item_id=item.id,
                product_id=item.price.product,
                price_id=item.price.id,
                quantity=item.quantity,
                expires_at=item.current_period_end,
                metadata=item.metadata,
            )
            for item in subscription.items
        ],
        metadata=decision.metadata,
    )
    await send_events(ctx.event_bus, [build_entry(
        DetailType.SUBSCRIPTION_UPGRADED,
        detail,
        source=ctx.source,
        bus_name=ctx.bus_name,
    )])
    logger.info(
        "Sent SubscriptionUpgraded for subscription=%s (%s)",
        subscription.id, decision.reason,
    )
    return True


def upgraded_at_now(ctx: HandlerContext) -> str:
    return isoformat(ctx.clock.now())
