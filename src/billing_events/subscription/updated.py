"""Subscription update processing: classify, then dispatch to one handler."""

from __future__ import annotations

import logging

from billing_events.core.context import HandlerContext
from billing_events.core.enums import SubscriptionState
from billing_events.core.models import SubscriptionUpdatedEvent
from billing_events.observability.metrics import record_state

from .cancellation import handle_cancellation
from .classifier import determine_state
from .quantity import handle_quantity_change
from .renewal import handle_renewal
from .uncancellation import handle_uncancellation

logger = logging.getLogger(__name__)


class SubscriptionUpdatedProcessor:
    """Runs the handler matching an update's classified state."""

    def __init__(self, ctx: HandlerContext) -> None:
        self._ctx = ctx

    async def process(self, event: SubscriptionUpdatedEvent) -> SubscriptionState:
        subscription = event.subscription
        state = determine_state(subscription, event.previous)
        record_state(state.value)
        logger.info(
            "Classified subscription=%s status=%s state=%s",
            subscription.id, subscription.status, state.value,
        )

        try:
            if state == SubscriptionState.QUANTITY_CHANGED:
                await handle_quantity_change(self._ctx, event)
            elif state == SubscriptionState.CANCELLING:
                await handle_cancellation(self._ctx, subscription)
            elif state == SubscriptionState.UNCANCELLING:
                await handle_uncancellation(self._ctx, subscription)
            elif state == SubscriptionState.RENEWED:
                await handle_renewal(self._ctx, subscription)
            else:
                previous = event.previous
                logger.info(
                    "Subscription updated (other change): subscription=%s "
                    "status_changed=%s cancel_at_period_end_changed=%s",
                    subscription.id,
                    previous.has("status") and previous.status != subscription.status,
                    previous.has("cancel_at_period_end")
                    and previous.cancel_at_period_end != subscription.cancel_at_period_end,
                )
        except Exception:
            logger.error(
                "Error processing subscription=%s state=%s",
                subscription.id, state.value, exc_info=True,
            )
            raise

        return state
