"""Subscription lifecycle classifier.

Maps a subscription's current attributes and the attributes that changed
to exactly one :class:`SubscriptionState`. Rules are evaluated in a fixed
order and the first match wins, which is the tie-break for updates where
several conditions hold at once (e.g. a seat change on a subscription
that is also set to cancel is a ``QUANTITY_CHANGED``). Do not reorder.
"""

from __future__ import annotations

from billing_events.core.enums import SubscriptionState
from billing_events.core.models import PreviousAttributes, SubscriptionSnapshot


def _quantity_changed(
    current: SubscriptionSnapshot, previous: PreviousAttributes,
) -> bool:
    # Only the first line item is compared.
    prev_item = previous.first_item
    if prev_item is None or prev_item.quantity is None:
        return False
    return current.items[0].quantity != prev_item.quantity


def _cancelling(current: SubscriptionSnapshot) -> bool:
    return current.cancel_at_period_end and current.status == "active"


def _uncancelling(
    current: SubscriptionSnapshot, previous: PreviousAttributes,
) -> bool:
    if previous.has("cancel_at") and current.cancel_at is None:
        return True
    return (
        previous.cancel_at_period_end is True
        and current.cancel_at_period_end is False
    )


def _renewed(current: SubscriptionSnapshot, previous: PreviousAttributes) -> bool:
    prev_item = previous.first_item
    if prev_item is None:
        return False
    item = current.items[0]
    if (
        prev_item.current_period_start is not None
        and item.current_period_start > prev_item.current_period_start
    ):
        return True
    return (
        prev_item.current_period_end is not None
        and item.current_period_end > prev_item.current_period_end
    )


def determine_state(
    current: SubscriptionSnapshot,
    previous: PreviousAttributes | None = None,
) -> SubscriptionState:
    """Classify one subscription update. Total and deterministic."""
    previous = previous or PreviousAttributes()

    if _quantity_changed(current, previous):
        return SubscriptionState.QUANTITY_CHANGED
    if _cancelling(current):
        return SubscriptionState.CANCELLING
    if _uncancelling(current, previous):
        return SubscriptionState.UNCANCELLING
    if _renewed(current, previous):
        return SubscriptionState.RENEWED
    return SubscriptionState.OTHER_UPDATE
