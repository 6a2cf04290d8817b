"""Subscription event router.

Entry point for inbound bus envelopes carrying payments-provider
subscription events. The envelope and its payload are validated once;
from there on every handler works on typed models.

Routing for ``customer.subscription.updated`` is two explicit steps:

1. classification and the matching lifecycle handler;
2. for ``OTHER_UPDATE`` only, the auto-upgrade policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from billing_events.bus.publisher import send_events
from billing_events.bus.schemas import (
    SubscriptionDeletedDetail,
    SubscriptionStatusDetail,
    build_entry,
)
from billing_events.core.context import HandlerContext
from billing_events.core.enums import DetailType, ProviderEventType, SubscriptionState
from billing_events.core.ids import generate_event_id
from billing_events.core.models import (
    SubscriptionLifecycleEvent,
    SubscriptionUpdatedEvent,
)
from billing_events.observability.logger import set_trace_id

from .snapshot import (
    SUPPORTED_TYPES,
    parse_envelope,
    parse_provider_event,
    provider_event_type,
)
from .updated import SubscriptionUpdatedProcessor
from .upgrade_policy import evaluate_upgrade, handle_upgrade, upgraded_at_now

logger = logging.getLogger(__name__)

_STATUS_EVENTS: dict[str, tuple[DetailType, str]] = {
    ProviderEventType.SUBSCRIPTION_PAUSED.value: (
        DetailType.SUBSCRIPTION_PAUSED, "subscription-paused",
    ),
    ProviderEventType.SUBSCRIPTION_RESUMED.value: (
        DetailType.SUBSCRIPTION_RESUMED, "subscription-resumed",
    ),
    ProviderEventType.SUBSCRIPTION_TRIAL_WILL_END.value: (
        DetailType.TRIAL_WILL_END, "trial-will-end",
    ),
}


@dataclass(frozen=True)
class RouteResult:
    event_type: str | None
    handled: bool
    state: SubscriptionState | None = None
    upgraded: bool = False


class SubscriptionEventRouter:
    """Dispatches provider subscription events to their handlers."""

    def __init__(self, ctx: HandlerContext) -> None:
        self._ctx = ctx
        self._updated = SubscriptionUpdatedProcessor(ctx)

    async def route(self, raw_envelope: dict[str, Any]) -> RouteResult:
        envelope = parse_envelope(raw_envelope)
        set_trace_id(envelope.id)
        event_type = provider_event_type(envelope)

        if event_type not in SUPPORTED_TYPES:
            logger.warning("Unhandled event type: %s", event_type)
            return RouteResult(event_type=event_type, handled=False)

        event = parse_provider_event(envelope.detail)
        logger.info(
            "Processing %s for subscription=%s", event_type, event.subscription.id,
        )

        if isinstance(event, SubscriptionUpdatedEvent):
            return await self._route_updated(event)
        return await self._route_lifecycle(event)

    async def _route_updated(self, event: SubscriptionUpdatedEvent) -> RouteResult:
        state = await self._updated.process(event)
        if state != SubscriptionState.OTHER_UPDATE:
            return RouteResult(event_type=event.type, handled=True, state=state)

        decision = evaluate_upgrade(event, upgraded_at_now(self._ctx))
        logger.info(
            "Upgrade policy for subscription=%s: upgrade=%s reason=%s",
            event.subscription.id, decision.is_upgrade, decision.reason,
        )
        upgraded = decision.is_upgrade and await handle_upgrade(self._ctx, event, decision)
        return RouteResult(
            event_type=event.type, handled=True, state=state, upgraded=upgraded,
        )

    async def _route_lifecycle(self, event: SubscriptionLifecycleEvent) -> RouteResult:
        if event.type == ProviderEventType.SUBSCRIPTION_DELETED.value:
            handled = await self._handle_deleted(event)
        else:
            handled = await self._handle_status(event)
        return RouteResult(event_type=event.type, handled=handled)

    async def _handle_deleted(self, event: SubscriptionLifecycleEvent) -> bool:
        subscription = event.subscription
        if subscription.status != "canceled":
            logger.warning(
                "Subscription %s deleted with status=%s, skipping",
                subscription.id, subscription.status,
            )
            return False

        key = generate_event_id(
            "subscription-deleted", subscription.id, event.ended_at or event.created,
        )
        claim = await self._ctx.guard.ensure_idempotency(
            key,
            {
                "subscriptionId": subscription.id,
                "customerId": subscription.customer,
                "endedAt": event.ended_at,
                "canceledAt": event.canceled_at,
            },
        )
        if claim.is_duplicate:
            return False

        detail = SubscriptionDeletedDetail(
            stripe_subscription_id=subscription.id,
            stripe_customer_id=subscription.customer,
            status=subscription.status,
            ended_at=event.ended_at,
            canceled_at=event.canceled_at,
        )
        await send_events(self._ctx.event_bus, [build_entry(
            DetailType.SUBSCRIPTION_DELETED,
            detail,
            source=self._ctx.source,
            bus_name=self._ctx.bus_name,
        )])
        return True

    async def _handle_status(self, event: SubscriptionLifecycleEvent) -> bool:
        subscription = event.subscription
        detail_type, kind = _STATUS_EVENTS[event.type]

        claim = await self._ctx.guard.ensure_idempotency(
            generate_event_id(kind, subscription.id, event.created),
        )
        if claim.is_duplicate:
            return False

        detail = SubscriptionStatusDetail(
            stripe_subscription_id=subscription.id,
            stripe_customer_id=subscription.customer,
            status=subscription.status,
            occurred_at=event.created,
            trial_start=subscription.trial_start,
            trial_end=subscription.trial_end,
            metadata=subscription.metadata,
        )
        await send_events(self._ctx.event_bus, [build_entry(
            detail_type,
            detail,
            source=self._ctx.source,
            bus_name=self._ctx.bus_name,
        )])
        logger.info(
            "Sent %s for subscription=%s", detail_type.value, subscription.id,
        )
        return True
