"""Subscription lifecycle classification and handlers."""

from billing_events.subscription.classifier import determine_state
from billing_events.subscription.router import RouteResult, SubscriptionEventRouter

__all__ = ["RouteResult", "SubscriptionEventRouter", "determine_state"]
