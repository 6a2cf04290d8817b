"""Enumerations used across the billing event engine."""

from enum import Enum


class SubscriptionState(str, Enum):
    QUANTITY_CHANGED = "QUANTITY_CHANGED"
    CANCELLING = "CANCELLING"
    UNCANCELLING = "UNCANCELLING"
    RENEWED = "RENEWED"
    OTHER_UPDATE = "OTHER_UPDATE"


class DetailType(str, Enum):
    """Business event names published on the bus."""

    LICENSE_CREATED = "LicenseCreated"
    LICENSE_CANCELLED = "LicenseCancelled"
    SUBSCRIPTION_RENEWED = "SubscriptionRenewed"
    SUBSCRIPTION_UPGRADED = "SubscriptionUpgraded"
    SUBSCRIPTION_DELETED = "SubscriptionDeleted"
    SUBSCRIPTION_PAUSED = "SubscriptionPaused"
    SUBSCRIPTION_RESUMED = "SubscriptionResumed"
    TRIAL_WILL_END = "TrialWillEnd"


class ProviderEventType(str, Enum):
    """Inbound payments-provider event types handled by the router."""

    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    SUBSCRIPTION_PAUSED = "customer.subscription.paused"
    SUBSCRIPTION_RESUMED = "customer.subscription.resumed"
    SUBSCRIPTION_TRIAL_WILL_END = "customer.subscription.trial_will_end"


class RedriveStatus(str, Enum):
    REDRIVEN = "redriven"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class UsageType(str, Enum):
    LICENSED = "licensed"
    METERED = "metered"


class Backend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"
