"""Detail-type → schema registry.

Maps business event names to the Pydantic models of their ``detail``
payloads. Handlers build details through these models so every event on
the bus has a validated, camelCase shape.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from billing_events.core.enums import DetailType
from billing_events.core.models import BusEntry


class DetailModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_detail(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class LicenseCreatedDetail(DetailModel):
    stripe_subscription_id: str
    stripe_customer_id: str
    item_id: str
    unit_index: int
    product_id: str
    price_id: str
    quantity: int = 1
    status: str
    created_at: int
    cancel_at_period_end: bool
    trial_start: int | None = None
    trial_end: int | None = None
    expires_at: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class LicenseCancelledDetail(DetailModel):
    stripe_subscription_id: str
    stripe_customer_id: str
    item_id: str
    product_id: str
    price_id: str
    quantity: int
    cancel_at: int | None = None
    cancel_at_period_end: bool
    expires_at: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class RenewedItem(DetailModel):
    item_id: str
    quantity: int
    started: int
    expires_at: int
    product_id: str
    price_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubscriptionRenewedDetail(DetailModel):
    stripe_subscription_id: str
    stripe_customer_id: str
    earliest_renewal_date: int
    cancel_at_period_end: bool
    items: list[RenewedItem]


class UpgradedItem(DetailModel):
    item_id: str
    product_id: str
    price_id: str
    quantity: int
    expires_at: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubscriptionUpgradedDetail(DetailModel):
    stripe_subscription_id: str
    stripe_customer_id: str
    upgrade_type: str
    original_trial_subscription_id: str | None = None
    status: str
    created_at: int
    items: list[UpgradedItem]
    metadata: dict[str, str] = Field(default_factory=dict)


class SubscriptionDeletedDetail(DetailModel):
    stripe_subscription_id: str
    stripe_customer_id: str
    status: str
    ended_at: int | None = None
    canceled_at: int | None = None


class SubscriptionStatusDetail(DetailModel):
    """Paused / resumed / trial-will-end notifications."""

    stripe_subscription_id: str
    stripe_customer_id: str
    status: str
    occurred_at: int
    trial_start: int | None = None
    trial_end: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


DETAIL_SCHEMAS: dict[DetailType, type[DetailModel]] = {
    DetailType.LICENSE_CREATED: LicenseCreatedDetail,
    DetailType.LICENSE_CANCELLED: LicenseCancelledDetail,
    DetailType.SUBSCRIPTION_RENEWED: SubscriptionRenewedDetail,
    DetailType.SUBSCRIPTION_UPGRADED: SubscriptionUpgradedDetail,
    DetailType.SUBSCRIPTION_DELETED: SubscriptionDeletedDetail,
    DetailType.SUBSCRIPTION_PAUSED: SubscriptionStatusDetail,
    DetailType.SUBSCRIPTION_RESUMED: SubscriptionStatusDetail,
    DetailType.TRIAL_WILL_END: SubscriptionStatusDetail,
}


def get_detail_class(detail_type: DetailType | str) -> type[DetailModel] | None:
    """Look up the detail model for a business event name."""
    try:
        return DETAIL_SCHEMAS.get(DetailType(detail_type))
    except ValueError:
        return None


def build_entry(
    detail_type: DetailType,
    detail: DetailModel,
    *,
    source: str,
    bus_name: str,
) -> BusEntry:
    """Wrap a detail payload into a bus entry, checking it matches its type."""
    expected = DETAIL_SCHEMAS[detail_type]
    if not isinstance(detail, expected):
        raise TypeError(
            f"{detail_type.value} expects {expected.__name__}, "
            f"got {type(detail).__name__}"
        )
    return BusEntry(
        source=source,
        detail_type=detail_type.value,
        detail=detail.to_detail(),
        bus_name=bus_name,
    )
