"""Core domain models.

All boundary payloads are validated here once, so handlers work on fully
typed structures. Provider payloads arrive in the payments provider's
snake_case shape; bus and dead-letter payloads use the transport's
camelCase names, mapped through aliases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .enums import UsageType
from .ids import new_id


def _unwrap_id(value: Any) -> Any:
    """Provider references may be expanded objects; keep just the id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _unwrap_list(value: Any) -> Any:
    """Provider lists arrive as ``{"object": "list", "data": [...]}``."""
    if isinstance(value, dict) and "data" in value:
        return value["data"]
    return value


# ---------------------------------------------------------------------------
# Event envelope
# ---------------------------------------------------------------------------

class EventEnvelope(BaseModel):
    """Bus event as delivered to handlers and captured in dead letters.

    Opaque beyond ``type`` and ``detail``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    type: str = Field(alias="detail-type")
    source: str
    time: datetime
    detail: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Subscription snapshot
# ---------------------------------------------------------------------------

class Price(BaseModel):
    id: str
    product: str
    usage_type: UsageType = UsageType.LICENSED
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["product"] = _unwrap_id(data.get("product"))
        recurring = data.pop("recurring", None) or {}
        if "usage_type" not in data and recurring.get("usage_type"):
            data["usage_type"] = recurring["usage_type"]
        if data.get("metadata") is None:
            data["metadata"] = {}
        return data


class SubscriptionItem(BaseModel):
    id: str
    price: Price
    quantity: int = 1
    current_period_start: int
    current_period_end: int
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if data.get("quantity") is None:
                data["quantity"] = 1
            if data.get("metadata") is None:
                data["metadata"] = {}
        return data

    @property
    def is_metered(self) -> bool:
        return self.price.usage_type == UsageType.METERED


class SubscriptionSnapshot(BaseModel):
    """Current attributes of a subscription as carried by one event."""

    model_config = ConfigDict(extra="ignore")

    id: str
    customer: str
    status: str
    cancel_at_period_end: bool = False
    cancel_at: int | None = None
    trial_start: int | None = None
    trial_end: int | None = None
    created: int = 0
    metadata: dict[str, str] = Field(default_factory=dict)
    items: list[SubscriptionItem] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["customer"] = _unwrap_id(data.get("customer"))
        data["items"] = _unwrap_list(data.get("items"))
        if data.get("metadata") is None:
            data["metadata"] = {}
        if data.get("cancel_at_period_end") is None:
            data["cancel_at_period_end"] = False
        return data


class PreviousItem(BaseModel):
    """Item as it appeared before the update. Every field may be absent."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    quantity: int | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None


class PreviousAttributes(BaseModel):
    """Only the attributes that changed in this update.

    Presence matters: ``cancel_at`` explicitly set to ``None`` is not the
    same as ``cancel_at`` not being part of the change. Use
    :meth:`has` to tell them apart.
    """

    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    cancel_at_period_end: bool | None = None
    cancel_at: int | None = None
    trial_start: int | None = None
    trial_end: int | None = None
    items: list[PreviousItem] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, dict) and "items" in data:
            data = dict(data)
            data["items"] = _unwrap_list(data["items"])
        return data

    def has(self, field: str) -> bool:
        return field in self.model_fields_set

    @property
    def first_item(self) -> PreviousItem | None:
        if not self.items:
            return None
        return self.items[0]


# ---------------------------------------------------------------------------
# Provider events (discriminated on ``type``)
# ---------------------------------------------------------------------------

class SubscriptionUpdatedData(BaseModel):
    object: SubscriptionSnapshot
    previous_attributes: PreviousAttributes = Field(
        default_factory=PreviousAttributes
    )


class SubscriptionData(BaseModel):
    object: SubscriptionSnapshot


class _ProviderEventBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    created: int


class SubscriptionUpdatedEvent(_ProviderEventBase):
    type: Literal["customer.subscription.updated"]
    data: SubscriptionUpdatedData

    @property
    def subscription(self) -> SubscriptionSnapshot:
        return self.data.object

    @property
    def previous(self) -> PreviousAttributes:
        return self.data.previous_attributes


class SubscriptionLifecycleEvent(_ProviderEventBase):
    """Deleted / paused / resumed / trial-will-end notifications."""

    type: Literal[
        "customer.subscription.deleted",
        "customer.subscription.paused",
        "customer.subscription.resumed",
        "customer.subscription.trial_will_end",
    ]
    data: SubscriptionData
    ended_at: int | None = None
    canceled_at: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_end_times(cls, data: Any) -> Any:
        if isinstance(data, dict):
            obj = (data.get("data") or {}).get("object") or {}
            data = dict(data)
            data.setdefault("ended_at", obj.get("ended_at"))
            data.setdefault("canceled_at", obj.get("canceled_at"))
        return data

    @property
    def subscription(self) -> SubscriptionSnapshot:
        return self.data.object


ProviderEvent = Annotated[
    Union[SubscriptionUpdatedEvent, SubscriptionLifecycleEvent],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------

class IdempotencyRecord(BaseModel):
    """Ledger item. Immutable once written; expires at ``ttl`` (epoch s)."""

    model_config = ConfigDict(frozen=True)

    key: str
    processed_at: int
    ttl: int
    data: dict[str, Any] | None = None


class IdempotencyResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_duplicate: bool
    existing_data: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

class BusEntry(BaseModel):
    source: str
    detail_type: str
    detail: dict[str, Any]
    bus_name: str
    time: datetime | None = None
    entry_id: str = Field(default_factory=new_id)


class EntryResult(BaseModel):
    event_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def failed(self) -> bool:
        return self.error_code is not None


class PublishResult(BaseModel):
    failed_entry_count: int = 0
    entries: list[EntryResult] = Field(default_factory=list)

    @property
    def failed_entries(self) -> list[EntryResult]:
        return [e for e in self.entries if e.failed]


# ---------------------------------------------------------------------------
# Dead letter
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageAttribute(_CamelModel):
    string_value: str | None = None
    data_type: str = "String"


class DeadLetterMessage(_CamelModel):
    """One record of a dead-letter batch."""

    message_id: str
    body: str
    message_attributes: dict[str, MessageAttribute] = Field(default_factory=dict)

    def attribute(self, name: str) -> str | None:
        attr = self.message_attributes.get(name)
        if attr is None or attr.string_value in (None, ""):
            return None
        return attr.string_value


class RetryMetadata(_CamelModel):
    """Retry bookkeeping merged into a redriven event's detail."""

    retry_count: int
    original_event_id: str
    original_event_time: str
    first_failure_time: str
    last_retry_time: str | None = None
    exhausted_at: str | None = None


class RetryEnvelope(BaseModel):
    """A dead-lettered event plus its retry state, parsed once at ingestion."""

    message_id: str
    original_event: EventEnvelope
    raw_event: dict[str, Any]
    retry_count: int = 0
    original_event_id: str
    original_event_time: str
    first_failure_time: str

    def is_terminal(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries
