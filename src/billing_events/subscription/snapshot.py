"""Boundary parsing for inbound subscription events.

Envelopes and provider payloads are validated here exactly once. Anything
that fails validation is :class:`MalformedInput`, a permanent failure that
is never routed through business retry logic.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter, ValidationError

from billing_events.core.enums import ProviderEventType
from billing_events.core.errors import MalformedInput
from billing_events.core.models import (
    EventEnvelope,
    ProviderEvent,
    SubscriptionLifecycleEvent,
    SubscriptionUpdatedEvent,
)

_PROVIDER_EVENT = TypeAdapter(ProviderEvent)

SUPPORTED_TYPES = frozenset(t.value for t in ProviderEventType)


def parse_envelope(raw: dict[str, Any]) -> EventEnvelope:
    """Validate a bus envelope."""
    try:
        return EventEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise MalformedInput(f"Invalid event envelope: {exc}") from exc


def provider_event_type(envelope: EventEnvelope) -> str | None:
    """The provider's event type carried inside the envelope detail."""
    value = envelope.detail.get("type")
    return value if isinstance(value, str) else None


def parse_provider_event(
    detail: dict[str, Any],
) -> SubscriptionUpdatedEvent | SubscriptionLifecycleEvent:
    """Validate a provider subscription event into its typed variant."""
    try:
        return _PROVIDER_EVENT.validate_python(detail)
    except ValidationError as exc:
        raise MalformedInput(
            f"Invalid {detail.get('type', 'unknown')} payload: "
            f"{exc.error_count()} validation error(s)"
        ) from exc
