"""Prometheus metrics.

Counters for the engine's business outcomes. The exporter is optional;
counters are always recorded in-process.
"""

from __future__ import annotations

from prometheus_client import Counter, start_http_server

EVENTS_EMITTED = Counter(
    "billing_events_emitted_total",
    "Business events accepted by the bus",
    ["detail_type"],
)

DUPLICATES_SKIPPED = Counter(
    "billing_duplicates_skipped_total",
    "Idempotency claims rejected because the key already existed",
    ["kind"],
)

STATES_CLASSIFIED = Counter(
    "billing_subscription_states_total",
    "Subscription updates by classified state",
    ["state"],
)

DEAD_LETTER_OUTCOMES = Counter(
    "billing_dead_letter_outcomes_total",
    "Dead-letter messages by redrive outcome",
    ["status"],
)

_server_started = False


def start_metrics_server(port: int) -> None:
    """Start the Prometheus HTTP exporter once per process."""
    global _server_started
    if _server_started or port <= 0:
        return
    start_http_server(port)
    _server_started = True


# Every idempotency key the engine claims starts with one of these.
KEY_KINDS = (
    "license-created",
    "license-cancelled",
    "subscription-renewed",
    "subscription-upgraded",
    "subscription-deleted",
    "subscription-paused",
    "subscription-resumed",
    "trial-will-end",
)


def key_kind(key: str) -> str:
    """Label for an idempotency key: its known kind prefix, else ``other``.

    ``license-created-sub_1-si_1-1700000000-0`` -> ``license-created``.
    The label set is fixed so provider ids never leak into it.
    """
    for kind in KEY_KINDS:
        if key.startswith(kind + "-"):
            return kind
    return "other"


def record_emitted(detail_type: str, count: int = 1) -> None:
    EVENTS_EMITTED.labels(detail_type=detail_type).inc(count)


def record_duplicate(key: str) -> None:
    DUPLICATES_SKIPPED.labels(kind=key_kind(key)).inc()


def record_state(state: str) -> None:
    STATES_CLASSIFIED.labels(state=state).inc()


def record_dead_letter(status: str) -> None:
    DEAD_LETTER_OUTCOMES.labels(status=status).inc()
