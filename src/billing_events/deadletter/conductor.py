"""Dead-letter retry conductor.

Consumes batches from the dead-letter transport. For each message the
outcome is a pure function of its retry count:

* below ``max_retries``: republish the original event to the primary bus
  with incremented retry metadata merged into its detail (``redriven``);
* at or above ``max_retries``: relocate the event and its retry history
  to quarantine (``exhausted``).

Both are "handled" and leave the dead-letter transport. A failed republish
or quarantine write is ``failed``: the message id is returned as a batch
item failure so the transport redelivers it and the *redrive* is retried.
That transport-level retry never touches the business retry count.
Unparseable bodies are also ``failed`` and are never republished or
quarantined.

Messages are independent; one failure never blocks its siblings. There
is no sleep or backoff here: pacing belongs to the transport.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from billing_events.bus.publisher import send_events
from billing_events.core.clock import IClock, WallClock
from billing_events.core.enums import RedriveStatus
from billing_events.core.errors import MalformedInput
from billing_events.core.ids import isoformat
from billing_events.core.interfaces import IEventBus, IQuarantine
from billing_events.core.models import (
    BusEntry,
    DeadLetterMessage,
    EventEnvelope,
    RetryEnvelope,
    RetryMetadata,
)
from billing_events.observability.metrics import record_dead_letter

logger = logging.getLogger(__name__)

RETRY_METADATA_FIELD = "_retryMetadata"


@dataclass
class ProcessingResult:
    message_id: str
    status: RedriveStatus
    retry_count: int = 0
    error: str | None = None


@dataclass
class BatchSummary:
    results: list[ProcessingResult] = field(default_factory=list)

    def _count(self, status: RedriveStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def redriven(self) -> int:
        return self._count(RedriveStatus.REDRIVEN)

    @property
    def exhausted(self) -> int:
        return self._count(RedriveStatus.EXHAUSTED)

    @property
    def failed(self) -> int:
        return self._count(RedriveStatus.FAILED)

    @property
    def batch_item_failures(self) -> list[str]:
        return [r.message_id for r in self.results if r.status == RedriveStatus.FAILED]

    def to_response(self) -> dict[str, list[dict[str, str]]]:
        """Transport response naming the messages to keep for redelivery."""
        return {
            "batchItemFailures": [
                {"itemIdentifier": mid} for mid in self.batch_item_failures
            ]
        }


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

def _parse_retry_count(value: Any, origin: str) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedInput(f"Invalid retry count in {origin}: {value!r}") from exc
    if count < 0:
        raise MalformedInput(f"Negative retry count in {origin}: {count}")
    return count


def parse_retry_envelope(message: DeadLetterMessage, now: str) -> RetryEnvelope:
    """Parse a dead-letter message once into a typed retry envelope.

    The retry count comes from the ``retryCount`` attribute, then from the
    metadata a previous redrive embedded in the event detail, then 0.
    """
    try:
        raw = json.loads(message.body)
    except json.JSONDecodeError as exc:
        raise MalformedInput(f"Unparseable body: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise MalformedInput("Body is not a JSON object")

    try:
        envelope = EventEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise MalformedInput(
            f"Body is not an event envelope: {exc.error_count()} error(s)"
        ) from exc

    embedded = envelope.detail.get(RETRY_METADATA_FIELD)
    if not isinstance(embedded, dict):
        embedded = {}

    attr_count = message.attribute("retryCount")
    if attr_count is not None:
        retry_count = _parse_retry_count(attr_count, "attributes")
    elif embedded.get("retryCount") is not None:
        retry_count = _parse_retry_count(embedded["retryCount"], "event detail")
    else:
        retry_count = 0

    def pick(name: str, default: str) -> str:
        return message.attribute(name) or embedded.get(name) or default

    return RetryEnvelope(
        message_id=message.message_id,
        original_event=envelope,
        raw_event=raw,
        retry_count=retry_count,
        original_event_id=pick("originalEventId", envelope.id),
        original_event_time=pick(
            "originalEventTime", raw.get("time") or isoformat(envelope.time),
        ),
        first_failure_time=pick("firstFailureTime", now),
    )


# ---------------------------------------------------------------------------
# Conductor
# ---------------------------------------------------------------------------

class DeadLetterConductor:
    """Redrives or quarantines dead-lettered bus events.

    Args:
        event_bus: Primary bus to redrive into.
        quarantine: Terminal target for exhausted messages.
        bus_name: Name of the primary bus.
        max_retries: Redrive cycles allowed before quarantine.
        clock: Time source for retry timestamps.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        quarantine: IQuarantine,
        *,
        bus_name: str,
        max_retries: int = 5,
        clock: IClock | None = None,
    ) -> None:
        self._bus = event_bus
        self._quarantine = quarantine
        self._bus_name = bus_name
        self._max_retries = max_retries
        self._clock = clock or WallClock()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def handle(self, raw_batch: dict[str, Any]) -> dict[str, list[dict[str, str]]]:
        """Process a transport batch ``{"Records": [...]}``.

        A record that fails validation but carries a ``messageId`` is
        reported as a batch item failure on its own. A record without one
        cannot be reported, so it fails the whole batch.
        """
        messages: list[DeadLetterMessage] = []
        rejected: list[ProcessingResult] = []
        for record in raw_batch.get("Records", []):
            try:
                messages.append(DeadLetterMessage.model_validate(record))
            except ValidationError as exc:
                message_id = record.get("messageId") if isinstance(record, dict) else None
                if not isinstance(message_id, str) or not message_id:
                    raise MalformedInput(f"Invalid dead-letter batch: {exc}") from exc
                logger.error("Invalid dead-letter record %s: %s", message_id, exc)
                rejected.append(ProcessingResult(
                    message_id=message_id,
                    status=RedriveStatus.FAILED,
                    error=str(exc),
                ))

        summary = await self.process_batch(messages)
        for result in rejected:
            record_dead_letter(result.status.value)
            summary.results.append(result)
        return summary.to_response()

    async def process_batch(self, messages: list[DeadLetterMessage]) -> BatchSummary:
        logger.info(
            "Processing dead-letter batch: messages=%d max_retries=%d",
            len(messages), self._max_retries,
        )
        summary = BatchSummary()
        for message in messages:
            result = await self.process_message(message)
            record_dead_letter(result.status.value)
            summary.results.append(result)

        logger.info(
            "Dead-letter batch complete: total=%d redriven=%d exhausted=%d failed=%d",
            summary.total, summary.redriven, summary.exhausted, summary.failed,
        )
        return summary

    async def process_message(self, message: DeadLetterMessage) -> ProcessingResult:
        now = isoformat(self._clock.now())
        try:
            envelope = parse_retry_envelope(message, now)
        except MalformedInput as exc:
            logger.error(
                "Malformed dead-letter message %s: %s", message.message_id, exc,
            )
            return ProcessingResult(
                message_id=message.message_id,
                status=RedriveStatus.FAILED,
                error=str(exc),
            )

        logger.info(
            "Processing failed event: message=%s type=%s source=%s "
            "original_event_id=%s retry_count=%d",
            message.message_id,
            envelope.original_event.type,
            envelope.original_event.source,
            envelope.original_event_id,
            envelope.retry_count,
        )

        try:
            if envelope.is_terminal(self._max_retries):
                await self._quarantine_message(envelope, now)
                return ProcessingResult(
                    message_id=message.message_id,
                    status=RedriveStatus.EXHAUSTED,
                    retry_count=envelope.retry_count,
                )
            new_count = await self._redrive(envelope, now)
            return ProcessingResult(
                message_id=message.message_id,
                status=RedriveStatus.REDRIVEN,
                retry_count=new_count,
            )
        except Exception as exc:
            # Reported to the transport for redelivery; siblings continue.
            logger.exception(
                "Failed to process dead-letter message %s", message.message_id,
            )
            return ProcessingResult(
                message_id=message.message_id,
                status=RedriveStatus.FAILED,
                retry_count=envelope.retry_count,
                error=str(exc),
            )

    async def _redrive(self, envelope: RetryEnvelope, now: str) -> int:
        event = envelope.original_event
        new_count = envelope.retry_count + 1
        metadata = RetryMetadata(
            retry_count=new_count,
            original_event_id=envelope.original_event_id,
            original_event_time=envelope.original_event_time,
            first_failure_time=envelope.first_failure_time,
            last_retry_time=now,
        )
        entry = BusEntry(
            source=event.source,
            detail_type=event.type,
            detail={
                **event.detail,
                RETRY_METADATA_FIELD: metadata.model_dump(by_alias=True, exclude_none=True),
            },
            bus_name=self._bus_name,
            time=event.time,
        )
        await send_events(self._bus, [entry])
        logger.info(
            "Event redriven: message=%s type=%s original_event_id=%s retry_count=%d",
            envelope.message_id, event.type, envelope.original_event_id, new_count,
        )
        return new_count

    async def _quarantine_message(self, envelope: RetryEnvelope, now: str) -> None:
        event = envelope.original_event
        logger.warning(
            "Event exhausted %d retries, quarantining: message=%s type=%s "
            "original_event_id=%s first_failure=%s",
            envelope.retry_count, envelope.message_id, event.type,
            envelope.original_event_id, envelope.first_failure_time,
        )
        metadata = RetryMetadata(
            retry_count=envelope.retry_count,
            original_event_id=envelope.original_event_id,
            original_event_time=envelope.original_event_time,
            first_failure_time=envelope.first_failure_time,
            exhausted_at=now,
        )
        await self._quarantine.send(
            {
                "originalEvent": envelope.raw_event,
                "retryMetadata": metadata.model_dump(by_alias=True, exclude_none=True),
            },
            {
                "eventType": event.type,
                "source": event.source,
                "retryCount": str(envelope.retry_count),
            },
        )
        logger.info(
            "Event quarantined: message=%s original_event_id=%s",
            envelope.message_id, envelope.original_event_id,
        )
