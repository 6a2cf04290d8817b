"""Test DeadLetterConductor: redrive, quarantine, failure isolation."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from billing_events.bus.memory_bus import MemoryEventBus
from billing_events.core.enums import RedriveStatus
from billing_events.core.errors import MalformedInput, TransientStorageError
from billing_events.core.models import DeadLetterMessage
from billing_events.deadletter.conductor import DeadLetterConductor

BUS_NAME = "billing-events"
NOW_ISO = "2023-11-14T22:13:20Z"


def _event(detail: dict | None = None, event_id: str = "evt-orig") -> dict:
    return {
        "version": "0",
        "id": event_id,
        "detail-type": "LicenseCreated",
        "source": "service.stripe",
        "time": "2023-11-14T20:00:00Z",
        "detail": detail or {"stripeSubscriptionId": "sub_1"},
    }


def _record(body, message_id: str = "msg-1", **attributes) -> dict:
    return {
        "messageId": message_id,
        "receiptHandle": f"rh-{message_id}",
        "body": body if isinstance(body, str) else json.dumps(body),
        "messageAttributes": {
            name: {"stringValue": str(value), "dataType": "String"}
            for name, value in attributes.items()
        },
    }


def _message(body, message_id: str = "msg-1", **attributes) -> DeadLetterMessage:
    return DeadLetterMessage.model_validate(_record(body, message_id, **attributes))


@pytest.fixture
def conductor(memory_bus, quarantine, clock):
    return DeadLetterConductor(
        memory_bus, quarantine, bus_name=BUS_NAME, max_retries=5, clock=clock,
    )


class TestRedrive:
    async def test_below_max_republishes_with_incremented_count(
        self, conductor, memory_bus, quarantine,
    ):
        message = _message(
            _event(), retryCount=4, originalEventId="evt-first",
            firstFailureTime="2023-11-14T20:05:00Z",
        )

        summary = await conductor.process_batch([message])

        assert summary.redriven == 1
        assert summary.batch_item_failures == []
        assert quarantine.messages == []
        entry = memory_bus.get_history()[0]
        assert entry.detail_type == "LicenseCreated"
        assert entry.source == "service.stripe"
        assert entry.bus_name == BUS_NAME
        assert entry.time == datetime(2023, 11, 14, 20, 0, tzinfo=timezone.utc)
        assert entry.detail["stripeSubscriptionId"] == "sub_1"
        assert entry.detail["_retryMetadata"] == {
            "retryCount": 5,
            "originalEventId": "evt-first",
            "originalEventTime": "2023-11-14T20:00:00Z",
            "firstFailureTime": "2023-11-14T20:05:00Z",
            "lastRetryTime": NOW_ISO,
        }

    async def test_first_failure_defaults(self, conductor, memory_bus):
        await conductor.process_batch([_message(_event())])

        metadata = memory_bus.get_history()[0].detail["_retryMetadata"]
        assert metadata["retryCount"] == 1
        assert metadata["originalEventId"] == "evt-orig"
        assert metadata["firstFailureTime"] == NOW_ISO

    async def test_embedded_metadata_used_without_attributes(self, conductor, memory_bus):
        detail = {
            "stripeSubscriptionId": "sub_1",
            "_retryMetadata": {
                "retryCount": 2,
                "originalEventId": "evt-first",
                "originalEventTime": "2023-11-14T19:00:00Z",
                "firstFailureTime": "2023-11-14T19:01:00Z",
                "lastRetryTime": "2023-11-14T21:00:00Z",
            },
        }

        await conductor.process_batch([_message(_event(detail, event_id="evt-redriven"))])

        metadata = memory_bus.get_history()[0].detail["_retryMetadata"]
        assert metadata == {
            "retryCount": 3,
            "originalEventId": "evt-first",
            "originalEventTime": "2023-11-14T19:00:00Z",
            "firstFailureTime": "2023-11-14T19:01:00Z",
            "lastRetryTime": NOW_ISO,
        }


class TestQuarantine:
    async def test_at_max_is_quarantined(self, conductor, memory_bus, quarantine):
        event = _event()

        summary = await conductor.process_batch([_message(event, retryCount=5)])

        assert summary.exhausted == 1
        assert memory_bus.calls == []
        [quarantined] = quarantine.messages
        assert quarantined.body["originalEvent"] == event
        assert quarantined.body["retryMetadata"] == {
            "retryCount": 5,
            "originalEventId": "evt-orig",
            "originalEventTime": "2023-11-14T20:00:00Z",
            "firstFailureTime": NOW_ISO,
            "exhaustedAt": NOW_ISO,
        }
        assert quarantined.attributes == {
            "eventType": "LicenseCreated",
            "source": "service.stripe",
            "retryCount": "5",
        }

    async def test_above_max_is_quarantined(self, conductor, quarantine):
        summary = await conductor.process_batch([_message(_event(), retryCount=7)])

        assert summary.exhausted == 1
        assert len(quarantine.messages) == 1

    async def test_zero_max_retries_quarantines_immediately(
        self, memory_bus, quarantine, clock,
    ):
        conductor = DeadLetterConductor(
            memory_bus, quarantine, bus_name=BUS_NAME, max_retries=0, clock=clock,
        )

        summary = await conductor.process_batch([_message(_event())])

        assert summary.exhausted == 1
        assert memory_bus.calls == []


class TestFailures:
    @pytest.mark.parametrize("body", ["{not json", json.dumps([1, 2]), json.dumps({"id": "x"})])
    async def test_malformed_body_fails_without_side_effects(
        self, conductor, memory_bus, quarantine, body,
    ):
        summary = await conductor.process_batch([_message(body, message_id="bad")])

        assert summary.failed == 1
        assert summary.batch_item_failures == ["bad"]
        assert memory_bus.calls == []
        assert quarantine.messages == []

    async def test_invalid_retry_count_fails(self, conductor, memory_bus):
        summary = await conductor.process_batch([_message(_event(), retryCount="abc")])

        assert summary.failed == 1
        assert memory_bus.calls == []

    async def test_bus_failure_is_isolated(self, quarantine, clock):
        bus = MemoryEventBus(
            rejector=lambda e: "InternalFailure"
            if e.detail["stripeSubscriptionId"] == "sub_bad" else None,
        )
        conductor = DeadLetterConductor(bus, quarantine, bus_name=BUS_NAME, clock=clock)
        messages = [
            _message(_event(), message_id="m1"),
            _message(_event({"stripeSubscriptionId": "sub_bad"}), message_id="m2"),
            _message(_event(), message_id="m3", retryCount=5),
        ]

        summary = await conductor.process_batch(messages)

        assert (summary.redriven, summary.exhausted, summary.failed) == (1, 1, 1)
        assert summary.batch_item_failures == ["m2"]
        assert summary.total == 3

    async def test_quarantine_failure_is_reported(self, memory_bus, clock):
        quarantine = AsyncMock()
        quarantine.send.side_effect = TransientStorageError("queue down")
        conductor = DeadLetterConductor(memory_bus, quarantine, bus_name=BUS_NAME, clock=clock)

        summary = await conductor.process_batch([_message(_event(), retryCount=5)])

        assert summary.failed == 1
        assert summary.results[0].retry_count == 5


class TestHandle:
    async def test_returns_batch_item_failures(self, conductor):
        response = await conductor.handle({"Records": [
            _record(_event(), message_id="ok"),
            _record("{broken", message_id="broken"),
        ]})

        assert response == {"batchItemFailures": [{"itemIdentifier": "broken"}]}

    async def test_empty_batch(self, conductor, memory_bus):
        assert await conductor.handle({"Records": []}) == {"batchItemFailures": []}
        assert memory_bus.calls == []

    async def test_record_without_body_fails_alone(self, conductor, memory_bus, quarantine):
        response = await conductor.handle({"Records": [
            {"messageId": "no-body"},
            _record(_event(), message_id="ok"),
        ]})

        assert response == {"batchItemFailures": [{"itemIdentifier": "no-body"}]}
        assert len(memory_bus.get_history()) == 1
        assert quarantine.messages == []

    async def test_record_without_id_raises(self, conductor):
        with pytest.raises(MalformedInput):
            await conductor.handle({"Records": [{"body": "{}"}]})

    async def test_outcome_recorded_per_message(self, conductor):
        summary = await conductor.process_batch([
            _message(_event(), message_id="a"),
            _message(_event(), message_id="b", retryCount=5),
        ])

        assert [r.status for r in summary.results] == [
            RedriveStatus.REDRIVEN, RedriveStatus.EXHAUSTED,
        ]
        assert summary.results[0].retry_count == 1
