"""Tests for the retry processor that replays due records."""

from __future__ import annotations

import json

import httpx
import pytest
from helpers import EventRecorder

from formflow.connectors import ConnectorResult
from formflow.credentials import PlaintextSecrets
from formflow.events import RETRY_COMPLETED, RETRY_PERMANENT_FAILURE
from formflow.models import RetryStatus, WebhookEndpoint
from formflow.retry import ActionStore, RetryProcessor, build_booking_equipment
from formflow.webhooks import WebhookDeliveryEngine


class Setup:
    def __init__(self, storage, registry, events, clock) -> None:
        self.events_sent: list[dict] = []

        def handle(request: httpx.Request) -> httpx.Response:
            self.events_sent.append(json.loads(request.content))
            return httpx.Response(200)

        self.storage = storage
        self.clock = clock
        self.store = ActionStore(storage, events=events, clock=clock)
        self.processor = RetryProcessor(
            self.store,
            storage,
            registry,
            PlaintextSecrets(),
            WebhookDeliveryEngine(storage, transport=httpx.MockTransport(handle), clock=clock),
            events=events,
        )

    async def enqueue_due(self, submission_id: str = "sub_test"):
        record = await self.store.enqueue_retry(submission_id, "ins_test", "API timeout")
        self.clock.advance(300)
        return record

    @property
    def event_names(self) -> list[str]:
        return [payload["event"] for payload in self.events_sent]


@pytest.fixture
async def setup(memory_storage, registry, events, clock, instance, submission):
    await memory_storage.save_instance(instance)
    await memory_storage.save_submission(submission)
    await memory_storage.save_webhook(
        WebhookEndpoint(
            id="whk_1",
            url="https://hooks.example.com",
            secret="shh",
            events={"enrollment.completed", "enrollment.failed", "appointment.scheduled"},
        )
    )
    return Setup(memory_storage, registry, events, clock)


class TestProcess:
    async def test_nothing_due(self, setup):
        assert await setup.processor.process() == {
            "processed": 0,
            "succeeded": 0,
            "failed": 0,
            "permanent_failures": 0,
        }

    async def test_enrollment_success(self, setup, connector, events):
        recorder = EventRecorder(events, RETRY_COMPLETED)
        record = await setup.enqueue_due()

        results = await setup.processor.process()

        assert results == {"processed": 1, "succeeded": 1, "failed": 0, "permanent_failures": 0}
        assert connector.calls[0][0] == "submit_enrollment"
        assert (await setup.storage.get_retry(record.id)).status == RetryStatus.COMPLETED
        assert (await setup.storage.get_submission("sub_test")).status == "completed"
        assert setup.event_names == ["enrollment.completed"]
        assert setup.events_sent[0]["customer"]["account_masked"] == "******7890"
        assert recorder[RETRY_COMPLETED][0]["booking"] is False

    async def test_booking_replay(self, setup, connector, submission):
        await setup.storage.update_submission(
            "sub_test",
            {
                "form_data": {
                    **submission.form_data,
                    "fsr_no": "F-9",
                    "schedule_date": "2026-02-01",
                    "schedule_time": "AM",
                    "scheduling_result": {"equipment": {"ac": {"count": 2, "location": "01"}}},
                }
            },
        )
        await setup.enqueue_due()

        results = await setup.processor.process()

        assert results["succeeded"] == 1
        operation, data, _ = connector.calls[0]
        assert operation == "book_appointment"
        assert data["fsr"] == "F-9"
        assert data["ca_no"] == "CA-77"
        assert data["equipment"] == {"05": {"count": 2, "location": "01", "desired_device": "05"}}
        assert setup.event_names == ["appointment.scheduled"]

    async def test_failure_reschedules(self, setup, connector):
        connector.script(
            "submit_enrollment", ConnectorResult(success=False, message="Service unavailable")
        )
        record = await setup.enqueue_due()

        results = await setup.processor.process()

        assert results == {"processed": 1, "succeeded": 0, "failed": 1, "permanent_failures": 0}
        stored = await setup.storage.get_retry(record.id)
        assert stored.status == RetryStatus.PENDING
        assert stored.retry_count == 1
        assert stored.last_error == "Service unavailable"
        assert setup.event_names == []

    async def test_four_failures_end_failed(self, setup, connector, events):
        """Three retries then a permanent failure with one enrollment.failed webhook."""
        recorder = EventRecorder(events, RETRY_PERMANENT_FAILURE)
        connector.default = ConnectorResult(success=False, message="Still down")
        record = await setup.enqueue_due()

        for _ in range(4):
            await setup.processor.process()
            setup.clock.advance(3600)

        stored = await setup.storage.get_retry(record.id)
        assert stored.status == RetryStatus.FAILED
        assert stored.retry_count == 3
        assert len(connector.calls) == 4
        assert setup.event_names == ["enrollment.failed"]
        assert setup.events_sent[0]["metadata"]["error"] == "Still down"
        assert len(recorder[RETRY_PERMANENT_FAILURE]) == 1

        assert (await setup.processor.process())["processed"] == 0

    async def test_connector_exception_is_a_failed_replay(self, setup, connector):
        connector.script("submit_enrollment", TimeoutError("read timeout"))
        record = await setup.enqueue_due()

        results = await setup.processor.process()

        assert results["failed"] == 1
        assert (await setup.storage.get_retry(record.id)).last_error == "read timeout"

    async def test_missing_submission_is_permanent(self, setup, connector):
        await setup.enqueue_due("sub_missing")

        results = await setup.processor.process()

        assert results["permanent_failures"] == 1
        assert connector.calls == []
        assert setup.event_names == []

    async def test_demo_mode_skips_api(self, setup, connector, instance):
        await setup.storage.save_instance(instance.model_copy(update={"demo_mode": True}))
        await setup.enqueue_due()

        results = await setup.processor.process()

        assert results["succeeded"] == 1
        assert connector.calls == []

    async def test_decrypted_credentials_passed(self, setup, connector):
        await setup.enqueue_due()
        await setup.processor.process()
        assert connector.calls[0][2].api_password == "s3cret"

    async def test_limit_respected(self, setup):
        for i in range(3):
            await setup.store.enqueue_retry(f"sub_{i}", "ins_test", "boom")
        setup.clock.advance(300)

        results = await setup.processor.process(limit=2)

        assert results["processed"] == 2
        assert (await setup.store.stats())["pending"] == 1

    async def test_summary_logged(self, setup):
        await setup.enqueue_due()
        await setup.processor.process()
        messages = [e.message for e in await setup.storage.get_logs()]
        assert (
            "Retry queue processed: 1 items, 1 succeeded, 0 failed, 0 permanent failures"
            in messages
        )

    async def test_repository_error_counts_against_retries(self, setup, monkeypatch):
        """A record whose replay keeps raising ends failed instead of looping."""

        async def broken_get_instance(instance_id):
            raise ValueError("instance lookup exploded")

        monkeypatch.setattr(setup.storage, "get_instance", broken_get_instance)
        record = await setup.enqueue_due()

        for _ in range(4):
            await setup.processor.process()
            setup.clock.advance(3600)

        stored = await setup.storage.get_retry(record.id)
        assert stored.status == RetryStatus.FAILED
        assert stored.retry_count == 3
        assert stored.last_error == "instance lookup exploded"
        assert setup.event_names == ["enrollment.failed"]

    async def test_repository_error_reschedules(self, setup, monkeypatch):
        async def broken_get_submission(submission_id):
            raise ValueError("boom")

        record = await setup.enqueue_due()
        monkeypatch.setattr(setup.storage, "get_submission", broken_get_submission)

        results = await setup.processor.process()

        assert results["failed"] == 1
        stored = await setup.storage.get_retry(record.id)
        assert stored.status == RetryStatus.PENDING
        assert stored.retry_count == 1

    async def test_unrecordable_outcome_left_for_reclaim(self, setup, monkeypatch):
        async def broken_get_instance(instance_id):
            raise ValueError("instance lookup exploded")

        async def broken_record_outcome(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(setup.storage, "get_instance", broken_get_instance)
        monkeypatch.setattr(setup.store, "record_outcome", broken_record_outcome)
        record = await setup.enqueue_due()

        results = await setup.processor.process()

        assert results["failed"] == 1
        assert (await setup.storage.get_retry(record.id)).status == RetryStatus.PROCESSING

    async def test_stale_records_reclaimed_first(self, setup):
        await setup.enqueue_due()
        (claimed,) = await setup.store.get_due(1)
        setup.clock.advance(901)

        results = await setup.processor.process()

        assert results["succeeded"] == 1
        assert (await setup.storage.get_retry(claimed.id)).status == RetryStatus.COMPLETED


class TestBookingEquipment:
    def test_combined_unit_excludes_separate_entries(self):
        form_data = {
            "scheduling_result": {
                "equipment": {
                    "ac_heat": {"count": 1},
                    "ac": {"count": 2},
                    "heat": {"count": 1},
                }
            }
        }
        assert build_booking_equipment(form_data) == {
            "15": {"count": 1, "location": "05", "desired_device": "05"}
        }

    def test_separate_units(self):
        form_data = {
            "scheduling_result": {
                "equipment": {"ac": {"count": 1}, "heat": {"count": 2, "desired_device": "20"}}
            }
        }
        assert build_booking_equipment(form_data) == {
            "05": {"count": 1, "location": "05", "desired_device": "05"},
            "20": {"count": 2, "location": "05", "desired_device": "20"},
        }

    def test_no_scheduling_result(self):
        assert build_booking_equipment({}) == {}
