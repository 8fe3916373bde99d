"""Tests for hook handlers and failure routing."""

from __future__ import annotations

import httpx
import pytest
from helpers import EventRecorder, RecordingSender, wait_for

from formflow.cache import ResultCache, api_result_key
from formflow.channels import Channels
from formflow.connectors import ConnectorResult
from formflow.credentials import PlaintextSecrets
from formflow.events import API_COMPLETED, QUEUE_PERMANENT_FAILURE
from formflow.exceptions import DeliveryError
from formflow.models import ApiCallArgs, Hook, QueuedAction, RetryStatus, WebhookEndpoint
from formflow.retry import ActionStore, BackoffPolicy
from formflow.scheduler import ActionHandlers, Scheduler
from formflow.webhooks import WebhookDeliveryEngine

# Near-zero backoff so queue-level retries fire within the test
FAST_BACKOFF = BackoffPolicy(base_seconds=0.01, growth=1, max_delay_seconds=0.01)


class Harness:
    """Handlers wired to in-memory collaborators."""

    def __init__(self, storage, registry, events, clock, http_status: int = 200) -> None:
        self.email = RecordingSender()
        self.sms = RecordingSender()
        self.crm = RecordingSender()
        self.http_requests: list[httpx.Request] = []
        self.http_status = http_status

        def handle(request: httpx.Request) -> httpx.Response:
            self.http_requests.append(request)
            return httpx.Response(self.http_status)

        self.storage = storage
        self.cache = ResultCache()
        self.store = ActionStore(storage, events=events, clock=clock)
        self.scheduler = Scheduler()
        self.webhooks = WebhookDeliveryEngine(
            storage, transport=httpx.MockTransport(handle), clock=clock
        )
        self.handlers = ActionHandlers(
            self.scheduler,
            storage,
            self.store,
            registry,
            PlaintextSecrets(),
            self.webhooks,
            channels=Channels(email=self.email, sms=self.sms, crm=self.crm),
            cache=self.cache,
            events=events,
            policy=FAST_BACKOFF,
            max_retries=3,
        )
        self.scheduler.attach(self.handlers)


@pytest.fixture
async def harness(memory_storage, registry, events, clock, instance, submission):
    await memory_storage.save_instance(instance)
    await memory_storage.save_submission(submission)
    harness = Harness(memory_storage, registry, events, clock)
    yield harness
    await harness.scheduler.shutdown()


@pytest.fixture
def recorder(events) -> EventRecorder:
    return EventRecorder(events, API_COMPLETED, QUEUE_PERMANENT_FAILURE)


async def log_messages(storage) -> list[str]:
    return [entry.message for entry in await storage.get_logs(limit=1000)]


class TestApiCall:
    async def test_success_caches_and_publishes(self, harness, connector, recorder):
        action_id = await harness.scheduler.queue_api_call(
            "validate", {"account_number": "123"}, "ins_test"
        )

        operation, data, config = connector.calls[0]
        assert operation == "validate_account"
        assert data == {"account_number": "123"}
        assert config.api_password == "s3cret"
        assert config.api_endpoint == "https://api.example.com"

        cached = harness.cache.get(api_result_key(action_id))
        assert cached["success"] is True
        assert cached["confirmation_number"] == "CONF-1"

        (event,) = recorder[API_COMPLETED]
        assert event["action_id"] == action_id
        assert event["action"] == "validate"
        assert "Queue: API call completed" in await log_messages(harness.storage)

    @pytest.mark.parametrize(
        ("action", "operation"),
        [
            ("enroll", "submit_enrollment"),
            ("schedule", "get_schedule_slots"),
            ("book", "book_appointment"),
        ],
    )
    async def test_action_mapping(self, harness, connector, action, operation):
        await harness.scheduler.queue_api_call(action, {}, "ins_test")
        assert connector.calls[0][0] == operation

    async def test_missing_instance_is_permanent(self, harness, connector, recorder):
        await harness.scheduler.queue_api_call("validate", {}, "ins_missing")

        assert connector.calls == []
        (failure,) = recorder[QUEUE_PERMANENT_FAILURE]
        assert "ins_missing" in failure["error"]
        assert failure["attempt"] == 1

    async def test_unregistered_connector_is_permanent(self, harness, recorder, instance):
        await harness.storage.save_instance(
            instance.model_copy(update={"id": "ins_other", "connector": "acme"})
        )
        await harness.scheduler.queue_api_call("validate", {}, "ins_other")
        (failure,) = recorder[QUEUE_PERMANENT_FAILURE]
        assert "acme" in failure["error"]

    async def test_transient_failure_retried_until_success(
        self, harness, connector, recorder
    ):
        connector.script("validate_account", TimeoutError("API timeout"))

        await harness.scheduler.queue_api_call("validate", {}, "ins_test")

        await wait_for(lambda: len(recorder[API_COMPLETED]) == 1)
        assert len(connector.calls) == 2
        assert recorder[QUEUE_PERMANENT_FAILURE] == []


class TestSubmissionBoundFailures:
    async def test_enroll_failure_goes_to_retry_store(self, harness, connector, clock):
        connector.script("submit_enrollment", ConnectionError("API down"))

        await harness.scheduler.queue_api_call(
            "enroll", {"zip": "19901"}, "ins_test", submission_id="sub_test"
        )

        record = await harness.storage.find_inflight("sub_test")
        assert record is not None
        assert record.status == RetryStatus.PENDING
        assert record.instance_ref == "ins_test"
        assert record.last_error == "API down"
        assert await harness.scheduler.stats() == {
            "executor": "immediate+degraded_timer",
            "durable": False,
            "pending": 0,
        }

    async def test_no_duplicate_inflight_record(self, harness, connector):
        connector.script("book_appointment", ConnectionError("down"), ConnectionError("down"))

        for _ in range(2):
            await harness.scheduler.queue_api_call(
                "book", {}, "ins_test", submission_id="sub_test"
            )

        stats = await harness.store.stats()
        assert stats["pending"] == 1

    async def test_rejected_enrollment_is_cached_then_retried(self, harness, connector):
        connector.script(
            "submit_enrollment", ConnectorResult(success=False, message="Account locked")
        )

        action_id = await harness.scheduler.queue_api_call(
            "enroll", {}, "ins_test", submission_id="sub_test"
        )

        assert harness.cache.get(api_result_key(action_id))["message"] == "Account locked"
        record = await harness.storage.find_inflight("sub_test")
        assert record.last_error == "Account locked"


class TestChannels:
    async def test_email_sent(self, harness):
        await harness.scheduler.queue_email("jane@example.com", "Thanks", "Body", ["X-A: 1"])
        assert harness.email.calls == [("jane@example.com", "Thanks", "Body", ["X-A: 1"], [])]
        assert "Queue: Email sent" in await log_messages(harness.storage)

    async def test_sms_and_crm(self, harness):
        await harness.scheduler.queue_sms("+15550100", "Reminder", "ins_test")
        await harness.scheduler.queue_crm_sync("sub_test", "ins_test", "hubspot")
        assert harness.sms.calls == [("+15550100", "Reminder", "ins_test")]
        assert harness.crm.calls == [("sub_test", "ins_test", "hubspot")]

    async def test_unconfigured_channel_is_permanent(self, harness, recorder):
        harness.handlers.channels = Channels()

        await harness.scheduler.queue_sms("+15550100", "Reminder", "ins_test")

        (failure,) = recorder[QUEUE_PERMANENT_FAILURE]
        assert failure["error"] == "SMS channel not configured"

    async def test_failing_email_exhausts_retries(self, harness, recorder):
        """Initial attempt plus three retries, then one permanent failure."""
        harness.email.result = False

        await harness.scheduler.queue_email("jane@example.com", "Thanks", "Body")

        await wait_for(lambda: len(recorder[QUEUE_PERMANENT_FAILURE]) == 1)
        assert len(harness.email.calls) == 4
        (failure,) = recorder[QUEUE_PERMANENT_FAILURE]
        assert failure["attempt"] == 4
        assert failure["error"] == "Email send failed"
        messages = await log_messages(harness.storage)
        assert messages.count("Queue: Action failed") == 4
        assert messages.count("Queue: Retrying action") == 3
        assert messages.count("Queue: Permanent failure") == 1


class TestWebhookHook:
    @pytest.fixture
    async def endpoint(self, harness) -> WebhookEndpoint:
        endpoint = WebhookEndpoint(
            id="whk_1", url="https://hooks.example.com/in", events={"form.viewed"}
        )
        await harness.storage.save_webhook(endpoint)
        return endpoint

    async def test_single_endpoint_delivery(self, harness, endpoint):
        await harness.scheduler.queue_webhook("form.viewed", {}, "ins_test", webhook_id="whk_1")
        assert len(harness.http_requests) == 1
        assert "Queue: Webhook delivered" in await log_messages(harness.storage)

    async def test_single_endpoint_failure_is_retried(self, harness, endpoint, recorder):
        harness.http_status = 503

        await harness.scheduler.queue_webhook("form.viewed", {}, "ins_test", webhook_id="whk_1")

        await wait_for(lambda: len(recorder[QUEUE_PERMANENT_FAILURE]) == 1)
        assert len(harness.http_requests) == 4
        assert recorder[QUEUE_PERMANENT_FAILURE][0]["error"] == "HTTP 503"

    async def test_inactive_endpoint_is_permanent(self, harness, endpoint, recorder):
        await harness.storage.save_webhook(endpoint.model_copy(update={"is_active": False}))

        await harness.scheduler.queue_webhook("form.viewed", {}, webhook_id="whk_1")

        assert harness.http_requests == []
        assert len(recorder[QUEUE_PERMANENT_FAILURE]) == 1

    async def test_missing_endpoint_is_permanent(self, harness, recorder):
        await harness.scheduler.queue_webhook("form.viewed", {}, webhook_id="whk_missing")
        assert "whk_missing" in recorder[QUEUE_PERMANENT_FAILURE][0]["error"]

    async def test_fan_out_is_fire_once(self, harness, endpoint, recorder):
        """Failures during fan-out are logged, never retried."""
        harness.http_status = 500

        await harness.scheduler.queue_webhook("form.viewed", {}, "ins_test")

        assert len(harness.http_requests) == 1
        assert recorder[QUEUE_PERMANENT_FAILURE] == []
        assert "Webhook whk_1: Failed" in await log_messages(harness.storage)


class TestOnFailure:
    async def test_exhausted_attempt_finalizes(self, harness, recorder):
        action = QueuedAction(
            hook=Hook.API_CALL,
            args=ApiCallArgs(action="validate", instance_id="ins_test", retry_attempt=3),
        )

        await harness.handlers.on_failure(action, TimeoutError("slow"))

        (failure,) = recorder[QUEUE_PERMANENT_FAILURE]
        assert failure["attempt"] == 4
        assert failure["action_id"] == action.action_id
        assert await harness.scheduler.stats() == {
            "executor": "immediate+degraded_timer",
            "durable": False,
            "pending": 0,
        }

    async def test_retry_scheduled_with_backoff(self, harness, recorder):
        action = QueuedAction(
            hook=Hook.API_CALL,
            args=ApiCallArgs(action="validate", instance_id="ins_test"),
        )
        harness.handlers.policy = BackoffPolicy()

        await harness.handlers.on_failure(action, DeliveryError("HTTP 502", 502))

        assert (await harness.scheduler.stats())["pending"] == 1
        assert recorder[QUEUE_PERMANENT_FAILURE] == []

    async def test_failure_log_redacts_args(self, harness):
        action = QueuedAction(
            hook=Hook.API_CALL,
            args=ApiCallArgs(
                action="validate", instance_id="ins_test", data={"password": "p"}, retry_attempt=3
            ),
        )

        await harness.handlers.on_failure(action, TimeoutError("slow"))

        entries = await harness.storage.get_logs(limit=100)
        failed = [e for e in entries if e.message == "Queue: Action failed"]
        assert failed[0].context["args"]["data"]["password"] == "***REDACTED***"
