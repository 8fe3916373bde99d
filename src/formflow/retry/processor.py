"""Retry worker: replays due retry records against the domain API.

A record is replayed as a booking when the stored form data carries both a
schedule date and time, and as an enrollment otherwise. Completion and
permanent failure are announced through webhooks and the event bus.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from formflow.connectors import ConnectorConfig
from formflow.events import RETRY_COMPLETED, EventBus
from formflow.exceptions import PermanentError
from formflow.models import RetryRecord, RetryStatus

if TYPE_CHECKING:
    from formflow.connectors import ConnectorRegistry, ConnectorResult
    from formflow.credentials import SecretsProvider
    from formflow.models import Instance, Submission
    from formflow.storage import Repository
    from formflow.webhooks import WebhookDeliveryEngine

    from .queue import ActionStore

logger = structlog.get_logger(__name__)

# Equipment codes expected by the booking API
EQUIPMENT_CODES = {"ac_heat": "15", "ac": "05", "heat": "20"}
DEFAULT_EQUIPMENT_OPTION = "05"


@dataclass
class ReplayOutcome:
    """Result of replaying one record."""

    success: bool
    booking: bool = False
    error: str | None = None
    permanent: bool = False


def build_booking_equipment(form_data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Translate the stored scheduling result into the booking API's equipment map.

    A combined AC/heat unit (code 15) excludes the separate AC (05) and
    heat (20) entries.
    """
    scheduling = form_data.get("scheduling_result") or {}
    equipment = scheduling.get("equipment") or {}

    def entry(kind: str) -> dict[str, Any] | None:
        item = equipment.get(kind) or {}
        if not item.get("count"):
            return None
        return {
            "count": item["count"],
            "location": item.get("location", DEFAULT_EQUIPMENT_OPTION),
            "desired_device": item.get("desired_device", DEFAULT_EQUIPMENT_OPTION),
        }

    combined = entry("ac_heat")
    if combined is not None:
        return {EQUIPMENT_CODES["ac_heat"]: combined}

    result: dict[str, dict[str, Any]] = {}
    for kind in ("ac", "heat"):
        item = entry(kind)
        if item is not None:
            result[EQUIPMENT_CODES[kind]] = item
    return result


def _booking_succeeded(result: ConnectorResult) -> bool:
    if result.success or result.confirmation_number or result.data.get("confirmation"):
        return True
    message = result.message.lower()
    return "success" in message or "confirmed" in message


class RetryProcessor:
    """Processes due retry records in one sequential batch.

    Attributes:
        store: Retry store providing claims and the state machine.
        repository: Submission, instance and log access.
        connectors: Registry resolving each instance's domain connector.
        secrets: Decrypts stored instance credentials.
        webhooks: Delivery engine for completion and failure events.
        events: Optional bus receiving ``retry.completed``.
    """

    def __init__(
        self,
        store: ActionStore,
        repository: Repository,
        connectors: ConnectorRegistry,
        secrets: SecretsProvider,
        webhooks: WebhookDeliveryEngine,
        events: EventBus | None = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.connectors = connectors
        self.secrets = secrets
        self.webhooks = webhooks
        self.events = events
        self.log = logger.bind(component="retry_processor")

    async def process(self, limit: int = 10) -> dict[str, int]:
        """Reclaim stale records, then claim and replay up to ``limit`` due records.

        Returns:
            Counts of ``processed``, ``succeeded``, ``failed`` (rescheduled)
            and ``permanent_failures``.
        """
        results = {"processed": 0, "succeeded": 0, "failed": 0, "permanent_failures": 0}

        await self.store.reclaim_stale()
        records = await self.store.get_due(limit)
        if not records:
            self.log.debug("retry_batch_no_records")
            return results

        self.log.info("retry_batch_start", record_count=len(records))

        for record in records:
            results["processed"] += 1
            try:
                status = await self._process_record(record)
            except Exception as e:
                status = await self._record_processing_error(record, e)

            if status == RetryStatus.COMPLETED:
                results["succeeded"] += 1
            elif status == RetryStatus.FAILED:
                results["permanent_failures"] += 1
            else:
                results["failed"] += 1

        self.log.info("retry_batch_complete", **results)
        await self.repository.append_log(
            "info",
            "Retry queue processed: {processed} items, {succeeded} succeeded, "
            "{failed} failed, {permanent_failures} permanent failures".format(**results),
            dict(results),
        )
        return results

    async def _process_record(self, record: RetryRecord) -> RetryStatus:
        self.log.info(
            "retry_record_processing",
            record_id=record.id,
            submission_id=record.submission_ref,
            attempt=record.retry_count + 1,
        )
        outcome = await self.replay(record)
        updated = await self.store.record_outcome(
            record,
            success=outcome.success,
            error=outcome.error,
            permanent=outcome.permanent,
        )

        if updated.status == RetryStatus.COMPLETED:
            await self.repository.update_submission(record.submission_ref, {"status": "completed"})
            if self.events is not None:
                await self.events.publish(
                    RETRY_COMPLETED,
                    {
                        "record_id": updated.id,
                        "submission_id": updated.submission_ref,
                        "instance_id": updated.instance_ref,
                        "booking": outcome.booking,
                    },
                )
            event = "appointment.scheduled" if outcome.booking else "enrollment.completed"
            await self._trigger_webhook(event, updated)
        elif updated.status == RetryStatus.FAILED:
            await self._trigger_webhook("enrollment.failed", updated, error=updated.last_error)
        else:
            self.log.info(
                "retry_record_rescheduled",
                record_id=updated.id,
                retry_count=updated.retry_count,
                next_retry_at=updated.next_retry_at.isoformat() if updated.next_retry_at else None,
                error=outcome.error,
            )
        return updated.status

    async def _record_processing_error(self, record: RetryRecord, error: Exception) -> RetryStatus:
        """Count an unexpected processing error against the record's retry budget.

        If the outcome itself cannot be stored, the record stays in
        processing and is reclaimed once stale.
        """
        message = str(error) or type(error).__name__
        self.log.error(
            "retry_processing_exception",
            record_id=record.id,
            submission_id=record.submission_ref,
            error=message,
            exc_info=error,
        )
        try:
            updated = await self.store.record_outcome(record, success=False, error=message)
        except Exception:
            self.log.error("retry_outcome_not_recorded", record_id=record.id, exc_info=True)
            return RetryStatus.PROCESSING

        await self.repository.append_log(
            "error",
            f"Retry processing error: {message}",
            {"queue_id": record.id, "submission_id": record.submission_ref},
            record.instance_ref,
        )
        if updated.status == RetryStatus.FAILED:
            await self._trigger_webhook("enrollment.failed", updated, error=updated.last_error)
        return updated.status

    async def replay(self, record: RetryRecord) -> ReplayOutcome:
        """Re-run the failed operation behind a record without touching its state."""
        submission = await self.repository.get_submission(record.submission_ref)
        if submission is None:
            return ReplayOutcome(success=False, error="Submission not found", permanent=True)

        instance = await self.repository.get_instance(record.instance_ref)
        if instance is None:
            return ReplayOutcome(success=False, error="Instance not found", permanent=True)

        form_data = submission.form_data
        booking = bool(form_data.get("schedule_date") and form_data.get("schedule_time"))

        if instance.demo_mode:
            self.log.info("retry_demo_mode_skipped", record_id=record.id)
            return ReplayOutcome(success=True, booking=booking)

        try:
            if booking:
                return await self._retry_booking(instance, submission)
            return await self._retry_enrollment(instance, submission)
        except PermanentError as e:
            return ReplayOutcome(success=False, booking=booking, error=e.message, permanent=True)
        except Exception as e:
            self.log.warning("retry_replay_error", record_id=record.id, error=str(e))
            return ReplayOutcome(success=False, booking=booking, error=str(e) or type(e).__name__)

    def _connector_config(self, instance: Instance) -> ConnectorConfig:
        return ConnectorConfig(
            instance_id=instance.id,
            api_endpoint=instance.api_endpoint,
            api_password=(
                self.secrets.decrypt(instance.api_password) if instance.api_password else ""
            ),
            test_mode=instance.test_mode,
        )

    async def _retry_enrollment(self, instance: Instance, submission: Submission) -> ReplayOutcome:
        connector = self.connectors.get(instance.connector)
        result = await connector.submit_enrollment(
            submission.form_data, self._connector_config(instance)
        )
        if result.success or result.confirmation_number:
            return ReplayOutcome(success=True)
        return ReplayOutcome(
            success=False,
            error=result.message or result.data.get("error") or "Unknown enrollment error",
        )

    async def _retry_booking(self, instance: Instance, submission: Submission) -> ReplayOutcome:
        form_data = submission.form_data
        connector = self.connectors.get(instance.connector)
        result = await connector.book_appointment(
            {
                "fsr": form_data.get("fsr_no", ""),
                "ca_no": form_data.get("ca_no") or form_data.get("comverge_no") or "",
                "schedule_date": form_data["schedule_date"],
                "schedule_time": form_data["schedule_time"],
                "equipment": build_booking_equipment(form_data),
            },
            self._connector_config(instance),
        )
        if _booking_succeeded(result):
            return ReplayOutcome(success=True, booking=True)
        return ReplayOutcome(
            success=False,
            booking=True,
            error=result.message or result.data.get("error") or "Unknown booking error",
        )

    async def _trigger_webhook(
        self, event: str, record: RetryRecord, error: str | None = None
    ) -> None:
        submission = await self.repository.get_submission(record.submission_ref)
        if submission is None:
            return

        data: dict[str, Any] = {
            "submission_id": record.submission_ref,
            "instance_id": record.instance_ref,
            "retry_count": record.retry_count,
            "form_data": {
                "account_number": submission.account_number,
                "customer_name": submission.customer_name,
                "device_type": submission.device_type,
            },
        }
        if error:
            data["error"] = error
        await self.webhooks.trigger(event, data, record.instance_ref)


__all__ = ["EQUIPMENT_CODES", "ReplayOutcome", "RetryProcessor", "build_booking_equipment"]
