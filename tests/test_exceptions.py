"""Tests for FormFlow exception hierarchy."""

import pytest

from formflow.exceptions import (
    ConfigurationError,
    DeliveryError,
    FormflowError,
    NotFoundError,
    PermanentError,
    SchedulingError,
    StorageError,
    ValidationError,
    is_permanent,
)


class TestFormflowError:
    """Tests for the base FormflowError class."""

    def test_error_message(self):
        error = FormflowError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_to_dict(self):
        """Should convert to a log friendly dict."""
        assert FormflowError("boom").to_dict() == {
            "error": {"code": "formflow_error", "message": "boom"}
        }

    def test_inheritance(self):
        """All custom exceptions should inherit from FormflowError."""
        exceptions = [
            ValidationError("field", "invalid"),
            NotFoundError("instance", "ins_1"),
            ConfigurationError("missing"),
            StorageError("failed"),
            SchedulingError("failed"),
            DeliveryError("failed", 500),
        ]
        for exc in exceptions:
            assert isinstance(exc, FormflowError)


class TestPermanentClassification:
    """Permanent errors are finalized, everything else is retried."""

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("to", "missing"),
            NotFoundError("webhook", "whk_1"),
            ConfigurationError("Email channel not configured"),
        ],
    )
    def test_permanent(self, error):
        assert is_permanent(error)
        assert isinstance(error, PermanentError)

    @pytest.mark.parametrize(
        "error",
        [
            StorageError("locked"),
            SchedulingError("refused"),
            DeliveryError("HTTP 503", 503),
            TimeoutError("slow"),
            RuntimeError("unexpected"),
        ],
    )
    def test_transient(self, error):
        assert not is_permanent(error)


class TestSpecificErrors:
    def test_validation_error_field(self):
        error = ValidationError("delay", "must not be negative")
        assert error.field == "delay"
        assert error.message == "delay: must not be negative"
        assert error.to_dict()["error"]["field"] == "delay"

    def test_not_found_error(self):
        error = NotFoundError("instance", "ins_42")
        assert error.message == "instance not found: ins_42"
        assert error.to_dict()["error"]["resource_id"] == "ins_42"

    def test_delivery_error_status(self):
        error = DeliveryError("HTTP 502", 502)
        assert error.status_code == 502
        assert error.code == "delivery_error"
        assert error.to_dict()["error"]["status_code"] == 502
