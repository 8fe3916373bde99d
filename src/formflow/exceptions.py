"""FormFlow exception hierarchy.

All exceptions inherit from FormflowError. Errors that retrying cannot fix
(misconfiguration, missing records, malformed arguments) also inherit from
PermanentError so failure handlers can finalize them instead of retrying.
"""

from __future__ import annotations


class FormflowError(Exception):
    """Base exception for all FormFlow errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code.
    """

    code: str = "formflow_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, object]:
        """Structured fields specific to the error type."""
        return {}

    def to_dict(self) -> dict[str, object]:
        """Convert exception to a log/transport friendly dictionary."""
        return {"error": {"code": self.code, **self.details(), "message": self.message}}


class PermanentError(FormflowError):
    """An error that retrying cannot fix."""

    code: str = "permanent_error"


def is_permanent(error: BaseException) -> bool:
    """Check whether an error must not be scheduled for retry."""
    return isinstance(error, PermanentError)


class ValidationError(PermanentError):
    """Malformed arguments for a scheduled action.

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def details(self) -> dict[str, object]:
        return {"field": self.field}


class NotFoundError(PermanentError):
    """Referenced record does not exist.

    Attributes:
        resource_type: Type of resource (e.g., "instance", "submission").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def details(self) -> dict[str, object]:
        return {"resource_type": self.resource_type, "resource_id": self.resource_id}


class ConfigurationError(PermanentError):
    """Required configuration is missing or invalid.

    Raised for a missing connector, an unconfigured delivery channel,
    or an executor backend that was requested but is unavailable.
    """

    code: str = "configuration_error"


class StorageError(FormflowError):
    """A storage operation failed."""

    code: str = "storage_error"


class SchedulingError(FormflowError):
    """An action could not be handed to any executor."""

    code: str = "scheduling_error"


class DeliveryError(FormflowError):
    """An outbound call (webhook, email, SMS, CRM) did not succeed.

    Attributes:
        status_code: HTTP status code, when one was received.
    """

    code: str = "delivery_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    def details(self) -> dict[str, object]:
        return {"status_code": self.status_code}


__all__ = [
    "ConfigurationError",
    "DeliveryError",
    "FormflowError",
    "NotFoundError",
    "PermanentError",
    "SchedulingError",
    "StorageError",
    "ValidationError",
    "is_permanent",
]
