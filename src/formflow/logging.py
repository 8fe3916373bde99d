"""Structured logging configuration for FormFlow.

Provides JSON-formatted structured logging using structlog, with a
processor that redacts credentials from every event before rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor, WrappedLogger

    from formflow.config import Settings

# Keys whose values never reach a log sink
SENSITIVE_KEYS = frozenset({"password", "api_password", "api_key", "token", "secret"})
REDACTED = "***REDACTED***"

_configured = False
_HANDLER_MARK = "_formflow_handler"


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive keys redacted at any depth.

    Args:
        value: Mapping, list or scalar to sanitize.

    Returns:
        The sanitized copy. Scalars are returned unchanged.
    """
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value


def _redact_processor(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    return redact(event_dict)  # type: ignore[no-any-return]


def configure_logging(level: str = "INFO", format: str = "json") -> None:
    """Route structlog events and stdlib records through one handler.

    Library modules log with ``logging.getLogger(__name__)``; the worker and
    processor log structlog events. Both end up in the same stdout handler,
    rendered as JSON or for the console, with credentials redacted.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        format: ``"json"`` for production, ``"text"`` for local runs.

    Example:
        ```python
        from formflow.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        get_logger(__name__).info("worker_started", interval_seconds=300)
        ```
    """
    global _configured

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_processor,
    ]
    renderer: Processor
    if format.lower() == "json":
        renderer = structlog.processors.JSONRenderer()
        exc_formatter: list[Processor] = [structlog.processors.format_exc_info]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        exc_formatter = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *exc_formatter,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(existing)
    setattr(handler, _HANDLER_MARK, True)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def configure_from_settings(settings: Settings) -> None:
    """Configure logging from the ``log_level`` and ``log_format`` settings."""
    configure_logging(level=settings.log_level, format=settings.log_format)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name. Uses calling module name if None.

    Returns:
        A bound structlog logger.
    """
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_action_context(action_id: str, hook: str, **extra: object) -> None:
    """Bind the identity of the action being executed to all log events.

    Args:
        action_id: Scheduled action identifier.
        hook: Hook name of the action.
        **extra: Additional context, e.g. instance_id.
    """
    structlog.contextvars.bind_contextvars(action_id=action_id, hook=hook, **extra)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


__all__ = [
    "REDACTED",
    "SENSITIVE_KEYS",
    "bind_action_context",
    "clear_context",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "redact",
]
