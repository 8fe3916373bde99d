"""Tests for FormFlow structured logging."""

import structlog

from formflow.config import Settings
from formflow.logging import (
    REDACTED,
    bind_action_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    redact,
)


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        configure_logging()
        logger = get_logger("test")
        logger.info("test message")

    def test_configure_with_text_format(self):
        """Should accept text format for development."""
        configure_logging(level="DEBUG", format="text")
        get_logger("test").debug("text format message")

    def test_configure_from_settings(self):
        configure_from_settings(Settings(log_level="WARNING", log_format="json"))
        get_logger("test").warning("from settings")


class TestRedact:
    """Credentials never reach a log sink."""

    def test_top_level_keys(self):
        assert redact({"password": "hunter2", "to": "a@example.com"}) == {
            "password": REDACTED,
            "to": "a@example.com",
        }

    def test_nested_and_case_insensitive(self):
        value = {"data": {"API_PASSWORD": "x", "items": [{"token": "t", "id": 1}]}}
        assert redact(value) == {
            "data": {"API_PASSWORD": REDACTED, "items": [{"token": REDACTED, "id": 1}]}
        }

    def test_does_not_mutate_input(self):
        original = {"secret": "abc"}
        redact(original)
        assert original == {"secret": "abc"}

    def test_scalars_unchanged(self):
        assert redact("plain") == "plain"
        assert redact(42) == 42


class TestActionContext:
    """Tests for context variable binding."""

    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_bind_action_context(self):
        bind_action_context("act_1", "send_email", instance_id="ins_1")
        context = structlog.contextvars.get_contextvars()
        assert context == {"action_id": "act_1", "hook": "send_email", "instance_id": "ins_1"}

    def test_clear_context(self):
        bind_action_context("act_1", "webhook")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
