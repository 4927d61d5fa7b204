"""Tests for structured logging helpers."""

import logging

import structlog

from meridian.core.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


class TestContextBinding:
    """Context variables flow into every log line."""

    def test_bind_and_clear(self):
        bind_context(app_id="web-1", task_id="abc")
        assert structlog.contextvars.get_contextvars() == {"app_id": "web-1", "task_id": "abc"}

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestConfigureLogging:
    """configure_logging renders through the stdlib logging tree."""

    def test_json_output(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="DEBUG", json_format=True, service="web-1")
        try:
            get_logger("meridian.test").info("tick_done", tasks=3)
            assert '"event": "tick_done"' in caplog.text
            assert '"tasks": 3' in caplog.text
            assert '"service.name": "web-1"' in caplog.text
        finally:
            structlog.reset_defaults()

    def test_level_filters(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="WARNING", json_format=True)
        try:
            get_logger("meridian.test").info("hidden_event")
            assert "hidden_event" not in caplog.text
        finally:
            structlog.reset_defaults()
