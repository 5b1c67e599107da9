"""Tests for structured logging setup."""

import json

import pytest
import structlog

from notefeed.observability.context import (
    clear_correlation_id,
    correlation_id_context,
    set_correlation_id,
)
from notefeed.observability.logging import (
    add_correlation_id_processor,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Keep logging configuration local to each test."""
    clear_correlation_id()
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


def last_entry(capsys) -> dict:
    lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
    return json.loads(lines[-1])


class TestAddCorrelationIdProcessor:
    """Tests for add_correlation_id_processor."""

    def test_adds_correlation_id_when_set(self):
        set_correlation_id("test-corr-id")

        result = add_correlation_id_processor(None, "info", {"event": "test_event"})

        assert result["correlation_id"] == "test-corr-id"

    def test_adds_none_marker_when_not_set(self):
        result = add_correlation_id_processor(None, "info", {"event": "test", "count": 42})

        assert result["correlation_id"] == "none"
        assert result["count"] == 42


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_json_entry_carries_context(self, capsys):
        configure_logging(level="INFO", json_output=True, add_timestamp=False)
        logger = get_logger("stream", owner="alice")

        with correlation_id_context("reconcile-alice-1234abcd"):
            logger.info("stream_opened", host="https://misskey.example")

        entry = last_entry(capsys)
        assert entry["event"] == "stream_opened"
        assert entry["component"] == "stream"
        assert entry["owner"] == "alice"
        assert entry["correlation_id"] == "reconcile-alice-1234abcd"
        assert entry["level"] == "info"
        assert "timestamp" not in entry

    def test_timestamp_added_by_default(self, capsys):
        configure_logging(level="INFO", json_output=True)

        get_logger().info("tick")

        assert "timestamp" in last_entry(capsys)

    def test_respects_log_level(self, capsys):
        configure_logging(level="WARNING", json_output=True)
        logger = get_logger("feed_controller")

        logger.info("initial_load_started")
        logger.warning("stream_reconcile_scheduled")

        err = capsys.readouterr().err
        assert "initial_load_started" not in err
        assert "stream_reconcile_scheduled" in err

    def test_console_output(self, capsys):
        configure_logging(level="DEBUG", json_output=False)

        get_logger().debug("console_event")

        assert "console_event" in capsys.readouterr().err

    def test_logs_go_to_stderr(self, capsys):
        configure_logging(level="INFO", json_output=True)

        get_logger().info("not_on_stdout")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "not_on_stdout" in captured.err


class TestContextBinding:
    """bind_context / clear_context."""

    def test_bound_context_included(self, capsys):
        configure_logging(level="INFO", json_output=True, add_timestamp=False)
        bind_context(owner="bob")

        get_logger().info("page_fetched")

        assert last_entry(capsys)["owner"] == "bob"

    def test_cleared_context_dropped(self, capsys):
        configure_logging(level="INFO", json_output=True, add_timestamp=False)
        bind_context(owner="bob")
        clear_context()

        get_logger().info("page_fetched")

        assert "owner" not in last_entry(capsys)
