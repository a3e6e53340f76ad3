"""Tests for structured logging configuration."""

from __future__ import annotations

import io
import json

import structlog

from remake.core.logging import LogContext, configure_logging, get_logger


def _lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_lines_with_bound_context(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream)
        with LogContext(run_id="abc123"):
            get_logger("remake.tests.json").info("scheduler.run_started", targets=3)

        (record,) = _lines(stream)
        assert record["event"] == "scheduler.run_started"
        assert record["targets"] == 3
        assert record["run_id"] == "abc123"
        assert record["level"] == "info"
        assert record["service"] == "remake"
        assert "timestamp" in record

    def test_unset_context_fields_are_dropped(self):
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream)
        with LogContext(run_id=None, target="model"):
            get_logger("remake.tests.unset").info("builder.succeeded")
        (record,) = _lines(stream)
        assert record["target"] == "model"
        assert "run_id" not in record

    def test_level_filters_events(self):
        stream = io.StringIO()
        configure_logging(level="WARNING", json_format=True, stream=stream)
        logger = get_logger("remake.tests.level")
        logger.info("ignored")
        logger.warning("kept")
        assert [r["event"] for r in _lines(stream)] == ["kept"]

    def test_console_format_is_not_json(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=False, stream=stream, add_timestamp=False)
        get_logger("remake.tests.console").info("cache.log_written", rows=2)
        output = stream.getvalue()
        assert "cache.log_written" in output
        assert not output.lstrip().startswith("{")

    def test_service_name_override(self):
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream, service="pipeline")
        get_logger("remake.tests.service").info("hello")
        assert _lines(stream)[0]["service"] == "pipeline"
        configure_logging(json_format=True, stream=io.StringIO())


class TestLogContext:
    def test_restores_previous_values(self):
        with LogContext(run_id="outer"):
            with LogContext(run_id="inner", target="model"):
                assert structlog.contextvars.get_contextvars() == {"run_id": "inner", "target": "model"}
            assert structlog.contextvars.get_contextvars() == {"run_id": "outer"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_restores_after_an_exception(self):
        try:
            with LogContext(target="model"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert structlog.contextvars.get_contextvars() == {}
