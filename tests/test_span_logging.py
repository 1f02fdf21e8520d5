"""Tests for forwarding span events to logging."""

import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import format_span_id, format_trace_id

from otel_utils.context import TelemetryContext
from otel_utils.exceptions import ConfigurationError
from otel_utils.scope import SpanScope
from otel_utils.span_logging import (
    LoggingSpanProcessor,
    SpanEventLogConverter,
    create_logging_span_processor,
)


class ListHandler(logging.Handler):
    """Handler keeping records in memory."""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def handler():
    """In-memory logging handler."""
    return ListHandler()


@pytest.fixture
def logging_scope(handler, test_config):
    """Scope whose spans are forwarded to ``handler``."""
    provider = TracerProvider()
    provider.add_span_processor(create_logging_span_processor("app.spans", handler=handler))
    return SpanScope(TelemetryContext(tracer_provider=provider, config=test_config))


class TestSpanEventLogConverter:
    """Tests for SpanEventLogConverter."""

    def test_blank_logger_name_rejected(self):
        """Test that a logger name is required."""
        with pytest.raises(ConfigurationError):
            SpanEventLogConverter("  ")

    def test_defaults(self):
        """Test default settings."""
        converter = SpanEventLogConverter("app.spans")
        assert converter.logger_name == "app.spans"
        assert converter.default_level == logging.INFO


class TestLoggingSpanProcessor:
    """Tests for LoggingSpanProcessor."""

    def test_event_forwarded(self, logging_scope, handler):
        """Test that each event becomes one record."""
        with logging_scope.open("checkout", {"cart.items": 3}) as scope_handle:
            scope_handle.add_event("payment authorized", {"amount": 12})
            scope_handle.add_event("receipt sent")

        assert [r.getMessage() for r in handler.records] == ["payment_authorized", "receipt_sent"]
        record = handler.records[0]
        assert record.name == "app.spans"
        assert record.levelno == logging.INFO
        assert record.otel_span_name == "checkout"
        assert record.otel_attributes == {"cart.items": 3, "amount": 12}
        assert record.otel_trace_id == format_trace_id(scope_handle.span_context.trace_id)
        assert record.otel_span_id == format_span_id(scope_handle.span_context.span_id)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("trace", logging.DEBUG),
            ("debug", logging.DEBUG),
            (" Warn ", logging.WARNING),
            ("ERROR", logging.ERROR),
            ("fatal", logging.CRITICAL),
            ("verbose", logging.INFO),
        ],
    )
    def test_level_attribute(self, logging_scope, handler, raw, expected):
        """Test choosing the level from the event's level attribute."""
        with logging_scope.open("work") as scope_handle:
            scope_handle.add_event("step", {"LEVEL": raw})
        assert handler.records[0].levelno == expected

    def test_failed_span_logs_errors(self, logging_scope, handler):
        """Test that every event of a failed span is logged at ERROR."""
        with pytest.raises(RuntimeError):
            with logging_scope.open("work") as scope_handle:
                scope_handle.add_event("step", {"level": "debug"})
                raise RuntimeError("boom")

        assert [r.levelno for r in handler.records] == [logging.ERROR, logging.ERROR]

    def test_exception_stacktrace(self, logging_scope, handler):
        """Test that exception events carry the stack trace."""
        logging_scope.open("work").close(ValueError("bad input"))

        record = handler.records[0]
        assert record.getMessage() == "exception"
        assert "ValueError" in record.exc_text
        assert "ValueError" in logging.Formatter().format(record)

    def test_event_timestamp(self, logging_scope, handler):
        """Test that records use the event time."""
        with logging_scope.open("work") as scope_handle:
            scope_handle.add_event("step")
        record = handler.records[0]
        assert record.created > 0
        assert 0 <= record.msecs < 1000

    def test_span_without_events_skipped(self, logging_scope, handler):
        """Test that spans without events log nothing."""
        logging_scope.open("quiet").close()
        assert handler.records == []

    def test_default_level(self, handler, test_config):
        """Test a custom default level."""
        provider = TracerProvider()
        processor = LoggingSpanProcessor(SpanEventLogConverter("app", logging.DEBUG), handler)
        provider.add_span_processor(processor)
        scope = SpanScope(TelemetryContext(tracer_provider=provider, config=test_config))
        with scope.open("work") as scope_handle:
            scope_handle.add_event("step")
        assert handler.records[0].levelno == logging.DEBUG

    def test_logger_dispatch(self, test_config, caplog):
        """Test forwarding through the named logger without a handler."""
        provider = TracerProvider()
        provider.add_span_processor(create_logging_span_processor("app.spans"))
        scope = SpanScope(TelemetryContext(tracer_provider=provider, config=test_config))

        with caplog.at_level(logging.INFO, logger="app.spans"):
            with scope.open("work") as scope_handle:
                scope_handle.add_event("step")

        assert [r.getMessage() for r in caplog.records if r.name == "app.spans"] == ["step"]
