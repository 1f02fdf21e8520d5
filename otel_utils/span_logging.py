"""Forward span events to standard-library logging.

Every event of a finished span becomes a :class:`logging.LogRecord` so that
applications which only ship logs still see what their spans recorded.

Example:
    >>> import logging
    >>> from otel_utils import configure_telemetry
    >>> processor = create_logging_span_processor("app.spans")
    >>> configure_telemetry(span_processors=[processor])
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor
from opentelemetry.trace import StatusCode, format_span_id, format_trace_id

from otel_utils.exceptions import ConfigurationError
from otel_utils.log import get_logger, warn_once

__all__ = [
    "SpanEventLogConverter",
    "LoggingSpanProcessor",
    "create_logging_span_processor",
]

logger = get_logger(__name__)

# logging has no TRACE level; trace events are logged at DEBUG.
_LEVELS = {**logging.getLevelNamesMapping(), "TRACE": logging.DEBUG}


def _parse_level(raw: Any) -> int | None:
    if raw is None:
        return None
    clean = str(raw).strip().upper()
    if not clean:
        return None
    return _LEVELS.get(clean)


def _level_attribute(attributes: Mapping[str, Any] | None) -> Any:
    for key, value in (attributes or {}).items():
        if key.lower() == "level":
            return value
    return None


class SpanEventLogConverter:
    """Converts span events into log records.

    The level is ERROR when the span failed, else the event's ``level``
    attribute (TRACE/DEBUG/INFO/WARN/ERROR/FATAL in any case; TRACE maps to
    DEBUG), else ``default_level``. The message is the event name.

    Records carry these extra fields:
        otel_trace_id: Hex trace id.
        otel_span_id: Hex span id.
        otel_span_name: Name of the span.
        otel_attributes: Span attributes merged with event attributes.
    """

    def __init__(self, logger_name: str, default_level: int = logging.INFO) -> None:
        if not isinstance(logger_name, str) or not logger_name.strip():
            raise ConfigurationError("logger_name is required", config_key="logger_name")
        self._logger_name = logger_name
        self._default_level = default_level

    @property
    def logger_name(self) -> str:
        return self._logger_name

    @property
    def default_level(self) -> int:
        return self._default_level

    def level_for(self, event: Any, span: ReadableSpan) -> int:
        if span.status is not None and span.status.status_code is StatusCode.ERROR:
            return logging.ERROR
        level = _parse_level(_level_attribute(event.attributes))
        return self._default_level if level is None else level

    def convert_event(self, event: Any, span: ReadableSpan) -> logging.LogRecord:
        """Convert one event of ``span``."""
        record = logging.LogRecord(
            name=self._logger_name,
            level=self.level_for(event, span),
            pathname="",
            lineno=0,
            msg=event.name,
            args=None,
            exc_info=None,
        )
        if event.timestamp:
            record.created = event.timestamp / 1e9
            record.msecs = (event.timestamp // 1_000_000) % 1000

        event_attributes = dict(event.attributes or {})
        attributes = dict(span.attributes or {})
        attributes.update(event_attributes)
        record.otel_attributes = attributes
        record.otel_span_name = span.name
        span_context = span.context
        if span_context is not None and span_context.is_valid:
            record.otel_trace_id = format_trace_id(span_context.trace_id)
            record.otel_span_id = format_span_id(span_context.span_id)
        else:
            record.otel_trace_id = None
            record.otel_span_id = None

        if event.name == "exception":
            stacktrace = event_attributes.get("exception.stacktrace")
            if stacktrace:
                record.exc_text = str(stacktrace).rstrip("\n")
        return record

    def convert_events(self, span: ReadableSpan) -> list[logging.LogRecord]:
        """Convert every event of ``span``, in recording order."""
        return [self.convert_event(event, span) for event in span.events]

    def __repr__(self) -> str:
        return (
            f"SpanEventLogConverter(logger_name={self._logger_name!r}, "
            f"default_level={logging.getLevelName(self._default_level)})"
        )


class LoggingSpanProcessor(SpanProcessor):
    """Span processor that hands span events to logging when a span ends.

    Records go to ``handler`` when given, else through the logger named by
    the converter (so the application's logging configuration applies).
    """

    def __init__(
        self,
        converter: SpanEventLogConverter,
        handler: logging.Handler | None = None,
    ) -> None:
        self._converter = converter
        self._handler = handler

    @property
    def converter(self) -> SpanEventLogConverter:
        return self._converter

    def on_start(self, span: Any, parent_context: Any = None) -> None:
        return None

    def on_end(self, span: ReadableSpan) -> None:
        if not span.events:
            return
        try:
            records = self._converter.convert_events(span)
        except Exception as e:  # noqa: BLE001
            warn_once(logger, "span-logging", "Failed to convert span events to logs: %s", e)
            return

        if self._handler is not None:
            for record in records:
                self._handler.handle(record)
            return

        target = logging.getLogger(self._converter.logger_name)
        for record in records:
            if target.isEnabledFor(record.levelno):
                target.handle(record)

    def shutdown(self) -> None:
        if self._handler is not None:
            self._handler.flush()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        if self._handler is not None:
            self._handler.flush()
        return True


def create_logging_span_processor(
    logger_name: str,
    default_level: int = logging.INFO,
    handler: logging.Handler | None = None,
) -> LoggingSpanProcessor:
    """Create a LoggingSpanProcessor with a fresh converter."""
    return LoggingSpanProcessor(SpanEventLogConverter(logger_name, default_level), handler)
