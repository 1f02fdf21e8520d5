"""Type definitions for otel-utils.

This module defines enums and type aliases used throughout the helper layer.
"""

from collections.abc import Mapping, Sequence
from enum import Enum

__all__ = [
    # Enums
    "OTLPProtocol",
    "OTLPCompression",
    "ExporterType",
    "InstrumentKind",
    "ScopeState",
    "SpanRelationship",
    "SpanReportingDecision",
    # Type aliases
    "AttributeValue",
    "Attributes",
    "ContextCarrier",
]


class OTLPProtocol(Enum):
    """OTLP transport protocol options."""

    GRPC = "grpc"
    """gRPC protocol."""

    HTTP_PROTOBUF = "http/protobuf"
    """HTTP with Protocol Buffers encoding."""


class OTLPCompression(Enum):
    """OTLP compression options."""

    NONE = "none"
    GZIP = "gzip"


class ExporterType(Enum):
    """Types of telemetry exporters used by the provider factories."""

    OTLP = "otlp"
    """OTLP exporter - sends data to an OpenTelemetry collector."""

    CONSOLE = "console"
    """Console exporter - prints to stdout for debugging."""

    MEMORY = "memory"
    """In-memory exporter - keeps data in memory for tests."""

    NONE = "none"
    """Provider without exporter - data is recorded but discarded."""


class InstrumentKind(Enum):
    """Kinds of metric instruments managed by MetricRecorder."""

    COUNTER = "counter"
    UP_DOWN_COUNTER = "up_down_counter"
    HISTOGRAM = "histogram"


class ScopeState(Enum):
    """Lifecycle of a ScopeHandle. CLOSED is terminal."""

    OPEN = "open"
    CLOSED = "closed"


class SpanRelationship(Enum):
    """How a new span relates to an existing one."""

    PARENT_CHILD = "parent_child"
    """Child of the explicit parent, or of the current span."""

    LINKED = "linked"
    """Follows-from: a new trace root carrying a link to its cause."""

    ROOT = "root"
    """New trace root with no parent and no links."""


class SpanReportingDecision(Enum):
    """Decision returned by conditionally reported work."""

    REPORT = "report"
    """End the span so it is exported."""

    DROP = "drop"
    """Leave the span unended so it is never exported."""


AttributeValue = str | bool | int | float | Sequence[str] | Sequence[bool] | Sequence[int] | Sequence[float]
"""Valid attribute value types per OpenTelemetry specification."""

Attributes = Mapping[str, AttributeValue]
"""Generic attributes mapping."""

ContextCarrier = dict[str, str]
"""Carrier for context propagation (typically HTTP headers)."""
