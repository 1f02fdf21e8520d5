"""Ergonomic, failure-tolerant helpers over OpenTelemetry.

This package wraps the OpenTelemetry API so that instrumenting a library is
safe by default: spans are always closed and the previous context restored,
metric instruments are created once and shared, names and attributes are
validated up front, and everything degrades to a no-op when no provider is
registered.

Features:
- Name sanitization and validated, immutable attribute sets
- Scoped spans (child, linked and root) with guaranteed closure
- Cached counters, up-down counters and histograms
- Explicit TelemetryContext instead of process-wide mutable state
- SDK provider factories configured from code or ``OTEL_*`` variables
- Context propagation and span-event forwarding to ``logging``

Installation:
    pip install otel-utils
    pip install otel-utils[otlp]  # OTLP gRPC/HTTP exporters

Basic Usage:
    from otel_utils import (
        MetricRecorder,
        SpanScope,
        TelemetryConfig,
        configure_telemetry,
    )

    configure_telemetry(TelemetryConfig().with_service_name("my-service"))

    scope = SpanScope()
    with scope.open("db.query", {"db.system": "postgresql"}) as handle:
        handle.add_event("cache miss")

    recorder = MetricRecorder()
    requests = recorder.counter("http.requests")
    recorder.increment(requests, attributes={"http.method": "GET"})

Example with an explicit context:
    from opentelemetry.sdk.trace import TracerProvider
    from otel_utils import SpanScope, TelemetryContext

    ctx = TelemetryContext(tracer_provider=TracerProvider())
    scope = SpanScope(ctx)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from otel_utils.attributes import (
    EMPTY_ATTRIBUTES,
    AttributeBuilder,
    AttributeSet,
    attributes_from,
    validate_attribute,
)
from otel_utils.config import (
    DEFAULT_TELEMETRY_CONFIG,
    DEVELOPMENT_TELEMETRY_CONFIG,
    DISABLED_TELEMETRY_CONFIG,
    PRODUCTION_TELEMETRY_CONFIG,
    TESTING_TELEMETRY_CONFIG,
    AttributeLimits,
    BatchConfig,
    EnvReader,
    OTLPExporterConfig,
    ResourceConfig,
    TelemetryConfig,
)
from otel_utils.context import (
    TelemetryContext,
    get_default_context,
    reset_default_context,
    set_default_context,
)
from otel_utils.exceptions import (
    BuilderAlreadyBuiltError,
    ConfigurationError,
    InstrumentConflictError,
    InvalidAttributeError,
    InvalidConfigValueError,
    InvalidMeasurementError,
    InvalidNameError,
    InvalidParentError,
    OtelUtilsError,
    PropagationError,
    ProviderError,
    ScopeError,
    TelemetryNotInstalledError,
)
from otel_utils.fallback import NOOP_PROVIDER, NoopFallbackProvider
from otel_utils.log import get_logger
from otel_utils.metrics import (
    CounterHandle,
    HistogramHandle,
    InstrumentHandle,
    MetricRecorder,
    UpDownCounterHandle,
)
from otel_utils.naming import NameSanitizer, sanitize
from otel_utils.propagation import ContextPropagator, extract_context, inject_context
from otel_utils.providers import ProviderBundle, build_providers
from otel_utils.scope import ScopeHandle, SpanScope, traced
from otel_utils.types import (
    Attributes,
    AttributeValue,
    ContextCarrier,
    ExporterType,
    InstrumentKind,
    OTLPCompression,
    OTLPProtocol,
    ScopeState,
    SpanRelationship,
    SpanReportingDecision,
)

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import SpanProcessor

__version__ = "0.1.0"

__all__ = [
    # Setup
    "configure_telemetry",
    "shutdown_telemetry",
    "is_configured",
    # Naming and attributes
    "NameSanitizer",
    "sanitize",
    "AttributeBuilder",
    "AttributeSet",
    "EMPTY_ATTRIBUTES",
    "attributes_from",
    "validate_attribute",
    # Spans
    "SpanScope",
    "ScopeHandle",
    "traced",
    # Metrics
    "MetricRecorder",
    "InstrumentHandle",
    "CounterHandle",
    "UpDownCounterHandle",
    "HistogramHandle",
    # Context and providers
    "TelemetryContext",
    "get_default_context",
    "set_default_context",
    "reset_default_context",
    "NoopFallbackProvider",
    "NOOP_PROVIDER",
    "ProviderBundle",
    "build_providers",
    # Propagation
    "ContextPropagator",
    "inject_context",
    "extract_context",
    # Configuration
    "TelemetryConfig",
    "AttributeLimits",
    "ResourceConfig",
    "OTLPExporterConfig",
    "BatchConfig",
    "EnvReader",
    "DEFAULT_TELEMETRY_CONFIG",
    "DEVELOPMENT_TELEMETRY_CONFIG",
    "PRODUCTION_TELEMETRY_CONFIG",
    "TESTING_TELEMETRY_CONFIG",
    "DISABLED_TELEMETRY_CONFIG",
    # Types
    "Attributes",
    "AttributeValue",
    "ContextCarrier",
    "ExporterType",
    "InstrumentKind",
    "OTLPCompression",
    "OTLPProtocol",
    "ScopeState",
    "SpanRelationship",
    "SpanReportingDecision",
    # Exceptions
    "OtelUtilsError",
    "InvalidNameError",
    "InvalidAttributeError",
    "BuilderAlreadyBuiltError",
    "InstrumentConflictError",
    "InvalidMeasurementError",
    "ScopeError",
    "InvalidParentError",
    "ConfigurationError",
    "InvalidConfigValueError",
    "ProviderError",
    "TelemetryNotInstalledError",
    "PropagationError",
]

logger = get_logger(__name__)

_configured_context: TelemetryContext | None = None


def configure_telemetry(
    config: TelemetryConfig | None = None,
    set_global: bool = False,
    span_processors: Iterable[SpanProcessor] = (),
) -> TelemetryContext:
    """Build SDK providers from configuration and install them as the default.

    This is the main entry point for applications. Libraries should not call
    it; they instrument through the default context and stay no-op until the
    application configures telemetry. SpanScope and MetricRecorder instances
    created without an explicit context follow the new default from their
    next call; instrument handles obtained earlier keep their old instruments.

    Args:
        config: Configuration. Defaults to ``TelemetryConfig.from_env()``.
        set_global: Also register the providers with the OpenTelemetry API
            globals, so other instrumentation libraries use them.
        span_processors: Extra span processors, e.g. a LoggingSpanProcessor.

    Returns:
        The new default TelemetryContext.

    Raises:
        TelemetryNotInstalledError: If an OTLP exporter extra is missing.
        ProviderError: If a provider cannot be built.

    Example:
        configure_telemetry(
            TelemetryConfig()
            .with_service_name("my-service")
            .with_endpoint("http://collector:4317")
        )
    """
    global _configured_context

    config = config or TelemetryConfig.from_env()
    bundle = build_providers(config, span_processors=span_processors)
    context = TelemetryContext(config=config, bundle=bundle)

    if set_global:
        from opentelemetry import metrics, trace

        if bundle.tracer_provider is not None:
            trace.set_tracer_provider(bundle.tracer_provider)
        if bundle.meter_provider is not None:
            metrics.set_meter_provider(bundle.meter_provider)

    previous = set_default_context(context)
    if previous is not None and previous is _configured_context:
        previous.shutdown()
    _configured_context = context

    logger.info(
        "Telemetry configured: service=%s, traces=%s, metrics=%s",
        config.resource.service_name,
        config.traces_exporter.value if context.is_tracing_active() else "off",
        config.metrics_exporter.value if context.is_metrics_active() else "off",
    )
    return context


def shutdown_telemetry() -> None:
    """Flush and shut down providers built by :func:`configure_telemetry`.

    The default context is reset, so later helpers fall back to the globally
    registered providers (or no-op). Providers registered with
    ``set_global=True`` stay installed in the OpenTelemetry API globals, which
    cannot be unset, but are retired and so count as not registered.
    """
    global _configured_context

    context = _configured_context
    if context is None:
        return
    context.force_flush()
    context.shutdown()
    _configured_context = None
    if get_default_context() is context:
        reset_default_context()
    logger.info("Telemetry shutdown complete")


def is_configured() -> bool:
    """Check whether :func:`configure_telemetry` installed a context."""
    return _configured_context is not None
