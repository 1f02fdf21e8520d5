"""OpenTelemetry SDK provider factories.

Typical patterns for constructing SDK tracer and meter providers from a
:class:`~otel_utils.config.TelemetryConfig`, usable with or without
dependency injection. Exporter packages for OTLP are optional extras and are
imported lazily.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from opentelemetry.sdk.resources import Resource

from otel_utils.config import OTLPExporterConfig, ResourceConfig, TelemetryConfig
from otel_utils.exceptions import ProviderError, TelemetryNotInstalledError
from otel_utils.fallback import retire_provider
from otel_utils.log import get_logger
from otel_utils.types import ExporterType, OTLPCompression, OTLPProtocol

if TYPE_CHECKING:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import MetricExporter, MetricReader
    from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
    from opentelemetry.sdk.trace.export import SpanExporter
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

__all__ = [
    "ProviderBundle",
    "create_resource",
    "create_tracer_provider",
    "create_meter_provider",
    "build_providers",
]

logger = get_logger(__name__)


@dataclass
class ProviderBundle:
    """SDK providers built from one configuration.

    ``span_exporter`` and ``metric_reader`` are set for the MEMORY exporter
    type so tests can inspect finished spans and collected metrics.
    """

    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    span_exporter: InMemorySpanExporter | None = None
    metric_reader: MetricReader | None = None

    def finished_spans(self) -> list[Any]:
        """Spans collected by the in-memory exporter."""
        if self.span_exporter is None:
            return []
        return list(self.span_exporter.get_finished_spans())

    def collect_metrics(self) -> Any:
        """Metrics data collected by the in-memory reader, or None."""
        if self.metric_reader is None:
            return None
        return self.metric_reader.get_metrics_data()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        ok = True
        for provider in (self.tracer_provider, self.meter_provider):
            if provider is None:
                continue
            try:
                ok = bool(provider.force_flush(timeout_millis)) and ok
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to force flush %s: %s", type(provider).__name__, e)
                ok = False
        return ok

    def shutdown(self) -> bool:
        """Shut down both providers.

        Shut-down providers are retired: they count as not registered even
        while they remain installed in the OpenTelemetry API globals.
        """
        ok = True
        for provider in (self.tracer_provider, self.meter_provider):
            if provider is None:
                continue
            retire_provider(provider)
            try:
                provider.shutdown()
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to shutdown %s: %s", type(provider).__name__, e)
                ok = False
        return ok


def create_resource(config: ResourceConfig | None = None) -> Resource:
    """Create an OpenTelemetry Resource from configuration.

    The configured attributes are merged over the SDK default resource.

    Args:
        config: Resource configuration. If None, uses defaults.

    Returns:
        OpenTelemetry Resource instance.
    """
    config = config or ResourceConfig()
    return Resource.create(config.to_attributes())


def _grpc_compression(config: OTLPExporterConfig) -> Any:
    if config.compression != OTLPCompression.GZIP:
        return None
    from grpc import Compression

    return Compression.Gzip


def _http_compression(config: OTLPExporterConfig) -> Any:
    if config.compression != OTLPCompression.GZIP:
        return None
    from opentelemetry.exporter.otlp.proto.http import Compression

    return Compression.Gzip


def _create_otlp_span_exporter(config: OTLPExporterConfig) -> SpanExporter:
    if config.protocol == OTLPProtocol.GRPC:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError as e:
            raise TelemetryNotInstalledError(
                "OTLP gRPC trace exporter", "opentelemetry-exporter-otlp-proto-grpc"
            ) from e
        return OTLPSpanExporter(
            endpoint=config.endpoint,
            insecure=config.insecure,
            headers=tuple(config.headers.items()) if config.headers else None,
            timeout=int(config.timeout_seconds),
            compression=_grpc_compression(config),
        )

    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    except ImportError as e:
        raise TelemetryNotInstalledError(
            "OTLP HTTP trace exporter", "opentelemetry-exporter-otlp-proto-http"
        ) from e
    return OTLPSpanExporter(
        endpoint=config.endpoint,
        headers=config.headers or None,
        timeout=int(config.timeout_seconds),
        compression=_http_compression(config),
    )


def _create_otlp_metric_exporter(config: OTLPExporterConfig) -> MetricExporter:
    if config.protocol == OTLPProtocol.GRPC:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        except ImportError as e:
            raise TelemetryNotInstalledError(
                "OTLP gRPC metric exporter", "opentelemetry-exporter-otlp-proto-grpc"
            ) from e
        return OTLPMetricExporter(
            endpoint=config.endpoint,
            insecure=config.insecure,
            headers=tuple(config.headers.items()) if config.headers else None,
            timeout=int(config.timeout_seconds),
            compression=_grpc_compression(config),
        )

    try:
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    except ImportError as e:
        raise TelemetryNotInstalledError(
            "OTLP HTTP metric exporter", "opentelemetry-exporter-otlp-proto-http"
        ) from e
    return OTLPMetricExporter(
        endpoint=config.endpoint,
        headers=config.headers or None,
        timeout=int(config.timeout_seconds),
        compression=_http_compression(config),
    )


def create_tracer_provider(
    config: TelemetryConfig | None = None,
    exporter: SpanExporter | None = None,
    span_processors: Iterable[SpanProcessor] = (),
    resource: Resource | None = None,
) -> tuple[TracerProvider, InMemorySpanExporter | None]:
    """Create an SDK TracerProvider.

    Args:
        config: Configuration. Defaults to ``TelemetryConfig()``.
        exporter: Custom span exporter. If None, one is created from
            ``config.traces_exporter``.
        span_processors: Extra processors (e.g. LoggingSpanProcessor),
            added before the exporting processor.
        resource: Resource to use. Defaults to one built from ``config.resource``.

    Returns:
        Tuple of (provider, in-memory exporter or None).

    Raises:
        TelemetryNotInstalledError: If an OTLP extra is missing.
        ProviderError: If the provider cannot be built.
    """
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

    config = config or TelemetryConfig()
    memory_exporter: InMemorySpanExporter | None = None

    try:
        provider = TracerProvider(resource=resource or create_resource(config.resource))
        for processor in span_processors:
            provider.add_span_processor(processor)

        if exporter is None:
            if config.traces_exporter == ExporterType.OTLP:
                exporter = _create_otlp_span_exporter(config.otlp)
            elif config.traces_exporter == ExporterType.CONSOLE:
                exporter = ConsoleSpanExporter()
            elif config.traces_exporter == ExporterType.MEMORY:
                memory_exporter = InMemorySpanExporter()
                exporter = memory_exporter

        if exporter is not None:
            if config.traces_exporter in (ExporterType.MEMORY, ExporterType.CONSOLE):
                provider.add_span_processor(SimpleSpanProcessor(exporter))
            else:
                provider.add_span_processor(
                    BatchSpanProcessor(
                        exporter,
                        max_queue_size=config.batch.max_queue_size,
                        max_export_batch_size=config.batch.max_export_batch_size,
                        export_timeout_millis=int(config.batch.export_timeout_seconds * 1000),
                        schedule_delay_millis=int(config.batch.schedule_delay_seconds * 1000),
                    )
                )
    except TelemetryNotInstalledError:
        raise
    except Exception as e:
        raise ProviderError(
            f"Failed to initialize TracerProvider: {e}",
            provider_type="tracer",
            cause=e,
        ) from e

    return provider, memory_exporter


def create_meter_provider(
    config: TelemetryConfig | None = None,
    exporter: MetricExporter | None = None,
    resource: Resource | None = None,
) -> tuple[MeterProvider, MetricReader | None]:
    """Create an SDK MeterProvider.

    Args:
        config: Configuration. Defaults to ``TelemetryConfig()``.
        exporter: Custom metric exporter, read periodically.
        resource: Resource to use. Defaults to one built from ``config.resource``.

    Returns:
        Tuple of (provider, in-memory reader or None).

    Raises:
        TelemetryNotInstalledError: If an OTLP extra is missing.
        ProviderError: If the provider cannot be built.
    """
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import (
        ConsoleMetricExporter,
        InMemoryMetricReader,
        PeriodicExportingMetricReader,
    )

    config = config or TelemetryConfig()
    resource = resource or create_resource(config.resource)
    memory_reader: InMemoryMetricReader | None = None
    readers: list[Any] = []

    try:
        if exporter is None:
            if config.metrics_exporter == ExporterType.OTLP:
                exporter = _create_otlp_metric_exporter(config.otlp)
            elif config.metrics_exporter == ExporterType.CONSOLE:
                exporter = ConsoleMetricExporter()
            elif config.metrics_exporter == ExporterType.MEMORY:
                memory_reader = InMemoryMetricReader()
                readers.append(memory_reader)

        if exporter is not None:
            readers.append(
                PeriodicExportingMetricReader(
                    exporter=exporter,
                    export_interval_millis=int(config.batch.schedule_delay_seconds * 1000),
                    export_timeout_millis=int(config.batch.export_timeout_seconds * 1000),
                )
            )

        provider = MeterProvider(resource=resource, metric_readers=readers)
    except TelemetryNotInstalledError:
        raise
    except Exception as e:
        raise ProviderError(
            f"Failed to initialize MeterProvider: {e}",
            provider_type="meter",
            cause=e,
        ) from e

    return provider, memory_reader


def build_providers(
    config: TelemetryConfig | None = None,
    span_processors: Iterable[SpanProcessor] = (),
) -> ProviderBundle:
    """Build the tracer and meter providers a configuration asks for.

    Disabled signals get no provider, so a context built from the bundle runs
    them in no-op mode.

    Args:
        config: Configuration. Defaults to ``TelemetryConfig()``.
        span_processors: Extra span processors for the tracer provider.

    Returns:
        ProviderBundle with the built providers.
    """
    config = config or TelemetryConfig()
    bundle = ProviderBundle()
    if not config.enabled:
        logger.info("Telemetry is disabled by configuration")
        return bundle

    resource = create_resource(config.resource)
    if config.tracing_enabled:
        bundle.tracer_provider, bundle.span_exporter = create_tracer_provider(
            config, span_processors=span_processors, resource=resource
        )
    if config.metrics_enabled:
        bundle.meter_provider, bundle.metric_reader = create_meter_provider(
            config, resource=resource
        )
    return bundle
