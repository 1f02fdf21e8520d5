"""Configuration for otel-utils.

This module provides immutable configuration classes with builder-style
``with_*`` methods, a set of presets, and loading from the standard
``OTEL_*`` environment variables.

Configuration Precedence (highest to lowest):
    1. Explicit ``with_*`` calls
    2. Environment variables (``TelemetryConfig.from_env``)
    3. Default values

Example:
    >>> config = (
    ...     TelemetryConfig.from_env()
    ...     .with_service_name("billing")
    ...     .with_endpoint("http://collector:4317")
    ... )
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any

from otel_utils.exceptions import InvalidConfigValueError
from otel_utils.types import Attributes, ExporterType, OTLPCompression, OTLPProtocol

__all__ = [
    # Configuration classes
    "AttributeLimits",
    "ResourceConfig",
    "OTLPExporterConfig",
    "BatchConfig",
    "TelemetryConfig",
    "EnvReader",
    # Preset configurations
    "DEFAULT_TELEMETRY_CONFIG",
    "DEVELOPMENT_TELEMETRY_CONFIG",
    "PRODUCTION_TELEMETRY_CONFIG",
    "TESTING_TELEMETRY_CONFIG",
    "DISABLED_TELEMETRY_CONFIG",
]

DEFAULT_INSTRUMENTATION_NAME = "otel_utils"


class EnvReader:
    """Typed accessors for environment variables with optional prefix.

    Example:
        >>> reader = EnvReader(prefix="OTEL")
        >>> endpoint = reader.get("EXPORTER_OTLP_ENDPOINT")
        >>> disabled = reader.get_bool("SDK_DISABLED", default=False)
    """

    def __init__(self, prefix: str = "OTEL", environ: dict[str, str] | None = None) -> None:
        """Initialize the environment reader.

        Args:
            prefix: Prefix for environment variable names.
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        self._prefix = prefix
        self._environ = os.environ if environ is None else environ

    def _make_key(self, name: str) -> str:
        if self._prefix:
            return f"{self._prefix}_{name}"
        return name

    def get(self, name: str, default: str | None = None) -> str | None:
        """Get a string variable, treating blank values as unset."""
        value = self._environ.get(self._make_key(name))
        if value is None or not value.strip():
            return default
        return value.strip()

    def get_int(self, name: str, default: int | None = None) -> int | None:
        """Get a positive integer variable.

        Raises:
            InvalidConfigValueError: If the value is not a positive integer.
        """
        raw = self.get(name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid integer value for {self._make_key(name)}: {raw}",
                config_key=self._make_key(name),
                value=raw,
                expected="integer",
                cause=e,
            ) from e
        if value <= 0:
            raise InvalidConfigValueError(
                f"Value for {self._make_key(name)} must be positive: {raw}",
                config_key=self._make_key(name),
                value=raw,
                expected="positive integer",
            )
        return value

    def get_bool(self, name: str, default: bool | None = None) -> bool | None:
        """Get a boolean variable.

        Raises:
            InvalidConfigValueError: If the value is not a recognized boolean.
        """
        raw = self.get(name)
        if raw is None:
            return default
        lowered = raw.lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        raise InvalidConfigValueError(
            f"Invalid boolean value for {self._make_key(name)}: {raw}",
            config_key=self._make_key(name),
            value=raw,
            expected="true/false, 1/0, yes/no, on/off",
        )

    def get_list(self, name: str, separator: str = ",") -> list[str]:
        """Get a separated list variable. Empty items are dropped."""
        raw = self.get(name)
        if raw is None:
            return []
        return [item.strip() for item in raw.split(separator) if item.strip()]


@dataclass(frozen=True)
class AttributeLimits:
    """Validation limits for names and attributes."""

    max_attributes: int = 128
    """Maximum number of distinct keys in one attribute set."""

    max_value_length: int = 4096
    """Maximum length of a string value (or of each string in a sequence)."""

    max_sequence_length: int = 128
    """Maximum number of items in a sequence value."""

    max_name_length: int = 255
    """Maximum length of a sanitized span, metric or attribute name."""

    def __post_init__(self) -> None:
        for key in ("max_attributes", "max_value_length", "max_sequence_length", "max_name_length"):
            value = getattr(self, key)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise InvalidConfigValueError(
                    f"{key} must be a positive integer, got {value!r}",
                    config_key=key,
                    value=value,
                    expected="positive integer",
                )

    def with_max_attributes(self, count: int) -> AttributeLimits:
        """Create new limits with an updated attribute count cap."""
        return replace(self, max_attributes=count)

    def with_max_value_length(self, length: int) -> AttributeLimits:
        """Create new limits with an updated string length cap."""
        return replace(self, max_value_length=length)

    def with_max_sequence_length(self, length: int) -> AttributeLimits:
        """Create new limits with an updated sequence length cap."""
        return replace(self, max_sequence_length=length)

    def with_max_name_length(self, length: int) -> AttributeLimits:
        """Create new limits with an updated name length cap."""
        return replace(self, max_name_length=length)


@dataclass(frozen=True)
class ResourceConfig:
    """Configuration for the OpenTelemetry Resource identifying the service."""

    service_name: str = "unknown_service"
    """Appears as the service in tracing backends and prefixes most spans."""

    service_version: str | None = None
    service_namespace: str | None = None
    deployment_environment: str | None = None

    additional_attributes: Attributes = field(default_factory=dict)
    """Additional resource attributes."""

    def with_service_name(self, name: str) -> ResourceConfig:
        """Create a new config with updated service name."""
        if not name or not name.strip():
            raise InvalidConfigValueError(
                "service_name is required",
                config_key="service_name",
                value=name,
                expected="non-blank string",
            )
        return replace(self, service_name=name)

    def with_service_version(self, version: str) -> ResourceConfig:
        """Create a new config with updated service version."""
        return replace(self, service_version=version)

    def with_environment(self, environment: str) -> ResourceConfig:
        """Create a new config with updated deployment environment."""
        return replace(self, deployment_environment=environment)

    def with_attributes(self, **attributes: Any) -> ResourceConfig:
        """Create a new config with additional attributes."""
        merged = dict(self.additional_attributes)
        merged.update(attributes)
        return replace(self, additional_attributes=merged)

    def to_attributes(self) -> dict[str, Any]:
        """Convert to OpenTelemetry resource attributes dictionary."""
        attrs: dict[str, Any] = {"service.name": self.service_name}
        if self.service_version:
            attrs["service.version"] = self.service_version
        if self.service_namespace:
            attrs["service.namespace"] = self.service_namespace
        if self.deployment_environment:
            attrs["deployment.environment"] = self.deployment_environment
        attrs.update(self.additional_attributes)
        return attrs


@dataclass(frozen=True)
class OTLPExporterConfig:
    """Configuration for the OTLP exporters."""

    endpoint: str = "http://localhost:4317"
    protocol: OTLPProtocol = OTLPProtocol.GRPC
    compression: OTLPCompression = OTLPCompression.NONE
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0
    insecure: bool = False

    def with_endpoint(self, endpoint: str) -> OTLPExporterConfig:
        """Create a new config with updated endpoint."""
        return replace(self, endpoint=endpoint)

    def with_protocol(self, protocol: OTLPProtocol) -> OTLPExporterConfig:
        """Create a new config with updated protocol."""
        return replace(self, protocol=protocol)

    def with_compression(self, compression: OTLPCompression) -> OTLPExporterConfig:
        """Create a new config with updated compression."""
        return replace(self, compression=compression)

    def with_headers(self, **headers: str) -> OTLPExporterConfig:
        """Create a new config with additional headers."""
        merged = dict(self.headers)
        merged.update(headers)
        return replace(self, headers=merged)

    def with_timeout(self, timeout_seconds: float) -> OTLPExporterConfig:
        """Create a new config with updated timeout."""
        return replace(self, timeout_seconds=timeout_seconds)

    def with_insecure(self, insecure: bool = True) -> OTLPExporterConfig:
        """Create a new config with TLS verification toggled."""
        return replace(self, insecure=insecure)


@dataclass(frozen=True)
class BatchConfig:
    """Batching of exported spans and metric export interval."""

    max_queue_size: int = 2048
    max_export_batch_size: int = 512
    export_timeout_seconds: float = 30.0
    schedule_delay_seconds: float = 5.0

    def with_queue_size(self, size: int) -> BatchConfig:
        """Create a new config with updated queue size."""
        return replace(self, max_queue_size=size)

    def with_batch_size(self, size: int) -> BatchConfig:
        """Create a new config with updated batch size."""
        return replace(self, max_export_batch_size=size)

    def with_schedule_delay(self, delay_seconds: float) -> BatchConfig:
        """Create a new config with updated schedule delay."""
        return replace(self, schedule_delay_seconds=delay_seconds)


@dataclass(frozen=True)
class TelemetryConfig:
    """Top-level configuration aggregating all otel-utils settings.

    Example:
        config = TelemetryConfig().with_service_name("my-service")
    """

    enabled: bool = True
    """Whether telemetry providers should be built at all."""

    tracing_enabled: bool = True
    metrics_enabled: bool = True

    traces_exporter: ExporterType = ExporterType.OTLP
    metrics_exporter: ExporterType = ExporterType.OTLP

    resource: ResourceConfig = field(default_factory=ResourceConfig)
    otlp: OTLPExporterConfig = field(default_factory=OTLPExporterConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    limits: AttributeLimits = field(default_factory=AttributeLimits)

    propagators: tuple[str, ...] = ("tracecontext", "baggage")
    """Context propagators to use."""

    instrumentation_name: str = DEFAULT_INSTRUMENTATION_NAME
    """Instrumentation scope name used for tracers and meters."""

    record_thread_info: bool = True
    """Whether new spans get ``thread.id`` / ``thread.name`` attributes."""

    def with_enabled(self, enabled: bool) -> TelemetryConfig:
        """Create a new config with updated enabled status."""
        return replace(self, enabled=enabled)

    def with_tracing_enabled(self, enabled: bool) -> TelemetryConfig:
        """Create a new config with updated tracing status."""
        return replace(self, tracing_enabled=enabled)

    def with_metrics_enabled(self, enabled: bool) -> TelemetryConfig:
        """Create a new config with updated metrics status."""
        return replace(self, metrics_enabled=enabled)

    def with_exporters(
        self,
        metrics: ExporterType | None = None,
        traces: ExporterType | None = None,
    ) -> TelemetryConfig:
        """Create a new config with updated exporter types."""
        return replace(
            self,
            metrics_exporter=metrics if metrics is not None else self.metrics_exporter,
            traces_exporter=traces if traces is not None else self.traces_exporter,
        )

    def with_resource(self, resource: ResourceConfig) -> TelemetryConfig:
        """Create a new config with updated resource configuration."""
        return replace(self, resource=resource)

    def with_service_name(self, name: str) -> TelemetryConfig:
        """Create a new config with updated service name."""
        return self.with_resource(self.resource.with_service_name(name))

    def with_otlp(self, otlp: OTLPExporterConfig) -> TelemetryConfig:
        """Create a new config with updated OTLP configuration."""
        return replace(self, otlp=otlp)

    def with_endpoint(self, endpoint: str) -> TelemetryConfig:
        """Create a new config with updated OTLP endpoint."""
        return self.with_otlp(self.otlp.with_endpoint(endpoint))

    def with_batch(self, batch: BatchConfig) -> TelemetryConfig:
        """Create a new config with updated batch configuration."""
        return replace(self, batch=batch)

    def with_limits(self, limits: AttributeLimits) -> TelemetryConfig:
        """Create a new config with updated attribute limits."""
        return replace(self, limits=limits)

    def with_propagators(self, *propagators: str) -> TelemetryConfig:
        """Create a new config with updated propagators."""
        return replace(self, propagators=propagators)

    def with_instrumentation_name(self, name: str) -> TelemetryConfig:
        """Create a new config with updated instrumentation scope name."""
        return replace(self, instrumentation_name=name)

    def with_thread_info(self, record: bool) -> TelemetryConfig:
        """Create a new config toggling thread attributes on new spans."""
        return replace(self, record_thread_info=record)

    @classmethod
    def from_env(
        cls,
        environ: dict[str, str] | None = None,
        base: TelemetryConfig | None = None,
    ) -> TelemetryConfig:
        """Create configuration from the standard ``OTEL_*`` variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
            base: Configuration to override. Defaults to ``TelemetryConfig()``.

        Returns:
            Configuration with environment values applied.

        Raises:
            InvalidConfigValueError: If a variable holds an invalid value.
        """
        reader = EnvReader(prefix="OTEL", environ=environ)
        config = base or cls()

        if reader.get_bool("SDK_DISABLED", default=False):
            config = config.with_enabled(False)

        service_name = reader.get("SERVICE_NAME")
        if service_name:
            config = config.with_service_name(service_name)

        endpoint = reader.get("EXPORTER_OTLP_ENDPOINT")
        if endpoint:
            config = config.with_endpoint(endpoint)

        protocol = reader.get("EXPORTER_OTLP_PROTOCOL")
        if protocol:
            config = config.with_otlp(
                config.otlp.with_protocol(
                    _parse_enum(OTLPProtocol, protocol, "OTEL_EXPORTER_OTLP_PROTOCOL")
                )
            )

        traces = reader.get("TRACES_EXPORTER")
        if traces:
            exporter = _parse_enum(ExporterType, traces, "OTEL_TRACES_EXPORTER")
            config = config.with_exporters(traces=exporter)

        metrics = reader.get("METRICS_EXPORTER")
        if metrics:
            exporter = _parse_enum(ExporterType, metrics, "OTEL_METRICS_EXPORTER")
            config = config.with_exporters(metrics=exporter)

        count_limit = reader.get_int("ATTRIBUTE_COUNT_LIMIT")
        if count_limit is not None:
            config = config.with_limits(config.limits.with_max_attributes(count_limit))

        length_limit = reader.get_int("ATTRIBUTE_VALUE_LENGTH_LIMIT")
        if length_limit is not None:
            config = config.with_limits(config.limits.with_max_value_length(length_limit))

        propagators = reader.get_list("PROPAGATORS")
        if propagators:
            config = config.with_propagators(*propagators)

        return config


def _parse_enum(enum_cls: type, raw: str, key: str) -> Any:
    try:
        return enum_cls(raw.strip().lower())
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidConfigValueError(
            f"Invalid value for {key}: {raw}",
            config_key=key,
            value=raw,
            expected=allowed,
            cause=e,
        ) from e


# Preset configurations
DEFAULT_TELEMETRY_CONFIG = TelemetryConfig()
"""Default configuration: OTLP export of traces and metrics."""

DEVELOPMENT_TELEMETRY_CONFIG = TelemetryConfig(
    traces_exporter=ExporterType.CONSOLE,
    metrics_exporter=ExporterType.CONSOLE,
    resource=ResourceConfig(deployment_environment="development"),
)
"""Development configuration with console exporters for debugging."""

PRODUCTION_TELEMETRY_CONFIG = TelemetryConfig(
    resource=ResourceConfig(deployment_environment="production"),
    otlp=OTLPExporterConfig(compression=OTLPCompression.GZIP, timeout_seconds=30.0),
    batch=BatchConfig(max_queue_size=4096, max_export_batch_size=1024),
)
"""Production configuration with compressed OTLP export and larger batches."""

TESTING_TELEMETRY_CONFIG = TelemetryConfig(
    traces_exporter=ExporterType.MEMORY,
    metrics_exporter=ExporterType.MEMORY,
    resource=ResourceConfig(deployment_environment="testing"),
)
"""Testing configuration with in-memory exporters."""

DISABLED_TELEMETRY_CONFIG = TelemetryConfig(
    enabled=False,
    tracing_enabled=False,
    metrics_enabled=False,
    traces_exporter=ExporterType.NONE,
    metrics_exporter=ExporterType.NONE,
)
"""Disabled configuration: every operation runs in no-op mode."""
