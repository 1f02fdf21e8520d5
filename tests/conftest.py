"""Pytest fixtures for otel-utils tests."""

from __future__ import annotations

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from otel_utils.config import TelemetryConfig
from otel_utils.context import TelemetryContext
from otel_utils.testing import MockMeterProvider, create_test_config, reset_test_state


@pytest.fixture(autouse=True)
def _clean_state():
    """Reset the default context and one-time warnings around each test."""
    reset_test_state()
    yield
    reset_test_state()


@pytest.fixture
def test_config() -> TelemetryConfig:
    """Testing configuration without thread attributes."""
    return create_test_config()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """In-memory span exporter."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    """SDK tracer provider exporting to memory."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    """In-memory metric reader."""
    return InMemoryMetricReader()


@pytest.fixture
def meter_provider(metric_reader: InMemoryMetricReader) -> MeterProvider:
    """SDK meter provider read from memory."""
    return MeterProvider(metric_readers=[metric_reader])


@pytest.fixture
def telemetry_context(
    tracer_provider: TracerProvider,
    meter_provider: MeterProvider,
    test_config: TelemetryConfig,
) -> TelemetryContext:
    """Context with real SDK providers."""
    return TelemetryContext(
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        config=test_config,
    )


@pytest.fixture
def noop_context(test_config: TelemetryConfig) -> TelemetryContext:
    """Context without providers (no global provider is registered in tests)."""
    return TelemetryContext(config=test_config)


@pytest.fixture
def mock_meter_provider() -> MockMeterProvider:
    """Mock meter provider."""
    return MockMeterProvider()
