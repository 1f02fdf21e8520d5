"""Testing utilities for otel-utils.

This module provides mock meter providers that record measurements in memory
and helpers that build contexts backed by the SDK in-memory exporters.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from otel_utils.config import TESTING_TELEMETRY_CONFIG, TelemetryConfig
from otel_utils.context import TelemetryContext, reset_default_context
from otel_utils.log import reset_warn_once
from otel_utils.providers import build_providers

__all__ = [
    # Mock providers
    "MockMeterProvider",
    "MockMeter",
    # Mock instruments
    "MockCounter",
    "MockUpDownCounter",
    "MockHistogram",
    "MockMetricData",
    # Test helpers
    "create_test_config",
    "create_test_context",
    "create_mock_context",
    "collect_metrics",
    "reset_test_state",
]


@dataclass
class MockMetricData:
    """Mock metric data point."""

    name: str
    value: float
    attributes: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class _MockInstrument:
    def __init__(self, name: str, unit: str = "1", description: str = "") -> None:
        self.name = name
        self.unit = unit
        self.description = description
        self.values: list[MockMetricData] = []
        self._lock = threading.Lock()

    def _append(self, value: float, attributes: Any) -> None:
        point = MockMetricData(name=self.name, value=value, attributes=dict(attributes or {}))
        with self._lock:
            self.values.append(point)


class MockCounter(_MockInstrument):
    """Mock OpenTelemetry Counter. Safe for concurrent ``add`` calls."""

    def add(self, amount: float, attributes: Any = None) -> None:
        """Add a value to the counter."""
        self._append(amount, attributes)

    @property
    def total(self) -> float:
        """Get total count."""
        with self._lock:
            return sum(v.value for v in self.values)


class MockUpDownCounter(_MockInstrument):
    """Mock OpenTelemetry UpDownCounter."""

    def add(self, amount: float, attributes: Any = None) -> None:
        """Add a value of either sign."""
        self._append(amount, attributes)

    @property
    def current(self) -> float:
        """Get current value (sum of all additions)."""
        with self._lock:
            return sum(v.value for v in self.values)


class MockHistogram(_MockInstrument):
    """Mock OpenTelemetry Histogram."""

    def record(self, value: float, attributes: Any = None) -> None:
        """Record a value to the histogram."""
        self._append(value, attributes)

    @property
    def count(self) -> int:
        """Get number of recorded values."""
        with self._lock:
            return len(self.values)

    @property
    def sum(self) -> float:
        """Get sum of recorded values."""
        with self._lock:
            return sum(v.value for v in self.values)


class MockMeter:
    """Mock OpenTelemetry Meter.

    Counts how many instruments were created per name so tests can assert
    that handles are cached.
    """

    def __init__(self, name: str, version: str | None = None) -> None:
        self.name = name
        self.version = version
        self.counters: dict[str, MockCounter] = {}
        self.up_down_counters: dict[str, MockUpDownCounter] = {}
        self.histograms: dict[str, MockHistogram] = {}
        self.creations: dict[str, int] = {}
        self._lock = threading.Lock()

    def _track(self, name: str) -> None:
        with self._lock:
            self.creations[name] = self.creations.get(name, 0) + 1

    def create_counter(self, name: str, unit: str = "1", description: str = "") -> MockCounter:
        """Create a counter."""
        self._track(name)
        counter = MockCounter(name, unit, description)
        self.counters[name] = counter
        return counter

    def create_up_down_counter(
        self, name: str, unit: str = "1", description: str = ""
    ) -> MockUpDownCounter:
        """Create an up-down counter."""
        self._track(name)
        counter = MockUpDownCounter(name, unit, description)
        self.up_down_counters[name] = counter
        return counter

    def create_histogram(self, name: str, unit: str = "1", description: str = "") -> MockHistogram:
        """Create a histogram."""
        self._track(name)
        histogram = MockHistogram(name, unit, description)
        self.histograms[name] = histogram
        return histogram


class MockMeterProvider:
    """Mock OpenTelemetry MeterProvider."""

    def __init__(self) -> None:
        self.meters: dict[str, MockMeter] = {}
        self._is_shutdown = False
        self._lock = threading.Lock()

    def get_meter(
        self,
        name: str,
        version: str | None = None,
        schema_url: str | None = None,
        attributes: Any = None,
    ) -> MockMeter:
        """Get or create a meter."""
        key = f"{name}:{version or ''}"
        with self._lock:
            if key not in self.meters:
                self.meters[key] = MockMeter(name, version)
            return self.meters[key]

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Force flush (no-op for mock)."""
        return True

    def shutdown(self, timeout_millis: int = 30000) -> bool:
        """Shutdown provider."""
        self._is_shutdown = True
        return True

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown


def create_test_config() -> TelemetryConfig:
    """Create a configuration for testing.

    Returns configuration with in-memory exporters and no thread attributes.
    """
    return TESTING_TELEMETRY_CONFIG.with_thread_info(False)


def create_test_context(config: TelemetryConfig | None = None) -> TelemetryContext:
    """Create a context backed by SDK providers with in-memory exporters.

    Finished spans are available from ``context.bundle.finished_spans()`` and
    metrics from ``context.bundle.collect_metrics()``.
    """
    config = config or create_test_config()
    return TelemetryContext(config=config, bundle=build_providers(config))


def create_mock_context(
    meter_provider: MockMeterProvider | None = None,
    config: TelemetryConfig | None = None,
) -> TelemetryContext:
    """Create a context recording metrics into a MockMeterProvider.

    Tracing stays in no-op mode unless a global tracer provider is registered.
    """
    return TelemetryContext(
        meter_provider=meter_provider or MockMeterProvider(),
        config=config or create_test_config(),
    )


def collect_metrics(meter: MockMeter | MockMeterProvider) -> dict[str, list[MockMetricData]]:
    """Collect all metrics from a mock meter.

    Args:
        meter: MockMeter or MockMeterProvider.

    Returns:
        Dictionary mapping metric names to recorded values.
    """
    meters = list(meter.meters.values()) if isinstance(meter, MockMeterProvider) else [meter]
    result: dict[str, list[MockMetricData]] = {}
    for m in meters:
        for instruments in (m.counters, m.up_down_counters, m.histograms):
            for name, instrument in instruments.items():
                result[name] = list(instrument.values)
    return result


def reset_test_state() -> None:
    """Reset global test state.

    Drops the default telemetry context and forgets emitted one-time
    warnings. Call this in test teardown to ensure clean state.
    """
    reset_default_context()
    reset_warn_once()
