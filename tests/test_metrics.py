"""Tests for MetricRecorder and instrument handles."""

import math
import threading
from unittest.mock import MagicMock

import pytest

from otel_utils.config import AttributeLimits
from otel_utils.context import TelemetryContext, set_default_context
from otel_utils.exceptions import (
    InstrumentConflictError,
    InvalidAttributeError,
    InvalidMeasurementError,
    InvalidNameError,
)
from otel_utils.metrics import CounterHandle, HistogramHandle, MetricRecorder, UpDownCounterHandle
from otel_utils.testing import MockMeterProvider, collect_metrics, create_test_config
from otel_utils.types import InstrumentKind


def _data_points(metric_reader, name):
    data = metric_reader.get_metrics_data()
    points = []
    for resource_metrics in (data.resource_metrics if data else []):
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    points.extend(metric.data.data_points)
    return points


@pytest.fixture
def mock_recorder(mock_meter_provider):
    """Recorder writing to a mock meter provider."""
    ctx = TelemetryContext(meter_provider=mock_meter_provider, config=create_test_config())
    return MetricRecorder(ctx)


class TestInstrumentCache:
    """Tests for instrument creation and caching."""

    def test_same_name_returns_same_handle(self, mock_recorder, mock_meter_provider):
        """Test that repeated requests share one instrument."""
        first = mock_recorder.counter("http.requests")
        second = mock_recorder.counter("http.requests")
        assert first is second
        meter = next(iter(mock_meter_provider.meters.values()))
        assert meter.creations == {"http.requests": 1}

    def test_name_sanitized(self, mock_recorder):
        """Test that instrument names are sanitized before caching."""
        first = mock_recorder.counter("cache hits")
        second = mock_recorder.counter("cache_hits")
        assert first is second
        assert first.name == "cache_hits"

    def test_recorders_share_context_cache(self, mock_meter_provider):
        """Test that recorders on one context share handles."""
        ctx = TelemetryContext(meter_provider=mock_meter_provider)
        assert MetricRecorder(ctx).histogram("latency", "ms") is MetricRecorder(ctx).histogram(
            "latency", "ms"
        )

    def test_kind_conflict(self, mock_recorder):
        """Test that one name cannot be two instrument kinds."""
        mock_recorder.counter("x", "ms")
        with pytest.raises(InstrumentConflictError) as exc_info:
            mock_recorder.histogram("x", "ms")
        assert exc_info.value.existing == ("counter", "ms")
        assert exc_info.value.requested == ("histogram", "ms")

    def test_unit_conflict(self, mock_recorder):
        """Test that one name cannot have two units."""
        mock_recorder.histogram("latency", "ms")
        with pytest.raises(InstrumentConflictError):
            mock_recorder.histogram("latency", "s")

    def test_blank_name_rejected(self, mock_recorder):
        """Test that blank instrument names raise InvalidNameError."""
        with pytest.raises(InvalidNameError):
            mock_recorder.counter("  ")

    def test_handle_types(self, mock_recorder):
        """Test the handle type per kind."""
        assert isinstance(mock_recorder.counter("a"), CounterHandle)
        assert isinstance(mock_recorder.up_down_counter("b"), UpDownCounterHandle)
        assert isinstance(mock_recorder.histogram("c"), HistogramHandle)
        assert mock_recorder.up_down_counter("b").kind is InstrumentKind.UP_DOWN_COUNTER

    def test_concurrent_creation_creates_once(self, mock_recorder, mock_meter_provider):
        """Test that racing creations produce one instrument."""
        barrier = threading.Barrier(16)
        handles = []

        def create():
            barrier.wait()
            handles.append(mock_recorder.counter("racy"))

        threads = [threading.Thread(target=create) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(h) for h in handles}) == 1
        meter = next(iter(mock_meter_provider.meters.values()))
        assert meter.creations["racy"] == 1

    def test_reinitialize_clears_cache(self, mock_meter_provider):
        """Test that reinitialize() drops cached handles."""
        ctx = TelemetryContext(meter_provider=mock_meter_provider)
        recorder = MetricRecorder(ctx)
        old = recorder.counter("requests")
        ctx.reinitialize(meter_provider=MockMeterProvider())
        assert recorder.counter("requests") is not old


class TestRecording:
    """Tests for increment and record."""

    def test_increment(self, mock_recorder, mock_meter_provider):
        """Test incrementing a counter."""
        requests = mock_recorder.counter("http.requests")
        mock_recorder.increment(requests)
        mock_recorder.increment(requests, 4, {"http.method": "GET"})

        values = collect_metrics(mock_meter_provider)["http.requests"]
        assert [v.value for v in values] == [1, 4]
        assert values[1].attributes == {"http.method": "GET"}

    def test_record(self, mock_recorder, mock_meter_provider):
        """Test recording histogram values."""
        latency = mock_recorder.histogram("latency", "ms")
        mock_recorder.record(latency, 12.5)
        mock_recorder.record(latency, 7)
        assert [v.value for v in collect_metrics(mock_meter_provider)["latency"]] == [12.5, 7]

    def test_up_down_counter_accepts_negative(self, mock_recorder, mock_meter_provider):
        """Test that up-down counters go down."""
        active = mock_recorder.up_down_counter("active")
        mock_recorder.increment(active, 3)
        mock_recorder.increment(active, -2)
        meter = next(iter(mock_meter_provider.meters.values()))
        assert meter.up_down_counters["active"].current == 1

    def test_counter_rejects_negative(self, mock_recorder):
        """Test that monotonic counters reject negative deltas."""
        with pytest.raises(InvalidMeasurementError):
            mock_recorder.increment(mock_recorder.counter("requests"), -1)

    @pytest.mark.parametrize("value", [True, "3", None, math.nan, math.inf])
    def test_invalid_values(self, mock_recorder, value):
        """Test rejecting non-numeric or non-finite values."""
        with pytest.raises(InvalidMeasurementError):
            mock_recorder.record(mock_recorder.histogram("latency"), value)

    def test_invalid_attributes(self, mock_recorder):
        """Test that measurement attributes are validated."""
        with pytest.raises(InvalidAttributeError):
            mock_recorder.increment(mock_recorder.counter("requests"), attributes={"k": None})

    def test_attribute_limits_from_context(self, mock_meter_provider):
        """Test that measurement attributes honor the context limits."""
        config = create_test_config().with_limits(AttributeLimits(max_attributes=1))
        recorder = MetricRecorder(TelemetryContext(meter_provider=mock_meter_provider, config=config))
        with pytest.raises(InvalidAttributeError):
            recorder.increment(recorder.counter("requests"), attributes={"a": 1, "b": 2})

    def test_concurrent_increments(self, mock_recorder, mock_meter_provider):
        """Test that N threads x M increments give N*M."""
        threads_count, increments = 8, 250
        requests = mock_recorder.counter("requests")

        def work():
            for _ in range(increments):
                mock_recorder.increment(requests)

        threads = [threading.Thread(target=work) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        meter = next(iter(mock_meter_provider.meters.values()))
        assert meter.counters["requests"].total == threads_count * increments

    def test_sdk_counter(self, meter_provider, metric_reader, test_config):
        """Test recording through the SDK meter provider."""
        recorder = MetricRecorder(TelemetryContext(meter_provider=meter_provider, config=test_config))
        requests = recorder.counter("http.requests")
        recorder.increment(requests, 2, {"http.method": "GET"})
        recorder.increment(requests, 3, {"http.method": "GET"})

        points = _data_points(metric_reader, "http.requests")
        assert len(points) == 1
        assert points[0].value == 5
        assert dict(points[0].attributes) == {"http.method": "GET"}

    def test_sdk_histogram(self, meter_provider, metric_reader, test_config):
        """Test recording histogram values through the SDK."""
        recorder = MetricRecorder(TelemetryContext(meter_provider=meter_provider, config=test_config))
        latency = recorder.histogram("latency", "ms")
        for value in (1.0, 2.0, 3.0):
            recorder.record(latency, value)

        points = _data_points(metric_reader, "latency")
        assert points[0].count == 3
        assert points[0].sum == 6.0


class TestNoopMode:
    """Tests for recording without a meter provider."""

    def test_increment_without_provider(self, noop_context):
        """Test that recording in no-op mode never raises."""
        recorder = MetricRecorder(noop_context)
        requests = recorder.counter("requests")
        recorder.increment(requests)
        recorder.record(recorder.histogram("latency", "ms"), 1.5)
        assert recorder.is_active() is False
        assert requests.is_active is False

    def test_default_context_used(self):
        """Test that a recorder without context uses the default one."""
        ctx = TelemetryContext(meter_provider=MockMeterProvider())
        set_default_context(ctx)
        assert MetricRecorder().context is ctx

    def test_follows_default_context(self):
        """Test that a recorder created early records once a default is installed."""
        recorder = MetricRecorder()
        recorder.increment(recorder.counter("requests"))
        assert recorder.is_active() is False

        provider = MockMeterProvider()
        set_default_context(TelemetryContext(meter_provider=provider))

        assert recorder.is_active() is True
        recorder.increment(recorder.counter("requests"), 3)
        assert collect_metrics(provider)["requests"][0].value == 3

    def test_failing_instrument_dropped(self, caplog):
        """Test that instrument failures are logged once and dropped."""
        instrument = MagicMock()
        instrument.add.side_effect = RuntimeError("exporter down")
        provider = MagicMock()
        provider.get_meter.return_value.create_counter.return_value = instrument

        recorder = MetricRecorder(TelemetryContext(meter_provider=provider))
        requests = recorder.counter("requests")
        recorder.increment(requests)
        recorder.increment(requests)

        assert instrument.add.call_count == 2
        warnings = [r for r in caplog.records if "Dropping measurements" in r.getMessage()]
        assert len(warnings) == 1

    def test_failing_creation_falls_back(self):
        """Test that a failing meter yields a working no-op instrument."""
        provider = MagicMock()
        provider.get_meter.return_value.create_histogram.side_effect = RuntimeError("nope")
        recorder = MetricRecorder(TelemetryContext(meter_provider=provider))
        recorder.record(recorder.histogram("latency"), 3.0)
