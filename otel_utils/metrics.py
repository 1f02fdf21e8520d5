"""Cached metric instruments with concurrency-safe recording.

MetricRecorder hands out counter, up-down-counter and histogram handles keyed
by sanitized name. Handles live in the TelemetryContext instrument cache and
are shared by every caller asking for the same name; asking for an existing
name with a different kind or unit is an :class:`InstrumentConflictError`.

Recording never raises for backend failures: a failing instrument is logged
once and the measurement is dropped.

Example:
    >>> recorder = MetricRecorder()
    >>> requests = recorder.counter("http.requests", unit="1")
    >>> recorder.increment(requests, attributes={"http.method": "GET"})
    >>> latency = recorder.histogram("http.duration", unit="ms")
    >>> recorder.record(latency, 12.5)
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from otel_utils.attributes import EMPTY_ATTRIBUTES, AttributeSet, attributes_from
from otel_utils.context import TelemetryContext, get_default_context
from otel_utils.exceptions import InstrumentConflictError, InvalidMeasurementError
from otel_utils.fallback import NOOP_PROVIDER
from otel_utils.log import get_logger, warn_once
from otel_utils.naming import NameSanitizer, sanitizer_for
from otel_utils.types import InstrumentKind

__all__ = [
    "InstrumentHandle",
    "CounterHandle",
    "UpDownCounterHandle",
    "HistogramHandle",
    "MetricRecorder",
]

logger = get_logger(__name__)


class InstrumentHandle:
    """Shared reference to one underlying instrument.

    Attributes:
        name: Sanitized instrument name.
        kind: Instrument kind.
        unit: Unit of measure.
        description: Human-readable description.
    """

    kind: InstrumentKind

    def __init__(
        self,
        name: str,
        unit: str,
        description: str,
        instrument: Any,
        context: TelemetryContext,
    ) -> None:
        self.name = name
        self.unit = unit
        self.description = description
        self._instrument = instrument
        self._context = context

    @property
    def instrument(self) -> Any:
        """The underlying OpenTelemetry instrument."""
        return self._instrument

    @property
    def is_active(self) -> bool:
        """Whether measurements on this handle are actually recorded."""
        return self._context.is_metrics_active()

    def _attributes(self, attributes: Mapping[str, Any] | None) -> AttributeSet:
        if not attributes:
            return EMPTY_ATTRIBUTES
        return attributes_from(attributes, limits=self._context.config.limits)

    def _check_number(self, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidMeasurementError(
                self.name, value, f"expected int or float, got {type(value).__name__}"
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidMeasurementError(self.name, value, "value must be finite")

    def _emit(self, method: str, value: int | float, attributes: AttributeSet) -> None:
        try:
            getattr(self._instrument, method)(value, attributes=attributes or None)
        except Exception as e:  # noqa: BLE001
            warn_once(
                logger,
                f"instrument:{self.kind.value}:{self.name}",
                "Dropping measurements for %s '%s': %s",
                self.kind.value,
                self.name,
                e,
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, unit={self.unit!r})"


class CounterHandle(InstrumentHandle):
    """Monotonic counter handle."""

    kind = InstrumentKind.COUNTER

    def add(self, delta: int | float = 1, attributes: Mapping[str, Any] | None = None) -> None:
        """Add a non-negative delta.

        Raises:
            InvalidMeasurementError: If ``delta`` is negative or not a number.
        """
        self._check_number(delta)
        if delta < 0:
            raise InvalidMeasurementError(self.name, delta, "counter delta must be non-negative")
        self._emit("add", delta, self._attributes(attributes))


class UpDownCounterHandle(InstrumentHandle):
    """Counter that may go down (gauge-like sums)."""

    kind = InstrumentKind.UP_DOWN_COUNTER

    def add(self, delta: int | float = 1, attributes: Mapping[str, Any] | None = None) -> None:
        """Add a delta of either sign."""
        self._check_number(delta)
        self._emit("add", delta, self._attributes(attributes))


class HistogramHandle(InstrumentHandle):
    """Histogram handle."""

    kind = InstrumentKind.HISTOGRAM

    def record(self, value: int | float, attributes: Mapping[str, Any] | None = None) -> None:
        """Record one value."""
        self._check_number(value)
        self._emit("record", value, self._attributes(attributes))


_HANDLE_TYPES: dict[InstrumentKind, type[InstrumentHandle]] = {
    InstrumentKind.COUNTER: CounterHandle,
    InstrumentKind.UP_DOWN_COUNTER: UpDownCounterHandle,
    InstrumentKind.HISTOGRAM: HistogramHandle,
}

_FACTORIES: dict[InstrumentKind, str] = {
    InstrumentKind.COUNTER: "create_counter",
    InstrumentKind.UP_DOWN_COUNTER: "create_up_down_counter",
    InstrumentKind.HISTOGRAM: "create_histogram",
}


class MetricRecorder:
    """Creates and caches instrument handles, and records measurements.

    Handles are cached in the TelemetryContext, so two recorders sharing a
    context share handles. Concurrent ``increment``/``record`` calls on one
    handle need no external locking.
    """

    def __init__(
        self,
        context: TelemetryContext | None = None,
        sanitizer: NameSanitizer | None = None,
    ) -> None:
        """Initialize MetricRecorder.

        Args:
            context: Telemetry context. None follows the process default,
                looked up on every call, so a recorder created before
                :func:`otel_utils.configure_telemetry` records once it runs.
            sanitizer: Name sanitizer. Defaults to one honoring the
                context's ``limits.max_name_length``.
        """
        self._context = context
        self._sanitizer = sanitizer

    @property
    def context(self) -> TelemetryContext:
        return self._context or get_default_context()

    @property
    def sanitizer(self) -> NameSanitizer:
        if self._sanitizer is not None:
            return self._sanitizer
        return sanitizer_for(self.context.config.limits.max_name_length)

    def is_active(self) -> bool:
        """Whether metrics are actually recorded."""
        return self.context.is_metrics_active()

    def counter(self, name: str, unit: str = "1", description: str = "") -> CounterHandle:
        """Get or create a monotonic counter."""
        return self._get_or_create(InstrumentKind.COUNTER, name, unit, description)

    def up_down_counter(
        self, name: str, unit: str = "1", description: str = ""
    ) -> UpDownCounterHandle:
        """Get or create an up-down counter."""
        return self._get_or_create(InstrumentKind.UP_DOWN_COUNTER, name, unit, description)

    def histogram(self, name: str, unit: str = "1", description: str = "") -> HistogramHandle:
        """Get or create a histogram."""
        return self._get_or_create(InstrumentKind.HISTOGRAM, name, unit, description)

    def increment(
        self,
        handle: CounterHandle | UpDownCounterHandle,
        delta: int | float = 1,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        """Add ``delta`` to a counter handle."""
        handle.add(delta, attributes)

    def record(
        self,
        handle: HistogramHandle,
        value: int | float,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        """Record ``value`` on a histogram handle."""
        handle.record(value, attributes)

    def _get_or_create(
        self,
        kind: InstrumentKind,
        name: str,
        unit: str,
        description: str,
    ) -> Any:
        context = self.context
        clean_name = self.sanitizer.sanitize(name)
        cache = context.instruments

        handle = cache.get(clean_name)
        if handle is None:
            with context.lock:
                handle = cache.get(clean_name)
                if handle is None:
                    handle = self._create(context, kind, clean_name, unit, description)
                    cache[clean_name] = handle
                    return handle

        if handle.kind is not kind or handle.unit != unit:
            raise InstrumentConflictError(
                clean_name,
                existing=(handle.kind.value, handle.unit),
                requested=(kind.value, unit),
            )
        return handle

    def _create(
        self,
        context: TelemetryContext,
        kind: InstrumentKind,
        name: str,
        unit: str,
        description: str,
    ) -> InstrumentHandle:
        meter = context.meter
        try:
            instrument = getattr(meter, _FACTORIES[kind])(
                name=name, unit=unit, description=description
            )
        except Exception as e:  # noqa: BLE001
            warn_once(
                logger,
                f"create:{kind.value}:{name}",
                "Could not create %s '%s' (%s); using a no-op instrument",
                kind.value,
                name,
                e,
            )
            noop_meter = NOOP_PROVIDER.get_meter(context.config.instrumentation_name)
            instrument = getattr(noop_meter, _FACTORIES[kind])(name=name, unit=unit)

        logger.debug("Created %s '%s' [%s]", kind.value, name, unit)
        return _HANDLE_TYPES[kind](name, unit, description, instrument, context)
