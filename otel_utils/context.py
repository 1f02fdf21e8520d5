"""Telemetry context: explicit holder of provider state.

A :class:`TelemetryContext` replaces process-wide mutable telemetry state.
It resolves its tracer and meter providers lazily on first use (explicit
providers, else the registered global ones, else the no-op fallback), owns the
instrument cache used by :class:`~otel_utils.metrics.MetricRecorder`, and can
be re-initialized under a lock.

A single default instance is assembled on first access and shared by every
helper that is not handed an explicit context.

Example:
    >>> from opentelemetry.sdk.trace import TracerProvider
    >>> ctx = TelemetryContext(tracer_provider=TracerProvider())
    >>> ctx.is_tracing_active()
    True
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from otel_utils.config import TelemetryConfig
from otel_utils.fallback import (
    NOOP_PROVIDER,
    resolve_meter_provider,
    resolve_tracer_provider,
    safe_get_meter,
    safe_get_tracer,
)
from otel_utils.log import get_logger

if TYPE_CHECKING:
    from opentelemetry.metrics import Meter
    from opentelemetry.trace import Tracer

    from otel_utils.providers import ProviderBundle

__all__ = [
    "ProviderState",
    "TelemetryContext",
    "get_default_context",
    "set_default_context",
    "reset_default_context",
]

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderState:
    """Resolved providers of a TelemetryContext. Replaced, never mutated."""

    tracer_provider: Any
    meter_provider: Any
    tracer: Tracer
    meter: Meter
    tracing_active: bool
    metrics_active: bool


class TelemetryContext:
    """Explicit telemetry state passed to SpanScope and MetricRecorder.

    Reads of the resolved state are lock-free; resolution, re-initialization
    and instrument cache population are serialized by one lock so concurrent
    first uses collapse to a single winner.
    """

    def __init__(
        self,
        tracer_provider: Any = None,
        meter_provider: Any = None,
        config: TelemetryConfig | None = None,
        bundle: ProviderBundle | None = None,
    ) -> None:
        """Initialize TelemetryContext.

        Args:
            tracer_provider: Explicit tracer provider. None means the
                registered global provider (or no-op if none is registered).
            meter_provider: Explicit meter provider, same rules.
            config: Configuration (limits, instrumentation name, thread info).
                Disabled signals run in no-op mode whatever the providers.
            bundle: Providers built by :func:`otel_utils.providers.build_providers`;
                they are owned, and shut down by :meth:`shutdown`.
        """
        self._config = config or TelemetryConfig()
        self._bundle = bundle
        if bundle is not None:
            tracer_provider = tracer_provider or bundle.tracer_provider
            meter_provider = meter_provider or bundle.meter_provider
        self._tracer_provider = tracer_provider
        self._meter_provider = meter_provider
        self._state: ProviderState | None = None
        self._lock = threading.RLock()
        self._instruments: dict[str, Any] = {}

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def bundle(self) -> ProviderBundle | None:
        """Providers owned by this context, if it built them."""
        return self._bundle

    @property
    def lock(self) -> threading.RLock:
        """Lock guarding state resolution and the instrument cache."""
        return self._lock

    @property
    def instruments(self) -> dict[str, Any]:
        """Instrument cache keyed by sanitized name.

        Read without locking; write only while holding :attr:`lock`.
        """
        return self._instruments

    def _resolve(self) -> ProviderState:
        state = self._state
        if state is not None:
            return state
        with self._lock:
            if self._state is None:
                self._state = self._build_state()
            return self._state

    def _build_state(self) -> ProviderState:
        config = self._config
        name = config.instrumentation_name
        if config.enabled and config.tracing_enabled:
            tracer_provider = resolve_tracer_provider(self._tracer_provider)
        else:
            tracer_provider = NOOP_PROVIDER
        if config.enabled and config.metrics_enabled:
            meter_provider = resolve_meter_provider(self._meter_provider)
        else:
            meter_provider = NOOP_PROVIDER
        tracer, tracing_active = safe_get_tracer(tracer_provider, name)
        meter, metrics_active = safe_get_meter(meter_provider, name)
        logger.debug(
            "Telemetry context resolved: tracing=%s, metrics=%s",
            tracing_active,
            metrics_active,
        )
        return ProviderState(
            tracer_provider=tracer_provider,
            meter_provider=meter_provider,
            tracer=tracer,
            meter=meter,
            tracing_active=tracing_active,
            metrics_active=metrics_active,
        )

    @property
    def state(self) -> ProviderState:
        """Resolved provider state (resolved on first access)."""
        return self._resolve()

    @property
    def tracer(self) -> Tracer:
        return self._resolve().tracer

    @property
    def meter(self) -> Meter:
        return self._resolve().meter

    def is_active(self) -> bool:
        """Whether any telemetry (traces or metrics) is actually recorded."""
        state = self._resolve()
        return state.tracing_active or state.metrics_active

    def is_tracing_active(self) -> bool:
        return self._resolve().tracing_active

    def is_metrics_active(self) -> bool:
        return self._resolve().metrics_active

    def reinitialize(self, tracer_provider: Any = None, meter_provider: Any = None) -> None:
        """Swap providers and re-resolve state.

        The instrument cache is cleared; handles obtained before this call keep
        recording to their original instruments.

        Args:
            tracer_provider: New explicit tracer provider, or None for global.
            meter_provider: New explicit meter provider, or None for global.
        """
        with self._lock:
            self._tracer_provider = tracer_provider
            self._meter_provider = meter_provider
            self._instruments.clear()
            self._state = self._build_state()
        logger.info(
            "Telemetry context re-initialized: tracing=%s, metrics=%s",
            self._state.tracing_active,
            self._state.metrics_active,
        )

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Flush owned providers. Returns True when nothing failed."""
        if self._bundle is None:
            return True
        return self._bundle.force_flush(timeout_millis)

    def shutdown(self) -> bool:
        """Shut down providers owned by this context.

        Providers passed in explicitly or registered globally are left to
        their owners.
        """
        if self._bundle is None:
            return True
        return self._bundle.shutdown()

    def __repr__(self) -> str:
        state = self._state
        if state is None:
            return "TelemetryContext(unresolved)"
        return (
            f"TelemetryContext(tracing_active={state.tracing_active}, "
            f"metrics_active={state.metrics_active})"
        )


_default_context: TelemetryContext | None = None
_default_lock = threading.Lock()


def get_default_context() -> TelemetryContext:
    """Return the process default context, creating it on first access."""
    ctx = _default_context
    if ctx is not None:
        return ctx
    return _create_default_context()


def _create_default_context() -> TelemetryContext:
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = TelemetryContext()
        return _default_context


def set_default_context(context: TelemetryContext) -> TelemetryContext | None:
    """Install ``context`` as the process default.

    Returns:
        The previous default context, if any.
    """
    global _default_context
    with _default_lock:
        previous = _default_context
        _default_context = context
    return previous


def reset_default_context() -> None:
    """Drop the default context; the next access builds a fresh one."""
    global _default_context
    with _default_lock:
        _default_context = None
