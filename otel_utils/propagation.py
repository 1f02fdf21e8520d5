"""Context propagation across process boundaries.

Injects the active OpenTelemetry context into text carriers (HTTP headers,
message metadata) and extracts it on the receiving side, using a composite of
named propagators. W3C Trace Context and Baggage ship with opentelemetry-api;
``b3``/``b3multi`` and ``jaeger`` are used when their packages are installed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from opentelemetry import context as otel_context
from opentelemetry.propagators.composite import CompositePropagator

from otel_utils.exceptions import PropagationError
from otel_utils.log import get_logger
from otel_utils.types import ContextCarrier

if TYPE_CHECKING:
    from opentelemetry.context import Context

    from otel_utils.scope import ScopeHandle

__all__ = [
    "ContextPropagator",
    "inject_context",
    "extract_context",
]

logger = get_logger(__name__)

DEFAULT_PROPAGATORS: tuple[str, ...] = ("tracecontext", "baggage")


def _create_propagator(name: str) -> Any:
    if name == "tracecontext":
        from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

        return TraceContextTextMapPropagator()
    if name == "baggage":
        from opentelemetry.baggage.propagation import W3CBaggagePropagator

        return W3CBaggagePropagator()
    if name in ("b3", "b3multi"):
        try:
            from opentelemetry.propagators.b3 import B3MultiFormat, B3SingleFormat
        except ImportError:
            logger.warning("Propagator '%s' needs opentelemetry-propagator-b3; skipping", name)
            return None
        return B3SingleFormat() if name == "b3" else B3MultiFormat()
    if name == "jaeger":
        try:
            from opentelemetry.propagators.jaeger import JaegerPropagator
        except ImportError:
            logger.warning("Propagator 'jaeger' needs opentelemetry-propagator-jaeger; skipping")
            return None
        return JaegerPropagator()
    if name == "none":
        return None
    logger.warning("Unknown propagator '%s'; skipping", name)
    return None


class ContextPropagator:
    """Composite text-map propagator built from propagator names.

    Example:
        propagator = ContextPropagator()

        headers: dict[str, str] = {}
        propagator.inject(headers)

        remote = propagator.extract(headers)
        scope.open("handle.request", parent=remote)
    """

    def __init__(self, propagators: tuple[str, ...] = DEFAULT_PROPAGATORS) -> None:
        """Initialize ContextPropagator.

        Args:
            propagators: Propagator names, applied in order. Unknown or
                unavailable names are logged and skipped.
        """
        self._names = tuple(propagators)
        resolved = [_create_propagator(name.strip().lower()) for name in self._names]
        self._propagator = CompositePropagator([p for p in resolved if p is not None])

    @property
    def propagators(self) -> tuple[str, ...]:
        return self._names

    @property
    def fields(self) -> set[str]:
        """Carrier keys the propagators may set."""
        return set(self._propagator.fields)

    def inject(
        self,
        carrier: ContextCarrier,
        context: Context | ScopeHandle | None = None,
    ) -> ContextCarrier:
        """Inject a context into ``carrier``.

        Args:
            carrier: Mutable mapping receiving the propagation fields.
            context: Context or ScopeHandle to inject. Defaults to the
                active context.

        Returns:
            The same carrier, for chaining.

        Raises:
            PropagationError: If a propagator fails.
        """
        if context is not None and not isinstance(context, otel_context.Context):
            context = context.context
        try:
            self._propagator.inject(carrier, context=context or otel_context.get_current())
        except Exception as e:
            raise PropagationError(
                "Failed to inject context into carrier",
                operation="inject",
                propagators=self._names,
                cause=e,
            ) from e
        return carrier

    def extract(self, carrier: ContextCarrier, context: Context | None = None) -> Context:
        """Extract a context from ``carrier``.

        Args:
            carrier: Mapping holding propagation fields.
            context: Base context to extend. Defaults to the active context.

        Returns:
            Extracted context, usable as a scope parent.

        Raises:
            PropagationError: If a propagator fails.
        """
        try:
            return self._propagator.extract(carrier, context=context)
        except Exception as e:
            raise PropagationError(
                "Failed to extract context from carrier",
                operation="extract",
                propagators=self._names,
                cause=e,
            ) from e

    def __repr__(self) -> str:
        return f"ContextPropagator(propagators={self._names!r})"


def inject_context(
    carrier: ContextCarrier | None = None,
    context: Context | ScopeHandle | None = None,
    propagators: tuple[str, ...] = DEFAULT_PROPAGATORS,
) -> ContextCarrier:
    """Inject the active (or given) context into a carrier.

    Example:
        headers = inject_context()
        # headers now contains traceparent (and baggage, when set)
    """
    return ContextPropagator(propagators).inject({} if carrier is None else carrier, context)


def extract_context(
    carrier: ContextCarrier,
    propagators: tuple[str, ...] = DEFAULT_PROPAGATORS,
) -> Context:
    """Extract a context from a carrier."""
    return ContextPropagator(propagators).extract(carrier)
