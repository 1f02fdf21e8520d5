"""No-op fallback for missing telemetry providers.

When no tracer or meter provider has been registered, OpenTelemetry hands out
proxy providers. This module decides whether a provider actually records
telemetry and substitutes inert tracers and meters when it does not, so host
applications never fail or block on missing telemetry configuration.
"""

from __future__ import annotations

import weakref
from typing import Any

from opentelemetry import metrics, trace

from otel_utils.log import get_logger, warn_once

__all__ = [
    "NoopFallbackProvider",
    "NOOP_PROVIDER",
    "is_real_tracer_provider",
    "is_real_meter_provider",
    "retire_provider",
    "resolve_tracer_provider",
    "resolve_meter_provider",
    "safe_get_tracer",
    "safe_get_meter",
]

logger = get_logger(__name__)

# The metrics proxy class is private in opentelemetry-api; match it by name.
_PROXY_PROVIDER_NAMES = frozenset({"ProxyTracerProvider", "_ProxyMeterProvider", "ProxyMeterProvider"})

_retired_providers: weakref.WeakSet[Any] = weakref.WeakSet()


class NoopFallbackProvider:
    """Provider whose tracers and meters record nothing.

    Example:
        provider = NoopFallbackProvider()
        tracer = provider.get_tracer("my-lib")
        with tracer.start_as_current_span("work"):
            ...  # nothing is recorded
    """

    def get_tracer(
        self,
        instrumenting_module_name: str,
        instrumenting_library_version: str | None = None,
        schema_url: str | None = None,
        attributes: Any = None,
    ) -> trace.Tracer:
        return trace.NoOpTracer()

    def get_meter(
        self,
        name: str,
        version: str | None = None,
        schema_url: str | None = None,
        attributes: Any = None,
    ) -> metrics.Meter:
        return metrics.NoOpMeter(name, version=version, schema_url=schema_url)

    def is_active(self) -> bool:
        """Telemetry is never recorded through this provider."""
        return False

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True

    def shutdown(self, *args: Any, **kwargs: Any) -> None:
        return None

    def __repr__(self) -> str:
        return "NoopFallbackProvider()"


NOOP_PROVIDER = NoopFallbackProvider()


def _is_inert(provider: Any) -> bool:
    if provider is None or isinstance(provider, NoopFallbackProvider):
        return True
    if isinstance(provider, (trace.NoOpTracerProvider, metrics.NoOpMeterProvider)):
        return True
    if type(provider).__name__ in _PROXY_PROVIDER_NAMES:
        return True
    try:
        return provider in _retired_providers
    except TypeError:
        return False


def retire_provider(provider: Any) -> None:
    """Treat a shut-down provider as not registered from now on.

    The OpenTelemetry API globals can be set only once per process, so a
    provider shut down after registration stays installed there. Contexts
    resolved later fall back to no-op instead of recording into it.
    """
    try:
        _retired_providers.add(provider)
    except TypeError:
        logger.debug("Cannot retire %s; it does not support weak references", type(provider).__name__)


def is_real_tracer_provider(provider: Any) -> bool:
    """Whether ``provider`` is a registered, recording tracer provider."""
    return not _is_inert(provider)


def is_real_meter_provider(provider: Any) -> bool:
    """Whether ``provider`` is a registered, recording meter provider."""
    return not _is_inert(provider)


def resolve_tracer_provider(candidate: Any = None) -> Any:
    """Return ``candidate``, else the global provider, else the no-op fallback.

    Args:
        candidate: Explicit tracer provider, if any.

    Returns:
        A provider exposing ``get_tracer``.
    """
    if candidate is not None:
        return candidate if is_real_tracer_provider(candidate) else NOOP_PROVIDER
    try:
        provider = trace.get_tracer_provider()
    except Exception as e:  # noqa: BLE001
        warn_once(logger, "resolve-tracer-provider", "Falling back to no-op tracing: %s", e)
        return NOOP_PROVIDER
    if not is_real_tracer_provider(provider):
        logger.debug("No tracer provider registered; tracing runs in no-op mode")
        return NOOP_PROVIDER
    return provider


def resolve_meter_provider(candidate: Any = None) -> Any:
    """Return ``candidate``, else the global provider, else the no-op fallback.

    Args:
        candidate: Explicit meter provider, if any.

    Returns:
        A provider exposing ``get_meter``.
    """
    if candidate is not None:
        return candidate if is_real_meter_provider(candidate) else NOOP_PROVIDER
    try:
        provider = metrics.get_meter_provider()
    except Exception as e:  # noqa: BLE001
        warn_once(logger, "resolve-meter-provider", "Falling back to no-op metrics: %s", e)
        return NOOP_PROVIDER
    if not is_real_meter_provider(provider):
        logger.debug("No meter provider registered; metrics run in no-op mode")
        return NOOP_PROVIDER
    return provider


def safe_get_tracer(provider: Any, name: str, version: str | None = None) -> tuple[trace.Tracer, bool]:
    """Acquire a tracer, degrading to a no-op tracer if the provider fails.

    Returns:
        Tuple of (tracer, is_real).
    """
    if isinstance(provider, NoopFallbackProvider):
        return provider.get_tracer(name, version), False
    try:
        return provider.get_tracer(name, version), True
    except Exception as e:  # noqa: BLE001
        warn_once(
            logger,
            f"get-tracer:{id(provider)}",
            "Tracer provider %r failed (%s); tracing runs in no-op mode",
            provider,
            e,
        )
        return NOOP_PROVIDER.get_tracer(name, version), False


def safe_get_meter(provider: Any, name: str, version: str | None = None) -> tuple[metrics.Meter, bool]:
    """Acquire a meter, degrading to a no-op meter if the provider fails.

    Returns:
        Tuple of (meter, is_real).
    """
    if isinstance(provider, NoopFallbackProvider):
        return provider.get_meter(name, version), False
    try:
        return provider.get_meter(name, version), True
    except Exception as e:  # noqa: BLE001
        warn_once(
            logger,
            f"get-meter:{id(provider)}",
            "Meter provider %r failed (%s); metrics run in no-op mode",
            provider,
            e,
        )
        return NOOP_PROVIDER.get_meter(name, version), False
