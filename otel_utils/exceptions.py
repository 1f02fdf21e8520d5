"""Exception hierarchy for otel-utils.

Programming errors (misuse of the API) are raised synchronously to the caller.
Telemetry backend failures are never raised from span or metric recording
paths; they degrade to no-ops and are logged.

Exception Hierarchy:
    OtelUtilsError (base)
    ├── InvalidNameError
    ├── InvalidAttributeError
    ├── BuilderAlreadyBuiltError
    ├── InstrumentConflictError
    ├── InvalidMeasurementError
    ├── ScopeError
    │   └── InvalidParentError
    ├── ConfigurationError
    │   └── InvalidConfigValueError
    ├── ProviderError
    │   └── TelemetryNotInstalledError
    └── PropagationError

Example:
    >>> try:
    ...     recorder.histogram("latency", unit="ms")
    ... except InstrumentConflictError as e:
    ...     logger.warning(f"Instrument already registered: {e}")
"""

from __future__ import annotations

from typing import Any

__all__ = [
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


class OtelUtilsError(Exception):
    """Base exception for all otel-utils errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
        cause: Optional original exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional error context.
            cause: Optional original exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return string representation with details if present."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"cause={self.cause!r})"
        )

    def with_context(self, **kwargs: Any) -> OtelUtilsError:
        """Create a plain OtelUtilsError carrying additional context details.

        Args:
            **kwargs: Additional context to add to details.

        Returns:
            New exception instance with merged details.
        """
        merged_details = {**self.details, **kwargs}
        return OtelUtilsError(self.message, details=merged_details, cause=self.cause)


class InvalidNameError(OtelUtilsError):
    """Raised when a span, metric or attribute name is empty after trimming."""

    def __init__(self, raw: Any, reason: str = "name is empty after trimming") -> None:
        super().__init__(
            f"Invalid name {raw!r}: {reason}",
            details={"raw": raw, "reason": reason},
        )
        self.raw = raw
        self.reason = reason


class InvalidAttributeError(OtelUtilsError):
    """Raised when an attribute key or value is rejected.

    Attributes:
        key: The offending attribute key.
        value: The offending attribute value.
        reason: Why the attribute was rejected.
    """

    def __init__(self, key: Any, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid attribute {key!r}: {reason}",
            details={"key": key, "value_type": type(value).__name__, "reason": reason},
        )
        self.key = key
        self.value = value
        self.reason = reason


class BuilderAlreadyBuiltError(OtelUtilsError):
    """Raised when an AttributeBuilder is mutated after build()."""

    def __init__(self, key: Any = None) -> None:
        details = {"key": key} if key is not None else None
        super().__init__(
            "AttributeBuilder has already been built; create a new builder",
            details=details,
        )
        self.key = key


class InstrumentConflictError(OtelUtilsError):
    """Raised when an instrument name is requested with a different kind or unit.

    Attributes:
        name: Sanitized instrument name.
        existing: (kind, unit) of the registered instrument.
        requested: (kind, unit) of the conflicting request.
    """

    def __init__(
        self,
        name: str,
        existing: tuple[str, str],
        requested: tuple[str, str],
    ) -> None:
        super().__init__(
            f"Instrument '{name}' is already registered as "
            f"{existing[0]} [{existing[1]}], requested {requested[0]} [{requested[1]}]",
            details={
                "name": name,
                "existing_kind": existing[0],
                "existing_unit": existing[1],
                "requested_kind": requested[0],
                "requested_unit": requested[1],
            },
        )
        self.name = name
        self.existing = existing
        self.requested = requested


class InvalidMeasurementError(OtelUtilsError):
    """Raised when a metric measurement is not a valid value for its instrument."""

    def __init__(self, name: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid measurement for '{name}': {reason}",
            details={"name": name, "value": value, "reason": reason},
        )
        self.name = name
        self.value = value
        self.reason = reason


class ScopeError(OtelUtilsError):
    """Raised when a span scope is used incorrectly."""


class InvalidParentError(ScopeError):
    """Raised when a parent/cause does not fit the requested span relationship."""

    def __init__(self, message: str, relationship: str | None = None) -> None:
        super().__init__(message, details={"relationship": relationship} if relationship else None)
        self.relationship = relationship


class ConfigurationError(OtelUtilsError):
    """Exception for configuration-related errors.

    Attributes:
        config_key: Optional key that caused the configuration error.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, details=details, cause=cause)
        self.config_key = config_key


class InvalidConfigValueError(ConfigurationError):
    """Exception for invalid configuration values.

    Attributes:
        config_key: The configuration key with invalid value.
        value: The invalid value that was provided.
        expected: Description of what was expected.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str,
        value: Any = None,
        expected: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        details: dict[str, Any] = {"value": value}
        if expected:
            details["expected"] = expected
        super().__init__(message, config_key=config_key, details=details, cause=cause)
        self.value = value
        self.expected = expected


class ProviderError(OtelUtilsError):
    """Raised when building or shutting down an SDK provider fails explicitly."""

    def __init__(
        self,
        message: str,
        provider_type: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"provider_type": provider_type} if provider_type else None,
            cause=cause,
        )
        self.provider_type = provider_type


class TelemetryNotInstalledError(ProviderError):
    """Raised when an optional exporter package is not installed."""

    def __init__(self, feature: str, package: str) -> None:
        super().__init__(
            f"Feature '{feature}' requires the '{package}' package. "
            f"Install with: pip install otel-utils[otlp]",
        )
        self.feature = feature
        self.package = package


class PropagationError(OtelUtilsError):
    """Raised when context injection or extraction fails."""

    def __init__(
        self,
        message: str,
        operation: str,
        propagators: tuple[str, ...] = (),
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"operation": operation, "propagators": list(propagators)},
            cause=cause,
        )
        self.operation = operation
        self.propagators = propagators
