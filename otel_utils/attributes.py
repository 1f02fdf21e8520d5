"""Attribute validation and immutable attribute sets.

AttributeBuilder accumulates typed key/value pairs, validating each one
against :class:`~otel_utils.config.AttributeLimits`, and freezes them into an
:class:`AttributeSet` that can be attached to spans, events and measurements.

Example:
    >>> attrs = (
    ...     AttributeBuilder()
    ...     .put("db.system", "postgresql")
    ...     .put("db.rows", 12)
    ...     .build()
    ... )
    >>> attrs["db.rows"]
    12
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from otel_utils.config import AttributeLimits
from otel_utils.exceptions import (
    BuilderAlreadyBuiltError,
    InvalidAttributeError,
    InvalidNameError,
)
from otel_utils.naming import NameSanitizer
from otel_utils.types import AttributeValue

__all__ = [
    "AttributeSet",
    "AttributeBuilder",
    "EMPTY_ATTRIBUTES",
    "attributes_from",
    "validate_attribute",
]

_SCALAR_TYPES = (bool, str, int, float)

_DEFAULT_LIMITS = AttributeLimits()


def _scalar_type(value: Any) -> type | None:
    # bool must be checked before int since it is a subclass
    for scalar in _SCALAR_TYPES:
        if isinstance(value, scalar):
            return scalar
    return None


def validate_attribute(
    key: str,
    value: Any,
    limits: AttributeLimits = _DEFAULT_LIMITS,
) -> AttributeValue:
    """Validate a single attribute value and return its stored form.

    Sequences are returned as tuples so the stored value is immutable.

    Args:
        key: Attribute key (used for error reporting).
        value: Candidate value.
        limits: Size caps to enforce.

    Returns:
        The value to store.

    Raises:
        InvalidAttributeError: If the value type or size is not supported.
    """
    if value is None:
        raise InvalidAttributeError(key, value, "value must not be None")

    scalar = _scalar_type(value)
    if scalar is not None:
        if scalar is str and len(value) > limits.max_value_length:
            raise InvalidAttributeError(
                key, value, f"string longer than {limits.max_value_length} characters"
            )
        return value

    if isinstance(value, (bytes, bytearray)) or not isinstance(value, Sequence):
        raise InvalidAttributeError(
            key, value, f"unsupported value type {type(value).__name__}"
        )

    items = tuple(value)
    if len(items) > limits.max_sequence_length:
        raise InvalidAttributeError(
            key, value, f"sequence longer than {limits.max_sequence_length} items"
        )
    if not items:
        return items

    element_type = _scalar_type(items[0])
    if element_type is None:
        raise InvalidAttributeError(
            key, value, f"unsupported sequence item type {type(items[0]).__name__}"
        )
    for item in items:
        if item is None or _scalar_type(item) is not element_type:
            raise InvalidAttributeError(key, value, "sequence items must share one type")
        if element_type is str and len(item) > limits.max_value_length:
            raise InvalidAttributeError(
                key, value, f"sequence item longer than {limits.max_value_length} characters"
            )
    return items


class AttributeSet(Mapping[str, AttributeValue]):
    """Immutable, ordered mapping of validated attributes.

    Instances are produced by :class:`AttributeBuilder`; they can be passed
    directly anywhere OpenTelemetry accepts an attributes mapping.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, AttributeValue] | None = None) -> None:
        self._data = MappingProxyType(dict(data or {}))

    def __getitem__(self, key: str) -> AttributeValue:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"AttributeSet({dict(self._data)!r})"

    def __hash__(self) -> int:
        return hash(tuple(self._data.items()))

    def merge(self, other: Mapping[str, AttributeValue] | None) -> AttributeSet:
        """Return a new set with ``other`` applied on top (``other`` wins).

        Values from a plain mapping are validated with default limits.
        """
        if not other:
            return self
        if not isinstance(other, AttributeSet):
            other = attributes_from(other)
        merged = dict(self._data)
        merged.update(other._data)
        return AttributeSet(merged)

    def to_dict(self) -> dict[str, AttributeValue]:
        """Return a mutable copy."""
        return dict(self._data)


EMPTY_ATTRIBUTES = AttributeSet()


class AttributeBuilder:
    """Accumulates validated attributes into an :class:`AttributeSet`.

    Keys are sanitized; the last value written for a key wins. Once
    :meth:`build` has been called the builder is frozen.
    """

    def __init__(
        self,
        limits: AttributeLimits | None = None,
        sanitizer: NameSanitizer | None = None,
    ) -> None:
        """Initialize AttributeBuilder.

        Args:
            limits: Size caps. Defaults to ``AttributeLimits()``.
            sanitizer: Key sanitizer. Defaults to one honoring
                ``limits.max_name_length``.
        """
        self._limits = limits or _DEFAULT_LIMITS
        self._sanitizer = sanitizer or NameSanitizer(max_length=self._limits.max_name_length)
        self._data: dict[str, AttributeValue] = {}
        self._built: AttributeSet | None = None

    @property
    def is_built(self) -> bool:
        return self._built is not None

    def put(self, key: str, value: Any) -> AttributeBuilder:
        """Add or replace an attribute.

        Args:
            key: Attribute key; sanitized before storing.
            value: str, bool, int, float, or a homogeneous sequence of one.

        Returns:
            This builder, for chaining.

        Raises:
            BuilderAlreadyBuiltError: If build() was already called.
            InvalidAttributeError: If the key or value is rejected.
        """
        if self._built is not None:
            raise BuilderAlreadyBuiltError(key)

        if not isinstance(key, str) or not key:
            raise InvalidAttributeError(key, value, "key must be a non-empty string")
        try:
            clean_key = self._sanitizer.sanitize(key)
        except InvalidNameError as e:
            raise InvalidAttributeError(key, value, e.reason) from e

        stored = validate_attribute(clean_key, value, self._limits)
        if clean_key not in self._data and len(self._data) >= self._limits.max_attributes:
            raise InvalidAttributeError(
                clean_key, value, f"more than {self._limits.max_attributes} attributes"
            )
        self._data[clean_key] = stored
        return self

    def put_all(self, attributes: Mapping[str, Any] | None) -> AttributeBuilder:
        """Add every pair of ``attributes`` in iteration order."""
        if self._built is not None:
            raise BuilderAlreadyBuiltError()
        if attributes:
            for key, value in attributes.items():
                self.put(key, value)
        return self

    def build(self) -> AttributeSet:
        """Freeze the builder and return its attribute set.

        Calling build() again returns the same set.
        """
        if self._built is None:
            self._built = AttributeSet(self._data)
        return self._built


def attributes_from(
    attributes: Mapping[str, Any] | None,
    limits: AttributeLimits | None = None,
    sanitizer: NameSanitizer | None = None,
) -> AttributeSet:
    """Build an AttributeSet from a mapping in one call.

    An existing AttributeSet is returned unchanged.
    """
    if isinstance(attributes, AttributeSet):
        return attributes
    if not attributes:
        return EMPTY_ATTRIBUTES
    return AttributeBuilder(limits=limits, sanitizer=sanitizer).put_all(attributes).build()
