"""Name sanitization for spans, metrics and attribute keys."""

from __future__ import annotations

import re
from functools import lru_cache

from otel_utils.exceptions import InvalidNameError

__all__ = [
    "DEFAULT_MAX_NAME_LENGTH",
    "NameSanitizer",
    "sanitize",
    "sanitizer_for",
]

DEFAULT_MAX_NAME_LENGTH = 255

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_.\-]")


class NameSanitizer:
    """Normalizes arbitrary strings into valid telemetry identifiers.

    Surrounding whitespace is stripped, every character outside
    ``[a-zA-Z0-9_.-]`` is replaced, and the result is truncated to
    ``max_length``. The operation is pure and idempotent.

    Example:
        >>> NameSanitizer().sanitize("request id!")
        'request_id_'
    """

    def __init__(self, max_length: int = DEFAULT_MAX_NAME_LENGTH, replacement: str = "_") -> None:
        """Initialize NameSanitizer.

        Args:
            max_length: Maximum length of a sanitized name.
            replacement: Single valid character substituted for invalid ones.
        """
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")
        if len(replacement) != 1 or _INVALID_CHARS.match(replacement):
            raise ValueError(f"replacement must be one valid name character, got {replacement!r}")
        self._max_length = max_length
        self._replacement = replacement

    @property
    def max_length(self) -> int:
        return self._max_length

    def sanitize(self, raw: str) -> str:
        """Sanitize a raw name.

        Args:
            raw: Name to normalize.

        Returns:
            Sanitized name.

        Raises:
            InvalidNameError: If ``raw`` is not a string or is blank.
        """
        if not isinstance(raw, str):
            raise InvalidNameError(raw, reason=f"expected str, got {type(raw).__name__}")

        trimmed = raw.strip()
        if not trimmed:
            raise InvalidNameError(raw)

        return _INVALID_CHARS.sub(self._replacement, trimmed)[: self._max_length]

    def __call__(self, raw: str) -> str:
        return self.sanitize(raw)

    def __repr__(self) -> str:
        return f"NameSanitizer(max_length={self._max_length}, replacement={self._replacement!r})"


_default_sanitizer = NameSanitizer()


def sanitize(raw: str) -> str:
    """Sanitize a name with the default policy (255 chars, ``_`` replacement)."""
    return _default_sanitizer.sanitize(raw)


@lru_cache(maxsize=16)
def sanitizer_for(max_length: int) -> NameSanitizer:
    """Shared sanitizer with the default replacement and ``max_length``."""
    return NameSanitizer(max_length=max_length)
