"""Logging helpers for otel-utils.

The library logs through standard ``logging`` module loggers and never
installs handlers. Degradation warnings that could repeat on every span or
measurement go through :func:`warn_once`.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

__all__ = [
    "get_logger",
    "warn_once",
    "reset_warn_once",
]

_seen: set[str] = set()
_seen_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Get a library logger.

    Args:
        name: Logger name (typically ``__name__``).

    Returns:
        Standard library logger.
    """
    return logging.getLogger(name)


def warn_once(logger: logging.Logger, key: str, message: str, *args: Any) -> bool:
    """Log a warning the first time ``key`` is seen in this process.

    Args:
        logger: Logger to emit on.
        key: Identity of the warning site.
        message: %-style message.
        *args: Message arguments.

    Returns:
        True if the warning was emitted.
    """
    if key in _seen:
        return False
    with _seen_lock:
        if key in _seen:
            return False
        _seen.add(key)
    logger.warning(message, *args)
    return True


def reset_warn_once() -> None:
    """Forget all warnings already emitted. Intended for tests."""
    with _seen_lock:
        _seen.clear()
