"""Scoped spans with guaranteed closure and context restoration.

SpanScope opens spans with a sanitized name and a frozen attribute set, makes
them the active span of the calling thread or asyncio task, and guarantees
that closing records the outcome, ends the span and restores the previously
active context on every exit path.

Three relationships are supported (see :class:`SpanRelationship`):

- ``PARENT_CHILD``: child of an explicit parent, or of the current span.
- ``LINKED``: follows-from; a new trace root that links to its cause.
  Jaeger shows it as a root span with a reference to the cause.
- ``ROOT``: a new trace root with no parent and no links.

Example:
    >>> scope = SpanScope()
    >>> with scope.open("db.query", {"db.system": "postgresql"}) as handle:
    ...     handle.set_attribute("db.rows", 3)
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, TypeVar

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import Link, SpanKind, Status, StatusCode

from otel_utils.attributes import AttributeSet, attributes_from, validate_attribute
from otel_utils.context import TelemetryContext, get_default_context
from otel_utils.exceptions import InvalidAttributeError, InvalidNameError, InvalidParentError, ScopeError
from otel_utils.log import get_logger, warn_once
from otel_utils.naming import NameSanitizer, sanitizer_for
from otel_utils.types import ScopeState, SpanRelationship, SpanReportingDecision

__all__ = [
    "ScopeHandle",
    "SpanScope",
    "traced",
]

logger = get_logger(__name__)

T = TypeVar("T")

ParentLike = Any
"""ScopeHandle, Span, SpanContext or OpenTelemetry Context."""


class ScopeHandle:
    """An open span bound as the active context.

    The handle is closed exactly once; further closes are no-ops and
    mutations after close are ignored (logged once per handle).
    It is also a context manager that closes with the in-flight exception.
    """

    def __init__(
        self,
        name: str,
        span: trace.Span,
        token: object | None,
        previous_context: otel_context.Context,
        scope: SpanScope,
    ) -> None:
        self._name = name
        self._span = span
        self._token = token
        self._previous_context = previous_context
        self._scope = scope
        self._otel_context = trace.set_span_in_context(span, previous_context)
        self._state = ScopeState.OPEN
        self._lock = threading.Lock()
        self._warned_closed = False
        self._owner = _execution_owner()

    @property
    def name(self) -> str:
        return self._name

    @property
    def span(self) -> trace.Span:
        """The underlying OpenTelemetry span."""
        return self._span

    @property
    def span_context(self) -> trace.SpanContext:
        return self._span.get_span_context()

    @property
    def context(self) -> otel_context.Context:
        """OpenTelemetry context carrying this span, for explicit propagation."""
        return self._otel_context

    @property
    def previous_context(self) -> otel_context.Context:
        """Context that was active before this scope opened."""
        return self._previous_context

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ScopeState.OPEN

    @property
    def is_recording(self) -> bool:
        """Whether the span actually records (False in no-op mode)."""
        return self.is_open and self._span.is_recording()

    def _accepts_mutation(self, operation: str) -> bool:
        if self._state is ScopeState.OPEN:
            return True
        if not self._warned_closed:
            self._warned_closed = True
            logger.warning("Ignoring %s on closed scope '%s'", operation, self._name)
        return False

    def set_attribute(self, key: str, value: Any) -> ScopeHandle:
        """Set one attribute on the span.

        Raises:
            InvalidAttributeError: If the scope is open and the pair is invalid.
        """
        if not self._accepts_mutation("set_attribute"):
            return self
        clean_key = self._scope._attribute_key(key, value)
        stored = validate_attribute(clean_key, value, self._scope.context.config.limits)
        self._span.set_attribute(clean_key, stored)
        return self

    def set_attributes(self, attributes: Mapping[str, Any]) -> ScopeHandle:
        """Set several attributes on the span."""
        if not self._accepts_mutation("set_attributes"):
            return self
        frozen = self._scope._freeze(attributes)
        if frozen:
            self._span.set_attributes(frozen)
        return self

    def add_event(self, name: str, attributes: Mapping[str, Any] | None = None) -> ScopeHandle:
        """Add a named event to the span."""
        if not self._accepts_mutation("add_event"):
            return self
        frozen = self._scope._freeze(attributes)
        self._span.add_event(self._scope.sanitizer.sanitize(name), attributes=frozen or None)
        return self

    def record_exception(self, error: BaseException) -> ScopeHandle:
        """Record an exception event without changing the span status."""
        if not self._accepts_mutation("record_exception"):
            return self
        self._span.record_exception(error)
        return self

    def close(self, error: BaseException | str | None = None, report: bool = True) -> None:
        """Close the scope. Never raises.

        Args:
            error: Exception (or message) that ended the work. Sets status
                ERROR and records the exception; None sets status OK.
            report: When False and there is no error, the span is not ended
                and so never exported. Errors are always reported.

        Closing from another thread or asyncio task than the one that opened
        the scope still ends the span, but the opener's active context cannot
        be restored from there and is left untouched (logged once).
        """
        with self._lock:
            if self._state is ScopeState.CLOSED:
                return
            self._state = ScopeState.CLOSED

        try:
            if error is not None:
                if isinstance(error, BaseException):
                    self._span.record_exception(error)
                    description = f"{type(error).__name__}: {error}"
                else:
                    description = str(error)
                self._span.set_status(Status(StatusCode.ERROR, description))
                self._span.end()
            elif report:
                self._span.set_status(Status(StatusCode.OK))
                self._span.end()
        except Exception as e:  # noqa: BLE001
            warn_once(logger, "scope-close", "Failed to finish span '%s': %s", self._name, e)
        finally:
            self._restore_context()

    def _restore_context(self) -> None:
        if self._token is None:
            return
        if _execution_owner() != self._owner:
            warn_once(
                logger,
                "scope-foreign-close",
                "Scope '%s' closed outside the thread or task that opened it; "
                "active context left unchanged",
                self._name,
            )
            return
        try:
            otel_context.detach(self._token)
        except Exception as e:  # noqa: BLE001
            warn_once(logger, "scope-detach", "Failed to restore context after '%s': %s", self._name, e)

    def __enter__(self) -> ScopeHandle:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close(exc_val)

    def __repr__(self) -> str:
        return f"ScopeHandle(name={self._name!r}, state={self._state.value})"


class SpanScope:
    """Opens and closes spans through a TelemetryContext.

    With no provider registered every operation still works: spans are
    non-recording and handles are inert.
    """

    def __init__(
        self,
        context: TelemetryContext | None = None,
        sanitizer: NameSanitizer | None = None,
    ) -> None:
        """Initialize SpanScope.

        Args:
            context: Telemetry context. None follows the process default,
                looked up on every operation, so a scope created before
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
        """Whether spans are actually recorded."""
        return self.context.is_tracing_active()

    def _freeze(
        self,
        attributes: Mapping[str, Any] | None,
        context: TelemetryContext | None = None,
    ) -> AttributeSet:
        context = context or self.context
        return attributes_from(
            attributes, limits=context.config.limits, sanitizer=self.sanitizer
        )

    def _attribute_key(self, key: Any, value: Any) -> str:
        if not isinstance(key, str) or not key:
            raise InvalidAttributeError(key, value, "key must be a non-empty string")
        try:
            return self.sanitizer.sanitize(key)
        except InvalidNameError as e:
            raise InvalidAttributeError(key, value, e.reason) from e

    def open(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
        parent: ParentLike = None,
        *,
        relationship: SpanRelationship = SpanRelationship.PARENT_CHILD,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> ScopeHandle:
        """Start a span and make it the active context.

        Args:
            name: Span name; sanitized.
            attributes: Initial attributes (mapping or AttributeSet).
            parent: Parent for PARENT_CHILD, cause for LINKED, must be None
                for ROOT. Accepts ScopeHandle, Span, SpanContext or Context.
            relationship: How the new span relates to ``parent``.
            kind: OpenTelemetry span kind.

        Returns:
            Open ScopeHandle.

        Raises:
            InvalidNameError: If ``name`` is blank.
            InvalidAttributeError: If an attribute is rejected.
            InvalidParentError: If ``parent`` does not fit ``relationship``.
        """
        context = self.context
        span_name = self.sanitizer.sanitize(name)
        attrs = self._freeze(attributes, context)
        parent_context, links = self._resolve_parent(relationship, parent)

        if context.config.record_thread_info:
            current = threading.current_thread()
            attrs = AttributeSet(
                {"thread.id": threading.get_ident(), "thread.name": current.name}
            ).merge(attrs)

        try:
            span = context.tracer.start_span(
                span_name,
                context=parent_context,
                kind=kind,
                attributes=attrs or None,
                links=links,
            )
        except Exception as e:  # noqa: BLE001
            warn_once(logger, "scope-start", "Failed to start span '%s' (%s); using no-op span", span_name, e)
            span = trace.INVALID_SPAN

        previous = otel_context.get_current()
        token = None
        try:
            token = otel_context.attach(trace.set_span_in_context(span, previous))
        except Exception as e:  # noqa: BLE001
            warn_once(logger, "scope-attach", "Failed to activate span '%s': %s", span_name, e)

        return ScopeHandle(span_name, span, token, previous, self)

    @contextmanager
    def span(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
        parent: ParentLike = None,
        *,
        relationship: SpanRelationship = SpanRelationship.PARENT_CHILD,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Iterator[ScopeHandle]:
        """Open a scope on ``with`` entry and close it on every exit path."""
        handle = self.open(name, attributes, parent, relationship=relationship, kind=kind)
        with handle:
            yield handle

    def close(self, handle: ScopeHandle, error: BaseException | str | None = None) -> None:
        """Close ``handle``. Idempotent; never raises."""
        handle.close(error)

    def run_in_span(
        self,
        name: str,
        fn: Callable[[ScopeHandle], T],
        attributes: Mapping[str, Any] | None = None,
        parent: ParentLike = None,
        *,
        relationship: SpanRelationship = SpanRelationship.PARENT_CHILD,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> T:
        """Call ``fn(handle)`` inside a new span and return its result.

        Exceptions are recorded on the span and re-raised.
        """
        with self.open(name, attributes, parent, relationship=relationship, kind=kind) as handle:
            return fn(handle)

    def run_conditionally(
        self,
        name: str,
        fn: Callable[[ScopeHandle], SpanReportingDecision],
        attributes: Mapping[str, Any] | None = None,
        parent: ParentLike = None,
        *,
        relationship: SpanRelationship = SpanRelationship.PARENT_CHILD,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> SpanReportingDecision:
        """Call ``fn(handle)`` and report the span only if it asks to.

        A span whose work fails is always reported.

        Raises:
            ScopeError: If ``fn`` does not return a SpanReportingDecision.
        """
        handle = self.open(name, attributes, parent, relationship=relationship, kind=kind)
        try:
            decision = fn(handle)
            if not isinstance(decision, SpanReportingDecision):
                raise ScopeError(
                    f"'{handle.name}' must return a SpanReportingDecision, "
                    f"got {type(decision).__name__}"
                )
        except BaseException as e:
            handle.close(e)
            raise

        handle.close(report=decision is SpanReportingDecision.REPORT)
        return decision

    def _resolve_parent(
        self,
        relationship: SpanRelationship,
        parent: ParentLike,
    ) -> tuple[otel_context.Context | None, list[Link] | None]:
        if relationship is SpanRelationship.PARENT_CHILD:
            if parent is None:
                return None, None
            return _to_context(parent), None

        if relationship is SpanRelationship.LINKED:
            if parent is None:
                raise InvalidParentError("cause is required for a linked span", relationship.value)
            cause = _to_span_context(parent)
            links = [Link(cause)] if cause.is_valid else []
            return otel_context.Context(), links

        if parent is not None:
            raise InvalidParentError("parent/cause must be None for a root span", relationship.value)
        return otel_context.Context(), None


def _to_context(parent: ParentLike) -> otel_context.Context:
    if isinstance(parent, ScopeHandle):
        return parent.context
    if isinstance(parent, trace.Span):
        return trace.set_span_in_context(parent)
    if isinstance(parent, trace.SpanContext):
        return trace.set_span_in_context(trace.NonRecordingSpan(parent))
    if isinstance(parent, otel_context.Context):
        return parent
    raise InvalidParentError(f"unsupported parent type {type(parent).__name__}")


def _to_span_context(parent: ParentLike) -> trace.SpanContext:
    if isinstance(parent, ScopeHandle):
        return parent.span_context
    if isinstance(parent, trace.Span):
        return parent.get_span_context()
    if isinstance(parent, trace.SpanContext):
        return parent
    if isinstance(parent, otel_context.Context):
        return trace.get_current_span(parent).get_span_context()
    raise InvalidParentError(f"unsupported cause type {type(parent).__name__}")


def _execution_owner() -> tuple[int, int | None]:
    """Identify the current thread and asyncio task."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    return threading.get_ident(), id(task) if task is not None else None


def traced(
    name: str | Callable[..., Any] | None = None,
    attributes: Mapping[str, Any] | None = None,
    *,
    scope: SpanScope | None = None,
    relationship: SpanRelationship = SpanRelationship.PARENT_CHILD,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Any:
    """Decorate a sync or async function so each call runs in a span.

    The span is named after the function's qualified name unless ``name`` is
    given. Usable bare (``@traced``) or called (``@traced("work")``).
    """
    if callable(name):
        return traced()(name)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        span_name = name or func.__qualname__

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                active = scope or SpanScope()
                with active.open(span_name, attributes, relationship=relationship, kind=kind):
                    return await func(*args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            active = scope or SpanScope()
            with active.open(span_name, attributes, relationship=relationship, kind=kind):
                return func(*args, **kwargs)

        return wrapper

    return decorator
