"""
Span Recorder

Context-bound helpers that request-handling code uses to open and close
spans on the current request's trace.

DESIGN RULES:
- Never throw: tracing must not be able to fail a request
- No trace id resolvable -> every operation is a no-op
- Trace id resolution: context value, then X-Trace-ID header
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from observability.errors import TraceNotFound
from observability.trace import RequestTrace, TraceSpan
from observability.trace_store import TraceStore


logger = logging.getLogger(__name__)

TRACE_ID_HEADER = "x-trace-id"

# Bound by the request middleware for the lifetime of one request
current_trace_id: ContextVar[Optional[str]] = ContextVar("current_trace_id", default=None)


def _header_value(headers: Any, name: str) -> Optional[str]:
    """Case-insensitive header lookup for Starlette headers or plain mappings."""
    try:
        items = headers.items()
    except AttributeError:
        return None
    for key, value in items:
        if isinstance(key, bytes):
            key = key.decode("latin-1")
        if key.lower() == name:
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            return value or None
    return None


def resolve_trace_id(context: Any = None) -> Optional[str]:
    """
    Resolve the active trace id from request context.

    Args:
        context: A Starlette Request (or anything with .state / .headers);
            may be None, in which case only the context var is consulted

    Returns:
        Trace id or None
    """
    state = getattr(context, "state", None)
    trace_id = getattr(state, "trace_id", None) if state is not None else None
    if not trace_id:
        trace_id = current_trace_id.get()
    if trace_id:
        return trace_id

    headers = getattr(context, "headers", None)
    if headers is None:
        return None
    return _header_value(headers, TRACE_ID_HEADER)


class SpanRecorder:
    """
    Thin API over TraceStore keyed by the ambient trace id.
    """

    def __init__(self, store: TraceStore):
        self._store = store

    @property
    def store(self) -> TraceStore:
        return self._store

    def get_request_trace(self, context: Any = None) -> Optional[RequestTrace]:
        """Look up the trace of the current request, if any."""
        trace_id = resolve_trace_id(context)
        if not trace_id:
            return None
        return self._store.get_trace(trace_id)

    def start(
        self,
        context: Any,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[TraceSpan]:
        """
        Start a span on the current request's trace.

        Returns:
            The started span, or None if there is no usable trace
        """
        trace_id = resolve_trace_id(context)
        if not trace_id:
            return None

        try:
            return self._store.start_span(trace_id, name, metadata=metadata, tags=tags)
        except TraceNotFound:
            logger.debug(f"[SPAN] No trace {trace_id} for span '{name}', skipping")
            return None
        except Exception as e:
            logger.warning(f"[SPAN] Failed to start span '{name}': {e}")
            return None

    def complete(
        self,
        context: Any,
        span_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Complete a span on the current request's trace."""
        trace_id = resolve_trace_id(context)
        if not trace_id:
            return

        try:
            self._store.complete_span(trace_id, span_id, metadata=metadata, error=error)
        except Exception as e:
            logger.warning(f"[SPAN] Failed to complete span {span_id}: {e}")

    @contextmanager
    def span(
        self,
        context: Any,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> Iterator[Optional[TraceSpan]]:
        """
        Wrap a block of work in a span.

        The span is completed with the exception text if the block raises;
        the exception itself is re-raised untouched.
        """
        span = self.start(context, name, metadata=metadata, tags=tags)
        try:
            yield span
        except Exception as e:
            if span is not None:
                self.complete(context, span.id, error=str(e) or type(e).__name__)
            raise
        else:
            if span is not None:
                self.complete(context, span.id)
