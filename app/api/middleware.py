"""
Request Tracing Middleware

Creates the trace for every request and hands one call log per RPC
call to the collector.

DESIGN RULE: nothing in here may fail the request. Handler exceptions
are re-raised untouched; tracing/logging errors are logged and dropped.
"""

import json
import logging
import time
import uuid
from typing import Any, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from observability.collector import CallLogCollector
from observability.recorder import current_trace_id
from observability.trace import TraceMetadata
from observability.trace_store import TraceStore
from schemas.call_log import CallLogInput, CallMetadata, CallMethod, TraceSnapshot


logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


def client_ip(request: Request) -> Optional[str]:
    """Edge-provided client IP, then first X-Forwarded-For hop, then peer."""
    ip = request.headers.get("cf-connecting-ip")
    if ip:
        return ip
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _identity(request: Request, attr: str, header: str) -> str:
    value = getattr(request.state, attr, None)
    return value or request.headers.get(header) or ANONYMOUS


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Per-request trace lifecycle plus the call-logging hook.
    """

    def __init__(
        self,
        app: Any,
        trace_store: TraceStore,
        collector: CallLogCollector,
        rpc_prefix: str = "/api/rpc",
    ):
        super().__init__(app)
        self._store = trace_store
        self._collector = collector
        self._rpc_prefix = rpc_prefix.rstrip("/") + "/"

    def _procedure(self, request: Request) -> Optional[str]:
        path = request.url.path
        if not path.startswith(self._rpc_prefix):
            return None
        return path[len(self._rpc_prefix):] or None

    async def _call_input(self, request: Request) -> Any:
        if request.method == "GET":
            return dict(request.query_params)
        try:
            body = await request.body()
            return json.loads(body) if body else None
        except (ValueError, UnicodeDecodeError):
            return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get("x-trace-id") or uuid.uuid4().hex
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        procedure = self._procedure(request)
        start_time = int(time.time() * 1000)
        started = time.perf_counter()

        self._store.create_trace(
            trace_id,
            TraceMetadata(
                procedure=procedure,
                ip=client_ip(request),
                user_agent=request.headers.get("user-agent"),
                request_id=request_id,
            ),
        )
        request.state.trace_id = trace_id
        token = current_trace_id.set(trace_id)

        call_input = await self._call_input(request) if procedure else None
        request_span = self._start_span(trace_id, request)

        try:
            response = await call_next(request)
        except Exception as e:
            error = str(e) or type(e).__name__
            self._finish(request, trace_id, request_span, procedure, request_id, call_input,
                         start_time, started, error=error)
            raise
        finally:
            current_trace_id.reset(token)

        error = f"HTTP {response.status_code}" if response.status_code >= 400 else None
        self._finish(request, trace_id, request_span, procedure, request_id, call_input,
                     start_time, started, error=error, status_code=response.status_code)

        response.headers["X-Trace-ID"] = trace_id
        response.headers["X-Request-ID"] = request_id
        return response

    def _start_span(self, trace_id: str, request: Request) -> Optional[str]:
        try:
            span = self._store.start_span(
                trace_id,
                "http.request",
                metadata={"method": request.method, "path": request.url.path},
                tags={"http.method": request.method},
            )
            return span.id
        except Exception as e:
            logger.warning(f"[TRACING] Could not open request span: {e}")
            return None

    def _finish(
        self,
        request: Request,
        trace_id: str,
        span_id: Optional[str],
        procedure: Optional[str],
        request_id: str,
        call_input: Any,
        start_time: int,
        started: float,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        try:
            duration = int((time.perf_counter() - started) * 1000)
            if span_id is not None:
                metadata = {"status_code": status_code} if status_code is not None else None
                self._store.complete_span(trace_id, span_id, metadata=metadata, error=error)

            user_id = _identity(request, "user_id", "x-user-id")
            session_id = _identity(request, "session_id", "x-session-id")
            self._store.annotate(trace_id, user_id=user_id, session_id=session_id)

            # complete_trace hands back a copy, safe to read outside the lock
            completed = self._store.complete_trace(trace_id)
            if procedure is None:
                return
            snapshot = completed.to_dict() if completed is not None else None

            self._collector.log_call(CallLogInput(
                user_id=user_id,
                session_id=session_id,
                procedure=procedure,
                input=call_input,
                error=error,
                duration=duration,
                metadata=CallMetadata(
                    method=CallMethod.QUERY if request.method == "GET" else CallMethod.MUTATION,
                    user_agent=request.headers.get("user-agent"),
                    ip=client_ip(request),
                    referer=request.headers.get("referer"),
                    origin=request.headers.get("origin"),
                    accept_language=request.headers.get("accept-language"),
                    accept_encoding=request.headers.get("accept-encoding"),
                    request_id=request_id,
                    trace_id=trace_id,
                    start_time=start_time,
                    end_time=start_time + duration,
                    request_duration=completed.duration if completed is not None else None,
                ),
                trace=TraceSnapshot.from_dict(snapshot) if snapshot is not None else None,
            ))
        except Exception as e:
            logger.error(f"[TRACING] Failed to finish request trace {trace_id}: {e}")
