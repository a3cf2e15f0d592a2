"""
Trace Store

In-memory, bounded store of request traces keyed by trace id.

DESIGN RULES:
- No persistence, one store per process
- Two independent expiry policies: TTL and capacity (oldest-first)
- Completed traces linger for a short grace window for late readers
- Only add_span raises; every other lookup degrades to a no-op
- Thread-safe for concurrent access
"""

import copy
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from observability.errors import TraceNotFound
from observability.trace import RequestTrace, TraceMetadata, TraceSpan


logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class TraceStore:
    """
    Process-wide store of in-flight and recently completed traces.

    Construct once at startup (see app.dependencies), call start() to
    launch the background sweeper and destroy() on shutdown.
    """

    # Maximum number of traces kept in memory
    MAX_TRACES = 10_000

    # Uncompleted traces are dropped after this age
    TRACE_TTL_MS = 5 * 60 * 1000

    # Full TTL/capacity cleanup cadence
    CLEANUP_INTERVAL_MS = 2 * 60 * 1000

    # How long a completed trace stays readable
    COMPLETION_GRACE_MS = 10 * 1000

    # Creation triggers a cleanup once the store is this full
    PRESSURE_RATIO = 0.9

    def __init__(
        self,
        max_traces: int = MAX_TRACES,
        ttl_ms: int = TRACE_TTL_MS,
        cleanup_interval_ms: int = CLEANUP_INTERVAL_MS,
        grace_ms: int = COMPLETION_GRACE_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize trace store.

        Args:
            max_traces: Capacity ceiling for live traces
            ttl_ms: Age after which any trace is removed
            cleanup_interval_ms: Period of the full cleanup pass
            grace_ms: Post-completion retention window
            clock: Returns epoch milliseconds (injectable for tests)
        """
        self._traces: Dict[str, RequestTrace] = {}
        # trace_id -> time at which a completed trace stops being readable
        self._expires_at: Dict[str, int] = {}
        self._max_traces = max_traces
        self._ttl_ms = ttl_ms
        self._cleanup_interval_ms = cleanup_interval_ms
        self._grace_ms = grace_ms
        self._clock = clock
        self._lock = threading.RLock()

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def start(self) -> None:
        """Start the background sweeper thread (idempotent)."""
        with self._lock:
            if self._sweeper is not None and self._sweeper.is_alive():
                return
            self._stop.clear()
            self._sweeper = threading.Thread(
                target=self._run_sweeper,
                name="trace-store-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def destroy(self) -> None:
        """Stop the sweeper and drop every trace."""
        self._stop.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=5)
        self._sweeper = None
        with self._lock:
            self._traces.clear()
            self._expires_at.clear()

    def _run_sweeper(self) -> None:
        # Ticks at the grace granularity; full cleanup on its own cadence
        tick_seconds = min(self._grace_ms, self._cleanup_interval_ms) / 1000.0
        last_cleanup = self._clock()
        while not self._stop.wait(tick_seconds):
            try:
                now = self._clock()
                if now - last_cleanup >= self._cleanup_interval_ms:
                    self.perform_cleanup()
                    last_cleanup = now
                else:
                    self.purge_completed()
            except Exception as e:
                logger.error(f"[TRACE STORE] Sweeper pass failed: {e}")

    # ============================================================
    # TRACE OPERATIONS
    # ============================================================

    def create_trace(
        self,
        trace_id: str,
        metadata: Optional[TraceMetadata] = None,
    ) -> RequestTrace:
        """
        Create a trace, or return the live one already under this id.

        Args:
            trace_id: Caller-supplied or generated trace id
            metadata: Initial request metadata

        Returns:
            The (new or existing) RequestTrace
        """
        with self._lock:
            now = self._clock()
            existing = self._live(trace_id, now)
            if existing is not None:
                return existing

            # Expired-but-unswept entry under the same id
            self._remove(trace_id)

            if len(self._traces) >= self._max_traces * self.PRESSURE_RATIO:
                # Leave room for the insert below so capacity is never exceeded
                self.perform_cleanup(reserve=1)

            trace = RequestTrace(
                trace_id=trace_id,
                start_time=now,
                metadata=metadata or TraceMetadata(),
            )
            self._traces[trace_id] = trace
            return trace

    def get_trace(self, trace_id: str) -> Optional[RequestTrace]:
        """Read-only lookup. Never mutates the store."""
        with self._lock:
            return self._live(trace_id, self._clock())

    def add_span(
        self,
        trace_id: str,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> TraceSpan:
        """
        Append a new started span to a trace.

        Raises:
            TraceNotFound: if the trace id is unknown
        """
        with self._lock:
            now = self._clock()
            trace = self._live(trace_id, now)
            if trace is None:
                raise TraceNotFound(trace_id)

            span = TraceSpan(
                id=str(uuid.uuid4()),
                name=name,
                start_time=now,
                metadata=dict(metadata) if metadata is not None else None,
                tags=dict(tags) if tags is not None else None,
            )
            trace.spans.append(span)
            return span

    def start_span(
        self,
        trace_id: str,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> TraceSpan:
        """Create and immediately start a span."""
        return self.add_span(trace_id, name, metadata=metadata, tags=tags)

    def complete_span(
        self,
        trace_id: str,
        span_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Complete a span. Unknown trace or span ids are ignored.

        Completion can race with request teardown, so this never raises.
        """
        with self._lock:
            now = self._clock()
            trace = self._live(trace_id, now)
            if trace is None:
                return
            span = trace.find_span(span_id)
            if span is None:
                return
            span.finish(now, metadata=metadata, error=error)

    def complete_trace(self, trace_id: str) -> Optional[RequestTrace]:
        """
        Mark a trace as finished and schedule its removal after the
        grace window.

        Returns:
            A copy of the trace at call time, or None if unknown
        """
        with self._lock:
            now = self._clock()
            trace = self._live(trace_id, now)
            if trace is None:
                return None

            trace.end_time = now
            trace.duration = max(0, now - trace.start_time)
            self._expires_at[trace_id] = now + self._grace_ms
            return copy.deepcopy(trace)

    def annotate(self, trace_id: str, **fields: Optional[str]) -> None:
        """Fill in request metadata on a live trace. Unknown ids are ignored."""
        with self._lock:
            trace = self._live(trace_id, self._clock())
            if trace is None:
                return
            for name, value in fields.items():
                if value is not None and hasattr(trace.metadata, name):
                    setattr(trace.metadata, name, value)

    def snapshot(self, trace_id: str) -> Optional[Dict[str, Any]]:
        """Deep copy of a live trace taken under the store lock."""
        with self._lock:
            trace = self._live(trace_id, self._clock())
            return trace.to_dict() if trace is not None else None

    # ============================================================
    # CLEANUP
    # ============================================================

    def perform_cleanup(self, reserve: int = 0) -> int:
        """
        Run both eviction passes.

        1. Drop every trace older than the TTL (and completed traces past
           their grace window).
        2. If still above capacity minus `reserve`, drop the oldest by
           start time until it is not.

        Returns:
            Number of traces removed
        """
        with self._lock:
            now = self._clock()

            stale = [
                trace_id for trace_id, trace in self._traces.items()
                if trace.age_ms(now) > self._ttl_ms or self._grace_expired(trace_id, now)
            ]
            for trace_id in stale:
                self._remove(trace_id)

            evicted: List[str] = []
            excess = len(self._traces) - (self._max_traces - reserve)
            if excess > 0:
                oldest_first = sorted(
                    self._traces.values(),
                    key=lambda t: t.start_time,
                )
                evicted = [t.trace_id for t in oldest_first[:excess]]
                for trace_id in evicted:
                    self._remove(trace_id)

            removed = len(stale) + len(evicted)
            if removed > 0 or len(self._traces) > self._max_traces * 0.8:
                logger.debug(
                    f"[TRACE STORE] Cleanup removed {len(stale)} stale and "
                    f"{len(evicted)} excess traces, {len(self._traces)} remaining"
                )
            return removed

    def purge_completed(self) -> int:
        """Remove completed traces whose grace window has passed."""
        with self._lock:
            now = self._clock()
            expired = [
                trace_id for trace_id, expires_at in self._expires_at.items()
                if expires_at <= now
            ]
            for trace_id in expired:
                self._remove(trace_id)
            return len(expired)

    # ============================================================
    # MONITORING
    # ============================================================

    def get_stats(self) -> Dict[str, int]:
        """
        Trace statistics for health/metrics reporting.

        Returns:
            {"total_traces": ..., "oldest_trace_age_ms": ...}
        """
        with self._lock:
            now = self._clock()
            live = [
                trace for trace_id, trace in self._traces.items()
                if not self._grace_expired(trace_id, now)
            ]
            if not live:
                return {"total_traces": 0, "oldest_trace_age_ms": 0}

            return {
                "total_traces": len(live),
                "oldest_trace_age_ms": max(t.age_ms(now) for t in live),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._traces)

    # ============================================================
    # INTERNAL
    # ============================================================

    def _grace_expired(self, trace_id: str, now: int) -> bool:
        expires_at = self._expires_at.get(trace_id)
        return expires_at is not None and expires_at <= now

    def _live(self, trace_id: str, now: int) -> Optional[RequestTrace]:
        if self._grace_expired(trace_id, now):
            return None
        return self._traces.get(trace_id)

    def _remove(self, trace_id: str) -> None:
        self._traces.pop(trace_id, None)
        self._expires_at.pop(trace_id, None)
