"""
Request Trace Model

Hierarchical record of one request: a trace holding an ordered list of spans.

DESIGN RULES:
- Pure data containers, no store logic
- Spans are append-only while the trace is active
- Status moves started -> completed|error, never back
- Snapshots are deep copies, never live references
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SpanStatus(str, Enum):
    """Lifecycle status of a span."""
    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class TraceSpan:
    """
    One timed unit of work within a request.

    Timestamps are epoch milliseconds.
    """

    id: str
    name: str
    start_time: int
    status: SpanStatus = SpanStatus.STARTED
    end_time: Optional[int] = None
    duration: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    tags: Optional[Dict[str, str]] = None

    @property
    def is_finished(self) -> bool:
        return self.status != SpanStatus.STARTED

    def finish(
        self,
        now: int,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Move the span to its terminal status.

        A span that already finished is left untouched.
        """
        if self.is_finished:
            return

        self.end_time = now
        self.duration = max(0, now - self.start_time)
        self.status = SpanStatus.ERROR if error else SpanStatus.COMPLETED
        if error:
            self.error = error
        if metadata:
            # Merge, never replace wholesale
            merged = dict(self.metadata or {})
            merged.update(metadata)
            self.metadata = merged

    def to_dict(self) -> Dict[str, Any]:
        """Serialize (deep copy) for logging/export."""
        return {
            "id": self.id,
            "name": self.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "status": self.status.value,
            "metadata": copy.deepcopy(self.metadata),
            "error": self.error,
            "tags": dict(self.tags) if self.tags is not None else None,
        }


@dataclass
class TraceMetadata:
    """Request-level metadata, filled incrementally."""
    procedure: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "procedure": self.procedure,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "request_id": self.request_id,
        }


@dataclass
class RequestTrace:
    """
    Aggregate for one logical request.

    Owned by the TraceStore. Anything leaving the store should go
    through to_dict() so later mutation cannot leak into it.
    """

    trace_id: str
    start_time: int
    spans: List[TraceSpan] = field(default_factory=list)
    metadata: TraceMetadata = field(default_factory=TraceMetadata)
    end_time: Optional[int] = None
    duration: Optional[int] = None

    @property
    def is_completed(self) -> bool:
        return self.end_time is not None

    def age_ms(self, now: int) -> int:
        return now - self.start_time

    def find_span(self, span_id: str) -> Optional[TraceSpan]:
        for span in self.spans:
            if span.id == span_id:
                return span
        return None

    def span_counts(self) -> Dict[str, int]:
        """Counts of total, completed and errored spans."""
        completed = sum(1 for s in self.spans if s.status == SpanStatus.COMPLETED)
        errored = sum(1 for s in self.spans if s.status == SpanStatus.ERROR)
        return {
            "total_spans": len(self.spans),
            "completed_spans": completed,
            "error_spans": errored,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Point-in-time copy of the trace."""
        data = {
            "trace_id": self.trace_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "spans": [span.to_dict() for span in self.spans],
            "metadata": self.metadata.to_dict(),
        }
        data.update(self.span_counts())
        return data
