from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from observability.trace import RequestTrace


class CallMethod(str, Enum):
    """RPC method kind."""
    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


class CallMetadata(BaseModel):
    """
    Transport details captured for one procedure call.
    """
    method: CallMethod = CallMethod.QUERY
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    referer: Optional[str] = None
    origin: Optional[str] = None
    accept_language: Optional[str] = None
    accept_encoding: Optional[str] = None
    request_id: Optional[str] = None
    trace_id: Optional[str] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    request_duration: Optional[int] = None


class TraceSnapshot(BaseModel):
    """
    Point-in-time copy of a request trace embedded in a call log.

    Built from RequestTrace.to_dict(), so later mutation of the source
    trace never reaches an entry already handed to the exporter.
    """
    trace_id: str
    request_start_time: int
    request_end_time: Optional[int] = None
    request_duration: Optional[int] = None
    spans: List[Dict[str, Any]] = Field(default_factory=list)
    total_spans: int = 0
    completed_spans: int = 0
    error_spans: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceSnapshot":
        """Build from RequestTrace.to_dict() output."""
        return cls(
            trace_id=data["trace_id"],
            request_start_time=data["start_time"],
            request_end_time=data.get("end_time"),
            request_duration=data.get("duration"),
            spans=data.get("spans", []),
            total_spans=data.get("total_spans", 0),
            completed_spans=data.get("completed_spans", 0),
            error_spans=data.get("error_spans", 0),
        )

    @classmethod
    def from_trace(cls, trace: "RequestTrace") -> "TraceSnapshot":
        return cls.from_dict(trace.to_dict())


class CallLogInput(BaseModel):
    """
    Raw call data handed over by the request layer once per completed call.

    This is the external contract of CallLogCollector.log_call(): the
    collector stamps the id and timestamp.
    """
    user_id: str
    session_id: str
    procedure: str
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    duration: int = Field(..., ge=0, description="Call duration in milliseconds")
    metadata: CallMetadata = Field(default_factory=CallMetadata)
    trace: Optional[TraceSnapshot] = None


class CallLogEntry(CallLogInput):
    """
    One record of a completed procedure invocation.
    """
    id: str
    timestamp: int

    @property
    def has_error(self) -> bool:
        return bool(self.error)
