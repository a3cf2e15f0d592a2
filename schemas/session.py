from pydantic import BaseModel, Field


class SessionState(BaseModel):
    """Raw running counters for one session."""
    session_id: str
    user_id: str = ""
    started_at: int
    last_activity: int
    total_calls: int = 0
    total_errors: int = 0
    total_duration: int = 0


class SessionStats(BaseModel):
    """
    Derived statistics for one session.

    Rates are 0 for a session with no calls.
    """
    total_calls: int = Field(..., ge=0)
    total_errors: int = Field(..., ge=0)
    total_duration: int = Field(..., ge=0, description="Sum of call durations (ms)")
    average_duration: float = Field(..., ge=0.0, description="Mean call duration (ms)")
    error_rate: float = Field(..., ge=0.0, le=100.0, description="Errored calls, percent")
    session_duration_ms: int = Field(..., description="Time since the session started")
