"""
Session Types

Running per-session call statistics.

DESIGN RULES:
- total_calls >= total_errors
- total_duration only grows while the aggregate is live
- No TTL here; session cleanup belongs to the caller
"""

from dataclasses import dataclass

from schemas.session import SessionState, SessionStats


@dataclass
class SessionAggregate:
    """
    Counters for one session.

    Timestamps are epoch milliseconds.
    """
    session_id: str
    user_id: str
    started_at: int
    last_activity: int
    total_calls: int = 0
    total_errors: int = 0
    total_duration: int = 0

    @classmethod
    def fresh(cls, session_id: str, user_id: str, now: int) -> "SessionAggregate":
        """Zeroed aggregate starting now."""
        return cls(
            session_id=session_id,
            user_id=user_id,
            started_at=now,
            last_activity=now,
        )

    def record(self, duration: int, has_error: bool, timestamp: int) -> None:
        """Fold one completed call into the counters."""
        self.last_activity = timestamp
        self.total_calls += 1
        self.total_duration += max(0, duration)
        if has_error:
            self.total_errors += 1

    def to_state(self) -> SessionState:
        return SessionState(
            session_id=self.session_id,
            user_id=self.user_id,
            started_at=self.started_at,
            last_activity=self.last_activity,
            total_calls=self.total_calls,
            total_errors=self.total_errors,
            total_duration=self.total_duration,
        )

    def to_stats(self, now: int) -> SessionStats:
        """Derive averages and rates; zero calls yields zero rates."""
        if self.total_calls > 0:
            average = self.total_duration / self.total_calls
            error_rate = (self.total_errors / self.total_calls) * 100
        else:
            average = 0.0
            error_rate = 0.0

        return SessionStats(
            total_calls=self.total_calls,
            total_errors=self.total_errors,
            total_duration=self.total_duration,
            average_duration=average,
            error_rate=error_rate,
            session_duration_ms=now - self.started_at,
        )
