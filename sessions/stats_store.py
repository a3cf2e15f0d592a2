"""
Session Stats Store

In-memory per-session call statistics.

DESIGN RULES:
- No persistence, one store per process
- Updates are atomic per call (no lost updates across requests)
- Independent from trace storage
- Clearing resets to a fresh aggregate, it does not delete
"""

from threading import Lock
from typing import Callable, Dict

from observability.trace_store import now_ms
from schemas.call_log import CallLogEntry
from schemas.session import SessionState, SessionStats
from sessions.types import SessionAggregate


class SessionStatsStore:
    """
    Running counters keyed by session_id.

    Thread-safe for concurrent access.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        """
        Initialize stats store.

        Args:
            clock: Returns epoch milliseconds (injectable for tests)
        """
        self._sessions: Dict[str, SessionAggregate] = {}
        self._clock = clock
        self._lock = Lock()

    def _get_or_create(self, session_id: str, user_id: str = "") -> SessionAggregate:
        # Caller holds the lock
        aggregate = self._sessions.get(session_id)
        if aggregate is None:
            aggregate = SessionAggregate.fresh(session_id, user_id, self._clock())
            self._sessions[session_id] = aggregate
        return aggregate

    def record_call(self, session_id: str, user_id: str, entry: CallLogEntry) -> None:
        """
        Fold a completed call into its session's counters.

        Args:
            session_id: Session the call belongs to
            user_id: User bound to the session on first sight
            entry: The stamped call log entry
        """
        with self._lock:
            aggregate = self._get_or_create(session_id, user_id)
            aggregate.record(entry.duration, entry.has_error, entry.timestamp)

    def initialize_session(self, session_id: str, user_id: str) -> None:
        """
        (Re)bind a session to a user and restart its clock.

        Counters already collected are kept.
        """
        with self._lock:
            aggregate = self._get_or_create(session_id, user_id)
            now = self._clock()
            aggregate.user_id = user_id
            aggregate.started_at = now
            aggregate.last_activity = now

    def get_state(self, session_id: str) -> SessionState:
        """Raw counters; creates an empty aggregate on first read."""
        with self._lock:
            return self._get_or_create(session_id).to_state()

    def get_session_stats(self, session_id: str) -> SessionStats:
        """
        Derived statistics for a session.

        Returns:
            SessionStats with zeroed counters for an unseen session
        """
        with self._lock:
            aggregate = self._get_or_create(session_id)
            return aggregate.to_stats(self._clock())

    def clear_session(self, session_id: str) -> None:
        """Replace the session's aggregate with a fresh, zeroed one."""
        with self._lock:
            self._sessions[session_id] = SessionAggregate.fresh(session_id, "", self._clock())

    def session_count(self) -> int:
        """Get count of tracked sessions."""
        with self._lock:
            return len(self._sessions)
