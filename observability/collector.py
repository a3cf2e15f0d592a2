"""
Call Log Collector

Single entry point invoked once per completed procedure call.
Stamps the entry, hands it to the exporter and updates session stats.

DESIGN RULES:
- Never throw exceptions
- Export is fire-and-forget
- Session stats are updated even when export fails
- Export is optional (disabled in local/dev setups)
"""

import logging
import uuid
from typing import Callable, Optional, TYPE_CHECKING

from observability.exporter import LogExporter
from observability.trace_store import now_ms
from schemas.call_log import CallLogEntry, CallLogInput
from schemas.session import SessionState, SessionStats

if TYPE_CHECKING:
    from sessions.stats_store import SessionStatsStore


logger = logging.getLogger(__name__)


class CallLogCollector:
    """
    Composes exporter and session stats.

    Responsibilities:
    - Stamp id and timestamp on raw call data
    - Forward to the exporter (optional)
    - Update the session stats store
    - Handle failures gracefully (never throw)
    """

    def __init__(
        self,
        stats_store: "SessionStatsStore",
        exporter: Optional[LogExporter] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize collector.

        Args:
            stats_store: Per-session statistics store
            exporter: LogExporter, or None when export is disabled
            clock: Returns epoch milliseconds (injectable for tests)
        """
        self._stats = stats_store
        self._exporter = exporter
        self._clock = clock

    @property
    def exporter(self) -> Optional[LogExporter]:
        return self._exporter

    @property
    def stats_store(self) -> "SessionStatsStore":
        return self._stats

    def log_call(self, call_data: CallLogInput) -> Optional[CallLogEntry]:
        """
        Record one completed call.

        Args:
            call_data: Raw call data without id/timestamp

        Returns:
            The stamped entry, or None if it could not be built

        Note: This method NEVER throws. Failures are logged and ignored.
        """
        try:
            entry = CallLogEntry(
                **call_data.model_dump(),
                id=str(uuid.uuid4()),
                timestamp=self._clock(),
            )
        except Exception as e:
            logger.error(f"[CALL LOG] Failed to build call log for {call_data.procedure}: {e}")
            return None

        self._export(entry)

        try:
            self._stats.record_call(entry.session_id, entry.user_id, entry)
        except Exception as e:
            logger.error(f"[CALL LOG] Failed to update session stats: {e}")

        return entry

    def _export(self, entry: CallLogEntry) -> None:
        if self._exporter is None:
            return
        try:
            self._exporter.export(entry)
        except Exception as e:
            # Never throw - observability failure must not affect the request
            logger.error(f"[CALL LOG] Failed to export call {entry.procedure}: {e}")

    # Reporting passthroughs used by the logging routes

    def get_session_stats(self, session_id: str) -> SessionStats:
        return self._stats.get_session_stats(session_id)

    def get_state(self, session_id: str) -> SessionState:
        return self._stats.get_state(session_id)

    def initialize_session(self, session_id: str, user_id: str) -> None:
        self._stats.initialize_session(session_id, user_id)

    def clear_session(self, session_id: str) -> None:
        self._stats.clear_session(session_id)

    def shutdown(self) -> None:
        """Release the exporter's delivery pool."""
        if self._exporter is not None:
            self._exporter.shutdown(wait=True)
