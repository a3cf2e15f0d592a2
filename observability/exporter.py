"""
Log Exporter

Fire-and-forget forwarding of enriched call logs to the log sink.

DESIGN RULES (NON-NEGOTIABLE):
- Credentials validated at construction (fail fast)
- export() never raises and never waits on the network
- Single attempt per entry, no retry, no backoff
- Failures logged as warnings only
- In-flight work is bounded; overflow is dropped
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Optional, Set

from observability.enricher import CallLogEnricher, EnrichedLogEntry
from observability.errors import ConfigurationError, ExportFailure
from observability.sink import HttpLogSink, LogSink
from schemas.call_log import CallLogEntry


logger = logging.getLogger(__name__)


def _require(value: Optional[str], name: str) -> str:
    if value is None or value.strip() == "":
        raise ConfigurationError(f"{name} is required and cannot be empty for the log exporter")
    return value


class LogExporter:
    """
    Owns sink credentials and a small delivery pool.
    """

    DEFAULT_WORKERS = 2
    DEFAULT_MAX_PENDING = 1000

    def __init__(
        self,
        api_key: Optional[str],
        app_key: Optional[str],
        site: Optional[str] = None,
        sink: Optional[LogSink] = None,
        enricher: Optional[CallLogEnricher] = None,
        max_workers: int = DEFAULT_WORKERS,
        max_pending: int = DEFAULT_MAX_PENDING,
        timeout_ms: int = 2000,
    ):
        """
        Initialize exporter.

        Args:
            api_key: Sink API key (required, non-blank)
            app_key: Sink application key (required, non-blank)
            site: Sink site/region, defaults to "datadoghq.com"
            sink: Override the HTTP sink (tests, alternative backends)
            enricher: Override the default CallLogEnricher
            max_workers: Delivery threads
            max_pending: Bound on entries queued or in flight
            timeout_ms: HTTP timeout for the default sink

        Raises:
            ConfigurationError: if either credential is missing or blank
        """
        api_key = _require(api_key, "Sink API key")
        app_key = _require(app_key, "Sink application key")
        self._site = site or "datadoghq.com"

        self._sink = sink or HttpLogSink(api_key, app_key, site=self._site, timeout_ms=timeout_ms)
        self._enricher = enricher or CallLogEnricher()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="log-export")
        self._slots = threading.BoundedSemaphore(max_pending)
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._closed = False

    @property
    def site(self) -> str:
        return self._site

    def export(self, entry: CallLogEntry) -> None:
        """
        Enrich and schedule delivery of one entry.

        Fire-and-forget. Never raises. Never blocks on the sink.
        """
        try:
            record = self._enricher.enrich(entry)
            if record is None:
                # Logging-introspection call, skip to avoid recursive logging
                return

            if self._closed:
                logger.warning(f"[LOG EXPORT] Exporter closed, dropping call {entry.id}")
                return

            if not self._slots.acquire(blocking=False):
                logger.warning(f"[LOG EXPORT] Delivery queue full, dropping call {entry.id}")
                return

            try:
                future = self._pool.submit(self._deliver, record)
            except RuntimeError as e:
                self._slots.release()
                logger.warning(f"[LOG EXPORT] Could not schedule call {entry.id}: {e}")
                return

            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._on_done)

        except Exception as e:
            # Never throw - export must not affect the request
            logger.error(f"[LOG EXPORT] Failed to export call {entry.id}: {e}")

    def _deliver(self, record: EnrichedLogEntry) -> None:
        try:
            self._sink.submit([record.to_dict()])
        except ExportFailure as e:
            logger.warning(f"[LOG EXPORT] Failed to deliver log: {e}")
        except Exception as e:
            logger.warning(f"[LOG EXPORT] Unexpected error delivering log: {e}")

    def _on_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        self._slots.release()

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for scheduled deliveries.

        Returns:
            True if everything pending finished within the timeout
        """
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting entries and release the delivery pool."""
        self._closed = True
        self._pool.shutdown(wait=wait)
