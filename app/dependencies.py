"""
FastAPI Dependencies

All object creation happens here, not per request.
One trace store and one collector per process; the lifespan in
app.main starts them and tears them down.
"""

from functools import lru_cache

from app.core.config import settings
from observability.collector import CallLogCollector
from observability.enricher import CallLogEnricher
from observability.exporter import LogExporter
from observability.recorder import SpanRecorder
from observability.trace_store import TraceStore
from sessions.stats_store import SessionStatsStore


@lru_cache(maxsize=1)
def get_trace_store() -> TraceStore:
    """Create and cache the process-wide TraceStore."""
    return TraceStore()


@lru_cache(maxsize=1)
def get_span_recorder() -> SpanRecorder:
    return SpanRecorder(get_trace_store())


def build_exporter() -> LogExporter:
    """
    Build the log exporter from settings.

    Raises:
        ConfigurationError: if sink credentials are missing or blank
    """
    enricher = CallLogEnricher(
        service=settings.service_name,
        rpc_prefix=settings.rpc_prefix,
    )
    return LogExporter(
        api_key=settings.sink_api_key,
        app_key=settings.sink_app_key,
        site=settings.sink_site,
        enricher=enricher,
        max_workers=settings.export_workers,
        max_pending=settings.export_queue_size,
        timeout_ms=settings.sink_timeout_ms,
    )


@lru_cache(maxsize=1)
def get_collector() -> CallLogCollector:
    """
    Create and cache the CallLogCollector singleton.

    Components wired here:
    - SessionStatsStore: per-session counters
    - LogExporter: only when export is enabled in settings
    """
    exporter = build_exporter() if settings.export_enabled else None
    return CallLogCollector(stats_store=SessionStatsStore(), exporter=exporter)
