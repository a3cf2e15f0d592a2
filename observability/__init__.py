# Observability Package
from observability.trace import RequestTrace, SpanStatus, TraceMetadata, TraceSpan
from observability.trace_store import TraceStore
from observability.recorder import SpanRecorder
from observability.sink import LogSink, HttpLogSink
from observability.exporter import LogExporter
from observability.collector import CallLogCollector

__all__ = [
    "RequestTrace",
    "SpanStatus",
    "TraceMetadata",
    "TraceSpan",
    "TraceStore",
    "SpanRecorder",
    "LogSink",
    "HttpLogSink",
    "LogExporter",
    "CallLogCollector",
]
