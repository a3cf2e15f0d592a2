"""
Call Log Enricher

Turns a raw CallLogEntry into the structured record sent to the log sink.

DESIGN RULES:
- Pure function of the entry (plus fresh correlation ids)
- Logging-introspection procedures are suppressed (returns None)
- Fixed thresholds, not configurable
"""

import socket
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from observability.user_agent import DeviceInfo, parse_user_agent
from schemas.call_log import CallLogEntry


# Procedures that report on logging itself; exporting them would feed
# the logs they read.
LOGGING_PROCEDURES = frozenset({
    "logging.getSessionStats",
    "logging.clearSession",
    "logging.getSessionState",
    "logging.exportLogs",
})

FAST_THRESHOLD_MS = 100
NORMAL_THRESHOLD_MS = 500

DEFAULT_SERVICE = "mail-app"
LOG_SOURCE = "rpc-logging"
DEFAULT_RPC_PREFIX = "/api/rpc"


def is_logging_procedure(procedure: str) -> bool:
    """Check if a procedure is logging-related (recursion guard)."""
    return procedure in LOGGING_PROCEDURES


def classify_performance(duration_ms: float) -> str:
    """Bucket a duration into fast / normal / slow."""
    if duration_ms < FAST_THRESHOLD_MS:
        return "fast"
    if duration_ms < NORMAL_THRESHOLD_MS:
        return "normal"
    return "slow"


def derive_level(has_error: bool, performance: str) -> str:
    """Severity: error beats slow, slow is a warning, otherwise info."""
    if has_error:
        return "error"
    if performance == "slow":
        return "warn"
    return "info"


def generate_correlation_id() -> str:
    """32 hex characters, unrelated to the request's own trace id."""
    return uuid.uuid4().hex


def build_tags(
    entry: CallLogEntry,
    performance: str,
    device: DeviceInfo,
) -> str:
    """Flattened `key:value` tag list, fixed order."""
    pairs = [
        ("session", entry.session_id),
        ("user", entry.user_id),
        ("procedure", entry.procedure),
        ("duration", f"{entry.duration}ms"),
        ("has_error", str(entry.has_error).lower()),
        ("performance", performance),
        ("browser", device.browser),
        ("device", device.device_type),
    ]
    return ",".join(f"{key}:{value}" for key, value in pairs)


@dataclass
class EnrichedLogEntry:
    """
    Sink-neutral structured log record.

    The sink decides the wire shape; see observability.sink.
    """

    message: str
    level: str
    service: str
    source: str
    tags: str
    hostname: str
    timestamp: int
    trace_id: str
    span_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "level": self.level,
            "service": self.service,
            "source": self.source,
            "tags": self.tags,
            "hostname": self.hostname,
            "timestamp": self.timestamp,
            "correlation": {
                "trace_id": self.trace_id,
                "span_id": self.span_id,
            },
            "attributes": self.attributes,
        }


class CallLogEnricher:
    """
    Builds EnrichedLogEntry records from completed calls.
    """

    def __init__(
        self,
        service: str = DEFAULT_SERVICE,
        hostname: Optional[str] = None,
        rpc_prefix: str = DEFAULT_RPC_PREFIX,
    ):
        self._service = service
        self._hostname = hostname or socket.gethostname()
        self._rpc_prefix = rpc_prefix.rstrip("/")

    def enrich(self, entry: CallLogEntry) -> Optional[EnrichedLogEntry]:
        """
        Enrich one call log entry.

        Args:
            entry: Completed call with id and timestamp stamped

        Returns:
            EnrichedLogEntry, or None when the procedure is suppressed
        """
        if is_logging_procedure(entry.procedure):
            return None

        performance = classify_performance(entry.duration)
        has_error = entry.has_error
        level = derive_level(has_error, performance)
        device = parse_user_agent(entry.metadata.user_agent)

        return EnrichedLogEntry(
            message=f"{level.upper()}: RPC call: [{entry.procedure}] ({entry.duration}ms)",
            level=level,
            service=self._service,
            source=LOG_SOURCE,
            tags=build_tags(entry, performance, device),
            hostname=self._hostname,
            timestamp=entry.timestamp,
            trace_id=generate_correlation_id(),
            span_id=generate_correlation_id(),
            attributes=self._build_attributes(entry, performance, has_error, device),
        )

    def _build_attributes(
        self,
        entry: CallLogEntry,
        performance: str,
        has_error: bool,
        device: DeviceInfo,
    ) -> Dict[str, Any]:
        meta = entry.metadata

        attributes: Dict[str, Any] = {
            # Core call data
            "call_id": entry.id,
            "procedure": entry.procedure,
            "duration": entry.duration,
            "performance_category": performance,
            "rpc_method": meta.method.value if meta.method else "unknown",

            # Session context
            "session_id": entry.session_id,
            "user_id": entry.user_id,

            # HTTP context
            "http_method": "POST",
            "http_url": f"{self._rpc_prefix}/{entry.procedure}",
            "client_ip": meta.ip,
            "referer": meta.referer,
            "origin": meta.origin,
            "accept_language": meta.accept_language,
            "accept_encoding": meta.accept_encoding,
            "request_id": meta.request_id,
        }

        attributes.update(device.to_dict())

        attributes["has_error"] = has_error
        if has_error:
            attributes["error_message"] = entry.error
            attributes["error_type"] = "rpc_error"

        attributes["request_payload"] = entry.input
        if entry.output is not None:
            attributes["response_payload"] = entry.output

        start_time = meta.start_time if meta.start_time is not None else entry.timestamp
        end_time = meta.end_time if meta.end_time is not None else entry.timestamp + entry.duration
        attributes["timing"] = {
            "start_time": start_time,
            "end_time": end_time,
            "duration_ms": entry.duration,
            "performance_category": performance,
        }

        attributes["trace"] = entry.trace.model_dump() if entry.trace is not None else None
        return attributes


_default_enricher: Optional[CallLogEnricher] = None


def enrich(entry: CallLogEntry) -> Optional[EnrichedLogEntry]:
    """Enrich with the default service identifiers."""
    global _default_enricher
    if _default_enricher is None:
        _default_enricher = CallLogEnricher()
    return _default_enricher.enrich(entry)
