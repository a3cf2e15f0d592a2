"""
Log Sink Interface

Abstract destination for enriched call logs.

DESIGN RULES:
- submit() raises ExportFailure on any failure; callers decide what to do
- Short timeout, single attempt
- No reads from the sink
"""

import json
import logging
import socket
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from observability.errors import ExportFailure


logger = logging.getLogger(__name__)


class LogSink(ABC):
    """
    Abstract base for log destinations.

    Implementations:
    - HttpLogSink (log intake HTTP API)
    """

    @abstractmethod
    def submit(self, entries: List[Dict[str, Any]]) -> None:
        """
        Submit a batch of records (EnrichedLogEntry.to_dict() shape).

        Raises:
            ExportFailure: if the sink rejected or could not be reached
        """
        pass


def to_intake_record(entry: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a sink-neutral record to the log intake shape.

    Reserved fields stay top-level; custom attributes are flattened
    next to them so they are searchable as facets.
    """
    record: Dict[str, Any] = dict(entry.get("attributes") or {})
    correlation = entry.get("correlation") or {}
    record.update({
        "message": entry.get("message"),
        "status": entry.get("level"),
        "service": entry.get("service"),
        "ddsource": entry.get("source"),
        "ddtags": entry.get("tags"),
        "hostname": entry.get("hostname"),
        "timestamp": entry.get("timestamp"),
        "dd": {
            "trace_id": correlation.get("trace_id"),
            "span_id": correlation.get("span_id"),
        },
    })
    return record


class HttpLogSink(LogSink):
    """
    Sink that POSTs JSON arrays to the log intake HTTP API.
    """

    def __init__(
        self,
        api_key: str,
        app_key: str,
        site: str = "datadoghq.com",
        timeout_ms: int = 2000,
    ):
        """
        Initialize HTTP sink.

        Args:
            api_key: Intake API key
            app_key: Application key
            site: Region/site, e.g. "datadoghq.com" or "datadoghq.eu"
            timeout_ms: Socket timeout per submission
        """
        self._api_key = api_key
        self._app_key = app_key
        self._site = site
        self._timeout_seconds = timeout_ms / 1000.0

    @property
    def url(self) -> str:
        return f"https://http-intake.logs.{self._site}/api/v2/logs"

    def submit(self, entries: List[Dict[str, Any]]) -> None:
        body = json.dumps([to_intake_record(e) for e in entries], default=str).encode("utf-8")
        req = urllib.request.Request(
            self.url,
            data=body,
            headers={
                "Content-Type": "application/json",
                "DD-API-KEY": self._api_key,
                "DD-APPLICATION-KEY": self._app_key,
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=self._timeout_seconds) as response:
                # Body is irrelevant, reading it releases the connection
                _ = response.read()
        except urllib.error.HTTPError as e:
            raise ExportFailure(f"Log intake rejected batch: HTTP {e.code}", e) from e
        except urllib.error.URLError as e:
            raise ExportFailure(f"Log intake unreachable: {e.reason}", e) from e
        except socket.timeout as e:
            raise ExportFailure("Timeout posting to log intake", e) from e
        except OSError as e:
            raise ExportFailure(f"Error posting to log intake: {e}", e) from e
