"""
Call Logging Errors

Error taxonomy for the tracing and call-logging pipeline.

Only ConfigurationError is allowed to escape the subsystem (at startup).
Everything else is caught at the component boundary and logged.
"""

from typing import Optional


class CallLoggingError(Exception):
    """Base class for tracing/logging errors."""


class TraceNotFound(CallLoggingError):
    """Raised by span creation when the trace id is not in the store."""

    def __init__(self, trace_id: str):
        super().__init__(f"Trace not found: {trace_id}")
        self.trace_id = trace_id


class ConfigurationError(CallLoggingError):
    """Sink credentials or settings are missing. Fatal at construction."""


class ExportFailure(CallLoggingError):
    """Any failure talking to the external log sink."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
