import re

import pytest

from observability.enricher import (
    CallLogEnricher,
    LOGGING_PROCEDURES,
    build_tags,
    classify_performance,
    derive_level,
    enrich,
)
from observability.trace import TraceMetadata
from observability.user_agent import parse_user_agent
from schemas.call_log import CallLogEntry, CallMetadata, CallMethod, TraceSnapshot


CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def create_test_entry(**overrides) -> CallLogEntry:
    """Create a sample CallLogEntry for testing."""
    data = dict(
        id="call-001",
        timestamp=1_700_000_000_000,
        user_id="u1",
        session_id="s1",
        procedure="mail.send",
        input={"to": "a@example.com"},
        duration=42,
        metadata=CallMetadata(
            method=CallMethod.MUTATION,
            user_agent=CHROME_MAC,
            ip="203.0.113.7",
            referer="https://mail.example.com/inbox",
            origin="https://mail.example.com",
            accept_language="en-US",
            accept_encoding="gzip",
            request_id="req-1",
            trace_id="trace-1",
            start_time=1_700_000_000_000 - 42,
            end_time=1_700_000_000_000,
        ),
    )
    data.update(overrides)
    return CallLogEntry(**data)


@pytest.mark.parametrize(
    "duration, bucket",
    [(0, "fast"), (99, "fast"), (100, "normal"), (499, "normal"), (500, "slow"), (12_000, "slow")],
)
def test_performance_buckets(duration, bucket):
    assert classify_performance(duration) == bucket


def test_level_derivation():
    assert derive_level(True, "fast") == "error"
    assert derive_level(True, "slow") == "error"
    assert derive_level(False, "slow") == "warn"
    assert derive_level(False, "normal") == "info"
    assert derive_level(False, "fast") == "info"


def test_tags_fixed_order():
    entry = create_test_entry()
    tags = build_tags(entry, "fast", parse_user_agent(CHROME_MAC))
    assert tags == (
        "session:s1,user:u1,procedure:mail.send,duration:42ms,"
        "has_error:false,performance:fast,browser:chrome,device:desktop"
    )


@pytest.mark.parametrize("procedure", sorted(LOGGING_PROCEDURES))
def test_logging_procedures_are_suppressed(procedure):
    assert enrich(create_test_entry(procedure=procedure)) is None


def test_enriched_entry_fields():
    """Test: Successful fast call becomes an info record with full payload."""
    enricher = CallLogEnricher(service="mail-app", hostname="web-1")
    record = enricher.enrich(create_test_entry(output={"ok": True}))

    assert record.message == "INFO: RPC call: [mail.send] (42ms)"
    assert record.level == "info"
    assert record.service == "mail-app"
    assert record.source == "rpc-logging"
    assert record.hostname == "web-1"
    assert record.timestamp == 1_700_000_000_000

    attrs = record.attributes
    assert attrs["call_id"] == "call-001"
    assert attrs["performance_category"] == "fast"
    assert attrs["rpc_method"] == "mutation"
    assert attrs["http_method"] == "POST"
    assert attrs["http_url"] == "/api/rpc/mail.send"
    assert attrs["client_ip"] == "203.0.113.7"
    assert attrs["referer"] == "https://mail.example.com/inbox"
    assert attrs["request_id"] == "req-1"
    assert attrs["browser"] == "chrome"
    assert attrs["operating_system"] == "macos"
    assert attrs["os_version"] == "10.15.7"
    assert attrs["device_type"] == "desktop"
    assert attrs["has_error"] is False
    assert "error_message" not in attrs
    assert "error_type" not in attrs
    assert attrs["request_payload"] == {"to": "a@example.com"}
    assert attrs["response_payload"] == {"ok": True}
    assert attrs["timing"] == {
        "start_time": 1_700_000_000_000 - 42,
        "end_time": 1_700_000_000_000,
        "duration_ms": 42,
        "performance_category": "fast",
    }
    assert attrs["trace"] is None


def test_error_fields_only_with_error():
    record = enrich(create_test_entry(error="SMTP 550", duration=750))

    assert record.level == "error"
    assert record.message.startswith("ERROR: ")
    assert record.attributes["has_error"] is True
    assert record.attributes["error_message"] == "SMTP 550"
    assert record.attributes["error_type"] == "rpc_error"
    assert record.attributes["performance_category"] == "slow"
    assert "has_error:true" in record.tags


def test_slow_call_is_warning_without_response_payload():
    record = enrich(create_test_entry(duration=800))
    assert record.level == "warn"
    assert "response_payload" not in record.attributes


def test_timing_falls_back_to_timestamp():
    entry = create_test_entry(metadata=CallMetadata())
    record = enrich(entry)
    assert record.attributes["timing"]["start_time"] == entry.timestamp
    assert record.attributes["timing"]["end_time"] == entry.timestamp + entry.duration
    assert record.attributes["browser"] == "unknown"
    assert "browser:unknown,device:unknown" in record.tags


def test_correlation_ids_are_fresh_hex():
    first = enrich(create_test_entry())
    second = enrich(create_test_entry())

    for value in (first.trace_id, first.span_id, second.trace_id, second.span_id):
        assert re.fullmatch(r"[0-9a-f]{32}", value)
    assert first.trace_id != second.trace_id
    assert first.trace_id != first.span_id
    # Not the request's own trace id
    assert first.trace_id != "trace-1"


def test_trace_snapshot_embedded_verbatim(trace_store):
    trace_store.create_trace("t1", TraceMetadata(procedure="mail.send"))
    span = trace_store.add_span("t1", "db.query")
    trace_store.complete_span("t1", span.id)
    snapshot = TraceSnapshot.from_trace(trace_store.complete_trace("t1"))

    record = enrich(create_test_entry(trace=snapshot))

    embedded = record.attributes["trace"]
    assert embedded["trace_id"] == "t1"
    assert embedded["total_spans"] == 1
    assert embedded["completed_spans"] == 1
    assert embedded["error_spans"] == 0
    assert embedded["spans"][0]["name"] == "db.query"


def test_to_dict_shape():
    data = enrich(create_test_entry()).to_dict()
    assert set(data) == {
        "message", "level", "service", "source", "tags",
        "hostname", "timestamp", "correlation", "attributes",
    }
    assert set(data["correlation"]) == {"trace_id", "span_id"}
