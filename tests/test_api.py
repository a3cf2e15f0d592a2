import pytest
from fastapi import HTTPException, Request
from fastapi.testclient import TestClient

from app.main import create_app
from observability.collector import CallLogCollector
from observability.exporter import LogExporter
from observability.recorder import SpanRecorder
from observability.trace import SpanStatus


@pytest.fixture
def exporter(sink):
    exporter = LogExporter("api", "app", sink=sink)
    yield exporter
    exporter.shutdown()


@pytest.fixture
def collector(stats_store, exporter):
    return CallLogCollector(stats_store, exporter)


@pytest.fixture
def app(trace_store, collector):
    app = create_app(trace_store=trace_store, collector=collector)
    recorder = SpanRecorder(trace_store)

    # Stand-in procedures; real ones live in the mail API
    @app.get("/api/rpc/mail.list")
    def mail_list(request: Request):
        with recorder.span(request, "db.query", {"table": "threads"}):
            pass
        return {"threads": []}

    @app.post("/api/rpc/mail.send")
    async def mail_send(request: Request):
        payload = await request.json()
        return {"queued": payload["to"]}

    @app.get("/api/rpc/mail.get")
    def mail_get():
        raise HTTPException(status_code=404, detail="Thread not found")

    @app.get("/api/rpc/mail.crash")
    def mail_crash():
        raise RuntimeError("driver exploded")

    @app.get("/static/ping")
    def ping():
        return {"pong": True}

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_health_reports_trace_stats(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert set(data["traces"]) == {"total_traces", "oldest_trace_age_ms"}


def test_trace_id_header_round_trip(client, trace_store):
    response = client.get("/static/ping", headers={"X-Trace-ID": "abc123"})

    assert response.headers["X-Trace-ID"] == "abc123"
    assert response.headers["X-Request-ID"]
    trace = trace_store.get_trace("abc123")
    assert trace.is_completed
    assert [s.name for s in trace.spans] == ["http.request"]


def test_trace_id_generated_when_absent(client, trace_store):
    response = client.get("/static/ping")
    trace_id = response.headers["X-Trace-ID"]
    assert len(trace_id) == 32
    assert trace_store.get_trace(trace_id) is not None


def test_non_rpc_request_is_not_logged(client, stats_store, exporter, sink):
    client.get("/static/ping", headers={"X-Session-ID": "s1"})
    assert exporter.flush(timeout=5)
    assert sink.entries == []
    assert stats_store.get_session_stats("s1").total_calls == 0


def test_rpc_call_is_exported_with_trace(client, exporter, sink, stats_store):
    response = client.get(
        "/api/rpc/mail.list",
        params={"folder": "inbox"},
        headers={
            "X-Session-ID": "s1",
            "X-User-ID": "u1",
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
            "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
            "Referer": "https://mail.example.com/inbox",
        },
    )
    assert response.status_code == 200
    assert exporter.flush(timeout=5)

    assert len(sink.entries) == 1
    record = sink.entries[0]
    attrs = record["attributes"]
    assert record["level"] in ("info", "warn")
    assert attrs["procedure"] == "mail.list"
    assert attrs["rpc_method"] == "query"
    assert attrs["session_id"] == "s1"
    assert attrs["user_id"] == "u1"
    assert attrs["client_ip"] == "203.0.113.7"
    assert attrs["referer"] == "https://mail.example.com/inbox"
    assert attrs["browser"] == "firefox"
    assert attrs["request_payload"] == {"folder": "inbox"}
    assert attrs["request_id"] == response.headers["X-Request-ID"]

    trace = attrs["trace"]
    assert trace["trace_id"] == response.headers["X-Trace-ID"]
    assert [s["name"] for s in trace["spans"]] == ["http.request", "db.query"]
    assert trace["completed_spans"] == 2
    assert trace["error_spans"] == 0

    assert stats_store.get_session_stats("s1").total_calls == 1


def test_json_body_captured_for_mutations(client, exporter, sink):
    response = client.post(
        "/api/rpc/mail.send",
        json={"to": "a@example.com"},
        headers={"X-Session-ID": "s1"},
    )
    assert response.json() == {"queued": "a@example.com"}
    assert exporter.flush(timeout=5)

    attrs = sink.entries[0]["attributes"]
    assert attrs["rpc_method"] == "mutation"
    assert attrs["request_payload"] == {"to": "a@example.com"}


def test_http_error_counts_as_failed_call(client, exporter, sink, stats_store, trace_store):
    response = client.get("/api/rpc/mail.get", headers={"X-Session-ID": "s1", "X-Trace-ID": "t-404"})
    assert response.status_code == 404
    assert exporter.flush(timeout=5)

    assert sink.entries[0]["level"] == "error"
    assert sink.entries[0]["attributes"]["error_message"] == "HTTP 404"
    assert stats_store.get_session_stats("s1").total_errors == 1
    assert trace_store.get_trace("t-404").spans[0].status == SpanStatus.ERROR


def test_unhandled_exception_is_logged_and_reraised(app, exporter, sink, stats_store):
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/api/rpc/mail.crash", headers={"X-Session-ID": "s1"})

    assert response.status_code == 500
    assert exporter.flush(timeout=5)
    assert sink.entries[0]["attributes"]["error_message"] == "driver exploded"
    assert stats_store.get_session_stats("s1").total_errors == 1


def test_session_stats_requires_session(client):
    response = client.get("/api/rpc/logging.getSessionStats")
    assert response.status_code == 401


def test_auth_span_recorded(client, trace_store):
    client.get("/api/rpc/logging.getSessionStats", headers={"X-Trace-ID": "t-auth"})

    spans = trace_store.get_trace("t-auth").spans
    auth = [s for s in spans if s.name == "rpc_auth_validation"][0]
    assert auth.status == SpanStatus.ERROR
    assert auth.metadata["reason"] == "no_session_user"
    assert auth.tags == {"rpc.auth_required": "true"}


def test_logging_procedures_counted_but_not_exported(client, exporter, sink):
    """Test: Stats calls land in session stats, never in the sink."""
    headers = {"X-Session-ID": "s1"}
    client.get("/api/rpc/mail.list", headers=headers)

    first = client.get("/api/rpc/logging.getSessionStats", headers=headers).json()
    second = client.get("/api/rpc/logging.getSessionStats", headers=headers).json()
    assert exporter.flush(timeout=5)

    assert first["total_calls"] == 1
    assert second["total_calls"] == 2
    assert [e["attributes"]["procedure"] for e in sink.entries] == ["mail.list"]


def test_clear_session_and_state(client):
    headers = {"X-Session-ID": "s1", "X-User-ID": "u1"}
    client.get("/api/rpc/mail.list", headers=headers)

    assert client.post("/api/rpc/logging.clearSession", headers=headers).json() == {"success": True}

    state = client.get("/api/rpc/logging.getSessionState", headers=headers).json()
    assert state["session_id"] == "s1"
    # Only the clearSession call itself was recorded after the reset
    assert state["total_calls"] == 1


def test_lifespan_starts_and_stops_store(app, trace_store):
    with TestClient(app) as client:
        client.get("/static/ping", headers={"X-Trace-ID": "t-life"})
        assert trace_store.get_trace("t-life") is not None

    assert len(trace_store) == 0
