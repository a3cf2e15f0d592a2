from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.logging import router as logging_router
from app.api.middleware import TracingMiddleware
from app.core.config import settings
from app.core.logging import configure_logging
from app.dependencies import get_collector, get_span_recorder, get_trace_store
from observability.collector import CallLogCollector
from observability.recorder import SpanRecorder
from observability.trace_store import TraceStore


def create_app(
    trace_store: Optional[TraceStore] = None,
    collector: Optional[CallLogCollector] = None,
) -> FastAPI:
    """
    Build the application around one trace store and one collector.

    Defaults come from app.dependencies; tests pass their own.
    """
    if trace_store is None:
        trace_store = get_trace_store()
    if collector is None:
        collector = get_collector()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        trace_store.start()
        yield
        collector.shutdown()
        trace_store.destroy()

    app = FastAPI(
        title=settings.service_name,
        lifespan=lifespan
    )

    app.dependency_overrides[get_trace_store] = lambda: trace_store
    app.dependency_overrides[get_collector] = lambda: collector
    app.dependency_overrides[get_span_recorder] = lambda: SpanRecorder(trace_store)

    app.add_middleware(
        TracingMiddleware,
        trace_store=trace_store,
        collector=collector,
        rpc_prefix=settings.rpc_prefix,
    )

    # CORS middleware - allow frontend to call API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Trace-ID", "X-Request-ID"],
    )

    app.include_router(logging_router, prefix=settings.rpc_prefix)

    @app.get("/health")
    async def health():
        return {"status": "ok", "traces": trace_store.get_stats()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port)
