"""
Logging API Routes

Session statistics reporting. These are RPC procedures themselves, so
the recursion guard keeps them out of the exported logs.

Session identity comes from the upstream auth layer (request.state) or
the X-Session-ID header; anything else is unauthorized.
"""

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from app.dependencies import get_collector, get_span_recorder
from observability.collector import CallLogCollector
from observability.recorder import SpanRecorder
from schemas.session import SessionState, SessionStats


router = APIRouter()


def require_session(
    request: Request,
    recorder: SpanRecorder = Depends(get_span_recorder),
) -> str:
    """
    Resolve the caller's session id, recording an auth validation span.

    Raises:
        HTTPException(401): if no session can be resolved
    """
    session_id = getattr(request.state, "session_id", None) or request.headers.get("x-session-id")
    user_id = getattr(request.state, "user_id", None) or request.headers.get("x-user-id")

    span = recorder.start(
        request,
        "rpc_auth_validation",
        {"has_session_user": bool(session_id), "procedure": "private"},
        {"rpc.auth_required": "true"},
    )

    if not session_id:
        if span is not None:
            recorder.complete(
                request,
                span.id,
                {"success": False, "reason": "no_session_user"},
                "UNAUTHORIZED: No session user found",
            )
        raise HTTPException(status_code=401, detail="Authentication required")

    if span is not None:
        recorder.complete(request, span.id, {"success": True, "user_id": user_id})

    request.state.session_id = session_id
    if user_id:
        request.state.user_id = user_id
    return session_id


@router.get("/logging.getSessionStats", response_model=SessionStats)
def get_session_stats(
    session_id: str = Depends(require_session),
    collector: CallLogCollector = Depends(get_collector),
) -> SessionStats:
    return collector.get_session_stats(session_id)


@router.post("/logging.clearSession")
def clear_session(
    session_id: str = Depends(require_session),
    collector: CallLogCollector = Depends(get_collector),
) -> Dict[str, bool]:
    collector.clear_session(session_id)
    return {"success": True}


@router.get("/logging.getSessionState", response_model=SessionState)
def get_session_state(
    session_id: str = Depends(require_session),
    collector: CallLogCollector = Depends(get_collector),
) -> SessionState:
    return collector.get_state(session_id)
