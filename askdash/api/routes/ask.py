"""
Ask Routes

FastAPI endpoints for conversational questions and session lifecycle.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from askdash.api.errors import error_response
from askdash.models.api import AskRequest, ErrorResponse, SessionDeletedResponse
from askdash.models.result import ResponseEnvelope

logger = logging.getLogger(__name__)

router = APIRouter()


def _orchestrator():
    from askdash.api.main import app_state

    orchestrator = app_state.get("orchestrator")
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized.",
        )
    return orchestrator


@router.post(
    "/ask",
    response_model=ResponseEnvelope,
    responses={
        403: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def ask(ask_request: AskRequest) -> ResponseEnvelope | JSONResponse:
    """
    Answer one natural-language question within a session.

    Returns the response envelope on success; on failure, the failing
    stage and reason with a non-2xx status.
    """
    logger.info(
        f"Ask request received: {ask_request.question[:100]}",
        extra={"session_id": ask_request.session_id, "user_id": ask_request.user_context.user_id},
    )
    orchestrator = _orchestrator()

    outcome = await orchestrator.handle(
        ask_request.question,
        session_id=ask_request.session_id,
        permissions=ask_request.user_context.permissions,
    )

    if outcome.envelope is not None:
        return outcome.envelope
    return error_response(outcome.error)


@router.delete("/sessions/{session_id}", response_model=SessionDeletedResponse)
async def end_session(session_id: str) -> SessionDeletedResponse:
    """Discard a session's conversation context."""
    deleted = _orchestrator().end_session(session_id)
    return SessionDeletedResponse(session_id=session_id, deleted=deleted)
