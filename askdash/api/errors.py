"""
HTTP Error Mapping

Translates stage errors into the ``{error, stage, reason}`` document and a
status code.
"""

from fastapi import status
from fastapi.responses import JSONResponse

from askdash.models.api import ErrorResponse
from askdash.models.errors import (
    AgentError,
    ExecutionError,
    ExecutionReason,
    GuardRejection,
    InterpretationError,
    StageError,
    SynthesisError,
)

_EXECUTION_STATUS = {
    ExecutionReason.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ExecutionReason.CONNECTION_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExecutionReason.DATABASE_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def status_for_error(error: AgentError) -> int:
    if isinstance(error, (InterpretationError, SynthesisError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, GuardRejection):
        return status.HTTP_403_FORBIDDEN
    if isinstance(error, ExecutionError):
        return _EXECUTION_STATUS.get(error.reason, status.HTTP_502_BAD_GATEWAY)
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_document(error: AgentError) -> ErrorResponse:
    if isinstance(error, StageError):
        return ErrorResponse(
            error=error.user_message, stage=error.stage, reason=error.reason.value
        )
    return ErrorResponse(
        error="The request could not be completed.", stage="unknown", reason="InternalError"
    )


def error_response(error: AgentError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for_error(error),
        content=error_document(error).model_dump(),
    )
