"""
API Request/Response Models

Pydantic models for FastAPI endpoints.
"""

from pydantic import BaseModel, Field


class UserContext(BaseModel):
    """Caller identity and permissions supplied by the authentication layer."""

    user_id: str = Field(..., min_length=1, description="Caller identifier")
    permissions: set[str] = Field(
        default_factory=set,
        description=(
            "Granted permissions, e.g. 'read:ads.*' for table access or "
            "'advertiser:42' for row-level scope"
        ),
    )


class AskRequest(BaseModel):
    """Request model for the ask endpoint."""

    question: str = Field(..., min_length=1, description="User's natural language question")
    session_id: str = Field(..., min_length=1, description="Conversation session identifier")
    user_context: UserContext = Field(..., description="Caller identity and permissions")

    model_config = {
        "json_schema_extra": {
            "example": {
                "question": "Tell me the ROAS for advertiser named Toyota",
                "session_id": "sess_123",
                "user_context": {
                    "user_id": "analyst-7",
                    "permissions": ["read:ads.*", "advertiser:*"],
                },
            }
        }
    }


class ErrorResponse(BaseModel):
    """Structured failure returned with a non-2xx status."""

    error: str = Field(..., description="Human-readable failure reason")
    stage: str = Field(..., description="Pipeline stage that failed")
    reason: str = Field(..., description="Failure reason from the error taxonomy")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "Statement contains a data-modification keyword: DROP",
                "stage": "guarding",
                "reason": "WriteOperation",
            }
        }
    }


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""

    status: str = Field(..., description="Service status: 'healthy' or 'unhealthy'")
    version: str = Field(..., description="API version")
    timestamp: str = Field(..., description="Current timestamp (ISO 8601)")
    checks: dict[str, bool] = Field(
        default_factory=dict, description="Individual checks (catalog, llm, databases)"
    )


class CatalogTableSummary(BaseModel):
    """Table entry in the catalog summary."""

    name: str
    columns: list[str]


class CatalogDatabaseSummary(BaseModel):
    """Database entry in the catalog summary."""

    name: str
    tables: list[CatalogTableSummary]
    glossary_terms: list[str] = Field(default_factory=list)


class CatalogSummaryResponse(BaseModel):
    """Response model for the catalog endpoints."""

    version: str | None = Field(None, description="Snapshot identifier")
    databases: list[CatalogDatabaseSummary] = Field(default_factory=list)


class SessionDeletedResponse(BaseModel):
    """Response model for session deletion."""

    session_id: str
    deleted: bool = Field(..., description="Whether a session with this id existed")
