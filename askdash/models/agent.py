"""
Agent I/O Models

Pydantic models for agent inputs, outputs and execution metadata.
Stages backed by an agent (interpreter, synthesizer, executor) extend the
base models with typed fields so the orchestrator passes structured data,
never loose dictionaries.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from askdash.models.catalog import SchemaCatalog
from askdash.models.errors import (
    AgentError,
    ExecutionError,
    GuardRejection,
    InterpretationError,
    StageError,
    SynthesisError,
)
from askdash.models.query import Intent, SqlStatement, Turn
from askdash.models.result import ResultSet

__all__ = [
    "AgentError",
    "AgentInput",
    "AgentMetadata",
    "AgentOutput",
    "ExecutionError",
    "ExecutorAgentInput",
    "ExecutorAgentOutput",
    "GuardRejection",
    "InterpretationError",
    "InterpreterAgentInput",
    "InterpreterAgentOutput",
    "StageError",
    "SynthesisError",
    "SynthesizerAgentInput",
    "SynthesizerAgentOutput",
]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AgentMetadata(BaseModel):
    """Metadata about agent execution."""

    agent_name: str
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    duration_ms: float | None = None
    llm_calls: int = 0
    tokens_used: int | None = None
    error: str | None = None

    model_config = ConfigDict(frozen=False)

    def mark_complete(self) -> None:
        """Mark execution as complete and calculate duration."""
        self.completed_at = _utcnow()
        if self.started_at:
            delta = self.completed_at - self.started_at
            self.duration_ms = delta.total_seconds() * 1000


class AgentInput(BaseModel):
    """
    Base input model for all agents.

    Each agent extends this with its specific input fields.
    """

    query: str = Field(..., description="User's natural language question")
    context: dict[str, str] = Field(
        default_factory=dict, description="Diagnostic context (session id, attempt)"
    )


class AgentOutput(BaseModel):
    """
    Base output model for all agents.

    The metadata field tracks execution details for observability.
    """

    success: bool = Field(..., description="Whether the agent executed successfully")
    metadata: AgentMetadata = Field(..., description="Execution metadata")


# ============================================================================
# QueryInterpreterAgent Models
# ============================================================================


class InterpreterAgentInput(AgentInput):
    """Input for the query interpreter."""

    catalog: SchemaCatalog = Field(..., description="Catalog snapshot for this turn")
    history: list[Turn] = Field(
        default_factory=list, description="Bounded conversation context, oldest first"
    )
    retry_hint: str | None = Field(
        None, description="Failure reason from the previous attempt, when re-prompting"
    )


class InterpreterAgentOutput(AgentOutput):
    """Validated intent."""

    intent: Intent


# ============================================================================
# SQLSynthesizerAgent Models
# ============================================================================


class SynthesizerAgentInput(AgentInput):
    """Input for the SQL synthesizer."""

    intent: Intent
    catalog: SchemaCatalog


class SynthesizerAgentOutput(AgentOutput):
    """Rendered statement."""

    statement: SqlStatement


# ============================================================================
# ExecutorAgent Models
# ============================================================================


class ExecutorAgentInput(AgentInput):
    """Input for the execution router."""

    statement: SqlStatement
    timeout_seconds: float | None = Field(
        None, gt=0, description="Statement timeout (defaults to configured value)"
    )


class ExecutorAgentOutput(AgentOutput):
    """Executed result."""

    result: ResultSet
