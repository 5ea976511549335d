"""
Error Taxonomy

Exceptions raised by pipeline stages. Every stage error carries the stage
name and a reason drawn from a closed enum so failures can be surfaced to
callers without echoing raw database or language-model text.
"""

from enum import Enum
from typing import Any


class InterpretationReason(str, Enum):
    """Why a question could not be turned into an intent."""

    AMBIGUOUS = "Ambiguous"
    UNKNOWN_ENTITY = "UnknownEntity"
    UNSUPPORTED_METRIC = "UnsupportedMetric"
    MODEL_UNAVAILABLE = "ModelUnavailable"
    MALFORMED_RESPONSE = "MalformedResponse"


class SynthesisReason(str, Enum):
    """Why an intent could not be rendered into SQL."""

    MISSING_JOIN_PATH = "MissingJoinPath"
    UNRESOLVED_METRIC = "UnresolvedMetric"
    UNRESOLVED_COLUMN = "UnresolvedColumn"


class GuardRejectionReason(str, Enum):
    """Why the query guard refused a statement."""

    WRITE_OPERATION = "WriteOperation"
    UNBOUNDED_SCAN = "UnboundedScan"
    UNAUTHORIZED_TABLE = "UnauthorizedTable"
    SYNTAX_ERROR = "SyntaxError"
    RESOURCE_LIMIT_EXCEEDED = "ResourceLimitExceeded"


class ExecutionReason(str, Enum):
    """Why a guarded statement failed to execute."""

    CONNECTION_UNAVAILABLE = "ConnectionUnavailable"
    TIMEOUT = "Timeout"
    DATABASE_ERROR = "DatabaseError"


class AgentError(Exception):
    """
    Custom exception for agent execution errors.

    Attributes:
        agent: Name of the agent that raised the error
        message: Error description
        recoverable: Whether the pipeline can retry or continue
        context: Additional context for debugging
    """

    def __init__(
        self,
        agent: str,
        message: str,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        self.agent = agent
        self.message = message
        self.recoverable = recoverable
        self.context = context or {}
        super().__init__(f"[{agent}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/API responses."""
        return {
            "agent": self.agent,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
            "type": self.__class__.__name__,
        }


class StageError(AgentError):
    """
    Error raised by one stage of a turn.

    Subclasses fix the stage name and the reason enum. The message must be
    safe to show to the caller; raw driver or model output belongs in the
    logs only.
    """

    stage: str = "unknown"
    default_agent: str = "Pipeline"

    def __init__(
        self,
        reason: Enum,
        message: str,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        self.reason = reason
        super().__init__(
            agent=self.default_agent,
            message=message,
            recoverable=recoverable,
            context=context,
        )

    @property
    def user_message(self) -> str:
        """Human-readable reason suitable for the error envelope."""
        return self.message

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["stage"] = self.stage
        payload["reason"] = self.reason.value
        return payload


class InterpretationError(StageError):
    """The question could not be grounded in the schema catalog."""

    stage = "interpreting"
    default_agent = "QueryInterpreterAgent"

    def __init__(
        self,
        reason: InterpretationReason,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        # Only ambiguity is worth a second prompt.
        super().__init__(
            reason,
            message,
            recoverable=reason == InterpretationReason.AMBIGUOUS,
            context=context,
        )


class SynthesisError(StageError):
    """The intent could not be rendered into a single read-only statement."""

    stage = "synthesizing"
    default_agent = "SQLSynthesizerAgent"

    def __init__(
        self,
        reason: SynthesisReason,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(reason, message, recoverable=False, context=context)


class GuardRejection(StageError):
    """The query guard refused the statement."""

    stage = "guarding"
    default_agent = "QueryGuard"

    def __init__(
        self,
        reason: GuardRejectionReason,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(reason, message, recoverable=False, context=context)


class ExecutionError(StageError):
    """The guarded statement could not be executed."""

    stage = "executing"
    default_agent = "ExecutorAgent"

    def __init__(
        self,
        reason: ExecutionReason,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(reason, message, recoverable=False, context=context)
