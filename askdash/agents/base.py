"""
Base Agent Framework

Common wrapper for the agent-backed stages of a turn (interpreter,
synthesizer, executor). ``__call__`` times the stage, attaches metadata to
the output and logs the outcome. Stage errors propagate unchanged; any other
exception is logged with its traceback and re-raised as a non-recoverable
AgentError whose message names only the agent.

Usage:
    class MyAgent(BaseAgent):
        def __init__(self):
            super().__init__(name="MyAgent")

        async def execute(self, input: AgentInput) -> AgentOutput:
            return AgentOutput(success=True, metadata=self._create_metadata())
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from askdash.models.agent import (
    AgentError,
    AgentInput,
    AgentMetadata,
    AgentOutput,
)

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """
    Abstract base class for pipeline agents.

    Attributes:
        name: Agent identifier used in logs and metadata
        timeout_seconds: Budget for the agent's external call (model request
            or statement). Subclasses apply it where that call is made so
            the timeout maps onto their own error reason.
    """

    def __init__(self, name: str, timeout_seconds: Optional[float] = None):
        self.name = name
        self.timeout_seconds = timeout_seconds
        self._metadata = self._create_metadata()

        logger.info(
            f"Initialized {self.name}",
            extra={"agent": self.name, "timeout_seconds": timeout_seconds},
        )

    @abstractmethod
    async def execute(self, input: AgentInput) -> AgentOutput:
        """
        Run the agent's core logic.

        Raises:
            StageError: When the stage fails for a reason in its taxonomy
        """
        pass  # pragma: no cover - abstract method

    async def __call__(self, input: AgentInput) -> AgentOutput:
        """Run execute() once with timing, logging and metadata."""
        self._metadata = self._create_metadata()
        start_time = time.perf_counter()

        logger.info(
            f"Starting {self.name}",
            extra={
                "agent": self.name,
                "query": input.query[:100],
                "context_keys": list(input.context.keys()),
            },
        )

        try:
            output = await self.execute(input)
        except AgentError as e:
            self._finish(start_time, error=e.message)
            logger.warning(
                f"Agent error in {self.name}: {e.message}",
                extra={"agent": self.name, "context": e.context},
            )
            raise
        except Exception as e:
            duration_ms = self._finish(start_time, error=type(e).__name__)
            logger.error(
                f"Unexpected error in {self.name}",
                extra={
                    "agent": self.name,
                    "error_type": type(e).__name__,
                    "duration_ms": duration_ms,
                },
                exc_info=True,
            )
            raise AgentError(
                agent=self.name,
                message=f"Internal error in {self.name}",
                recoverable=False,
                context={"error_type": type(e).__name__},
            ) from e

        output.metadata = self._metadata
        duration_ms = self._finish(start_time)
        logger.info(
            f"Completed {self.name}",
            extra={
                "agent": self.name,
                "success": output.success,
                "duration_ms": duration_ms,
                "llm_calls": self._metadata.llm_calls,
            },
        )
        return output

    def _finish(self, start_time: float, error: Optional[str] = None) -> float:
        duration_ms = (time.perf_counter() - start_time) * 1000
        self._metadata.mark_complete()
        self._metadata.duration_ms = duration_ms
        self._metadata.error = error
        return duration_ms

    def _create_metadata(self) -> AgentMetadata:
        """Create fresh metadata object for tracking execution."""
        return AgentMetadata(agent_name=self.name)

    def _track_llm_call(self, tokens: Optional[int] = None) -> None:
        """Count one model request and its token usage."""
        self._metadata.llm_calls += 1
        if tokens:
            self._metadata.tokens_used = (self._metadata.tokens_used or 0) + tokens

        logger.debug(
            f"LLM call tracked for {self.name}",
            extra={
                "agent": self.name,
                "total_llm_calls": self._metadata.llm_calls,
                "tokens_this_call": tokens,
            },
        )
