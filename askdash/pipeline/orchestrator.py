"""
askdash Session Orchestrator

LangGraph-based pipeline that runs one conversational turn:
- interpret → synthesize → guard → execute → visualize → respond
- Any stage error routes to ``failed``; nothing executes without an
  Accepted guard decision
- One automatic re-interpretation when the interpreter reports an
  ambiguous question, with the failure reason passed back to the model
- Turns of the same session are serialized; different sessions run
  concurrently
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from askdash.agents.guard import QueryGuard
from askdash.agents.interpreter import QueryInterpreterAgent
from askdash.agents.synthesizer import SQLSynthesizerAgent
from askdash.catalog.store import CatalogStore
from askdash.config import get_settings
from askdash.database.router import ExecutorAgent
from askdash.models.catalog import SchemaCatalog
from askdash.models.errors import (
    AgentError,
    ExecutionError,
    ExecutionReason,
    GuardRejection,
    InterpretationError,
    InterpretationReason,
    StageError,
    SynthesisError,
    SynthesisReason,
)
from askdash.models.query import Intent, Rejected, SqlStatement, Turn
from askdash.models.result import ResponseEnvelope, ResultSet, VisualizationSpec
from askdash.pipeline.session_context import SessionManager
from askdash.visualization.selector import VisualizationSelector

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    """States of one turn; ``failed`` is reachable from every non-terminal state."""

    RECEIVED = "received"
    INTERPRETING = "interpreting"
    SYNTHESIZING = "synthesizing"
    GUARDING = "guarding"
    EXECUTING = "executing"
    VISUALIZING = "visualizing"
    RESPONDED = "responded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TurnState.RESPONDED, TurnState.FAILED})


def stage_failure(stage: TurnState, error: Exception) -> StageError:
    """
    Express any failure inside a stage in that stage's error taxonomy.

    Stage errors are returned unchanged. Anything else is logged with its
    type and replaced by a generic message, so the caller always gets a
    stage name and a reason.
    """
    if isinstance(error, StageError):
        return error

    logger.error(
        f"Unexpected failure while {stage.value}: {type(error).__name__}",
        extra={"stage": stage.value, "error_type": type(error).__name__},
    )
    context = {"error_type": type(error).__name__}
    if stage is TurnState.INTERPRETING:
        return InterpretationError(
            InterpretationReason.MALFORMED_RESPONSE,
            "The question could not be interpreted.",
            context=context,
        )
    if stage is TurnState.SYNTHESIZING:
        return SynthesisError(
            SynthesisReason.UNRESOLVED_COLUMN,
            "The question could not be turned into a query.",
            context=context,
        )
    return ExecutionError(
        ExecutionReason.DATABASE_ERROR,
        "The query could not be executed.",
        context=context,
    )


# ============================================================================
# Pipeline State Schema
# ============================================================================


class PipelineState(TypedDict, total=False):
    """
    State carried through the graph for one turn.

    The catalog is snapshotted once when the turn starts.
    """

    # Input
    question: str
    session_id: str
    permissions: list[str]
    catalog: SchemaCatalog
    history: list[Turn]
    started_at: float

    # Interpretation
    attempts: int
    retry_hint: str | None
    intent: Intent | None

    # Synthesis and guard
    statement: SqlStatement | None
    guarded_statement: SqlStatement | None
    applied_row_filters: list[str]

    # Execution and presentation
    result: ResultSet | None
    visualization: VisualizationSpec | None
    envelope: ResponseEnvelope | None

    # Pipeline metadata
    state: TurnState
    stage_history: list[TurnState]
    error: AgentError | None
    stage_timings: dict[str, float]


@dataclass
class TurnOutcome:
    """Result of one turn: an envelope on success, a stage error otherwise."""

    state: TurnState
    envelope: ResponseEnvelope | None = None
    error: AgentError | None = None
    stage_history: list[TurnState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is TurnState.RESPONDED

    @property
    def failed_stage(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "stage", TurnState.FAILED.value)


# ============================================================================
# Session Orchestrator
# ============================================================================


class SessionOrchestrator:
    """
    Runs turns through the stage graph and owns per-session context.

    Usage:
        orchestrator = SessionOrchestrator(CatalogStore.from_file("catalog.yaml"))
        outcome = await orchestrator.handle(
            "Tell me the ROAS for advertiser named Toyota",
            session_id="sess_123",
            permissions={"read:ads.*", "advertiser:*"},
        )
        if outcome.succeeded:
            print(outcome.envelope.sql_generated)
    """

    def __init__(
        self,
        catalog_store: CatalogStore,
        interpreter: QueryInterpreterAgent | None = None,
        synthesizer: SQLSynthesizerAgent | None = None,
        guard: QueryGuard | None = None,
        executor: ExecutorAgent | None = None,
        selector: VisualizationSelector | None = None,
        sessions: SessionManager | None = None,
        ambiguous_retry: bool | None = None,
    ):
        if ambiguous_retry is None:
            ambiguous_retry = get_settings().pipeline.ambiguous_retry_enabled

        self.catalog_store = catalog_store
        self.interpreter = interpreter or QueryInterpreterAgent()
        self.synthesizer = synthesizer or SQLSynthesizerAgent()
        self.guard = guard or QueryGuard()
        self.executor = executor or ExecutorAgent()
        self.selector = selector or VisualizationSelector()
        self.sessions = sessions or SessionManager()
        self.max_interpretations = 2 if ambiguous_retry else 1

        self.graph = self._build_graph()

        logger.info("SessionOrchestrator initialized")

    def _build_graph(self):
        """
        Build the LangGraph state machine.

        Returns:
            Compiled LangGraph
        """
        workflow = StateGraph(PipelineState)

        workflow.add_node("interpret", self._run_interpret)
        workflow.add_node("synthesize", self._run_synthesize)
        workflow.add_node("guard", self._run_guard)
        workflow.add_node("execute", self._run_execute)
        workflow.add_node("visualize", self._run_visualize)
        workflow.add_node("respond", self._run_respond)
        workflow.add_node("failed", self._handle_failure)

        workflow.set_entry_point("interpret")

        workflow.add_conditional_edges(
            "interpret",
            self._after_interpret,
            {
                "retry": "interpret",
                "continue": "synthesize",
                "failed": "failed",
            },
        )
        workflow.add_conditional_edges(
            "synthesize",
            self._continue_or_fail,
            {"continue": "guard", "failed": "failed"},
        )
        workflow.add_conditional_edges(
            "guard",
            self._continue_or_fail,
            {"continue": "execute", "failed": "failed"},
        )
        workflow.add_conditional_edges(
            "execute",
            self._continue_or_fail,
            {"continue": "visualize", "failed": "failed"},
        )
        workflow.add_edge("visualize", "respond")
        workflow.add_edge("respond", END)
        workflow.add_edge("failed", END)

        return workflow.compile()

    # ========================================================================
    # Stage Nodes
    # ========================================================================

    def _enter(self, state: PipelineState, stage: TurnState) -> None:
        state["state"] = stage
        state["stage_history"] = [*state.get("stage_history", []), stage]

    def _record_timing(self, state: PipelineState, stage: str, start: float) -> None:
        timings = dict(state.get("stage_timings") or {})
        timings[stage] = timings.get(stage, 0.0) + (time.perf_counter() - start) * 1000
        state["stage_timings"] = timings

    async def _run_interpret(self, state: PipelineState) -> PipelineState:
        """Run the query interpreter."""
        self._enter(state, TurnState.INTERPRETING)
        state["attempts"] = state.get("attempts", 0) + 1
        state["error"] = None
        start = time.perf_counter()

        try:
            state["intent"] = await self.interpreter.interpret(
                state["question"],
                state.get("history", []),
                state["catalog"],
                retry_hint=state.get("retry_hint"),
                session_id=state["session_id"],
            )
        except Exception as e:
            state["error"] = stage_failure(TurnState.INTERPRETING, e)
            if isinstance(e, InterpretationError) and e.reason == InterpretationReason.AMBIGUOUS:
                state["retry_hint"] = e.message

        self._record_timing(state, "interpret", start)
        return state

    async def _run_synthesize(self, state: PipelineState) -> PipelineState:
        """Render the intent into SQL."""
        self._enter(state, TurnState.SYNTHESIZING)
        start = time.perf_counter()

        try:
            state["statement"] = await self.synthesizer.synthesize(
                state["intent"], state["catalog"], session_id=state["session_id"]
            )
        except Exception as e:
            state["error"] = stage_failure(TurnState.SYNTHESIZING, e)

        self._record_timing(state, "synthesize", start)
        return state

    async def _run_guard(self, state: PipelineState) -> PipelineState:
        """Check the statement; only an Accepted decision moves on."""
        self._enter(state, TurnState.GUARDING)
        start = time.perf_counter()

        decision = self.guard.check(state["statement"], state["permissions"], state["catalog"])
        if isinstance(decision, Rejected):
            state["error"] = GuardRejection(
                decision.reason,
                decision.message,
                context={"database": state["statement"].database},
            )
        else:
            state["guarded_statement"] = decision.statement
            state["applied_row_filters"] = decision.applied_row_filters

        self._record_timing(state, "guard", start)
        return state

    async def _run_execute(self, state: PipelineState) -> PipelineState:
        """Execute the guarded statement."""
        self._enter(state, TurnState.EXECUTING)
        start = time.perf_counter()

        try:
            state["result"] = await self.executor.run(
                state["guarded_statement"], session_id=state["session_id"]
            )
        except Exception as e:
            state["error"] = stage_failure(TurnState.EXECUTING, e)

        self._record_timing(state, "execute", start)
        return state

    async def _run_visualize(self, state: PipelineState) -> PipelineState:
        """Choose a presentation; the selector never fails."""
        self._enter(state, TurnState.VISUALIZING)
        start = time.perf_counter()

        state["visualization"] = self.selector.select(
            state["result"], state["intent"].suggested_visualization
        )

        self._record_timing(state, "visualize", start)
        return state

    async def _run_respond(self, state: PipelineState) -> PipelineState:
        """Assemble the response envelope."""
        elapsed_ms = int((time.perf_counter() - state["started_at"]) * 1000)
        statement = state["guarded_statement"]
        state["envelope"] = ResponseEnvelope(
            explanation=state["intent"].explanation,
            sql_generated=statement.text,
            data=state["result"],
            visualization=state["visualization"],
            elapsed_ms=elapsed_ms,
        )
        self._enter(state, TurnState.RESPONDED)
        return state

    async def _handle_failure(self, state: PipelineState) -> PipelineState:
        """Terminal failure; the failing stage and reason stay on the error."""
        error = state.get("error")
        failed_in = state.get("state", TurnState.RECEIVED)
        self._enter(state, TurnState.FAILED)

        logger.warning(
            f"Turn failed in {failed_in.value}: {getattr(error, 'message', 'unknown error')}",
            extra={
                "session_id": state.get("session_id"),
                "stage": getattr(error, "stage", failed_in.value),
                "reason": getattr(getattr(error, "reason", None), "value", None),
            },
        )
        return state

    # ========================================================================
    # Conditional Edge Logic
    # ========================================================================

    def _after_interpret(self, state: PipelineState) -> str:
        error = state.get("error")
        if error is None:
            return "continue"
        if (
            isinstance(error, InterpretationError)
            and error.reason == InterpretationReason.AMBIGUOUS
            and state.get("attempts", 0) < self.max_interpretations
        ):
            logger.info(
                "Re-prompting interpreter after ambiguous question",
                extra={"session_id": state.get("session_id")},
            )
            return "retry"
        return "failed"

    def _continue_or_fail(self, state: PipelineState) -> str:
        return "failed" if state.get("error") is not None else "continue"

    # ========================================================================
    # Entry Points
    # ========================================================================

    async def handle(
        self,
        question: str,
        session_id: str,
        permissions: set[str] | list[str] | None = None,
    ) -> TurnOutcome:
        """
        Run one turn for a session.

        Turns of the same session queue on the session lock. A successful
        turn is appended to the session's context; a failed one is not.
        """
        session = self.sessions.get_or_create(session_id)

        async with session.lock:
            catalog = self.catalog_store.current
            initial_state: PipelineState = {
                "question": question,
                "session_id": session_id,
                "permissions": sorted(permissions or []),
                "catalog": catalog,
                "history": session.context.snapshot(),
                "started_at": time.perf_counter(),
                "attempts": 0,
                "retry_hint": None,
                "intent": None,
                "statement": None,
                "guarded_statement": None,
                "applied_row_filters": [],
                "result": None,
                "visualization": None,
                "envelope": None,
                "state": TurnState.RECEIVED,
                "stage_history": [TurnState.RECEIVED],
                "error": None,
                "stage_timings": {},
            }

            logger.info(
                f"Starting turn for session {session_id}: {question[:100]}",
                extra={"session_id": session_id, "catalog_version": catalog.version},
            )

            final = await self.graph.ainvoke(initial_state)

            outcome = TurnOutcome(
                state=final["state"],
                envelope=final.get("envelope"),
                error=final.get("error"),
                stage_history=list(final.get("stage_history", [])),
            )

            if outcome.succeeded:
                session.context.append(
                    Turn(
                        question=question,
                        resolved_intent=final["intent"],
                        result_summary=final["result"].summary(),
                    )
                )
                session.turns_completed += 1

        logger.info(
            f"Turn {outcome.state.value} for session {session_id}",
            extra={
                "session_id": session_id,
                "stage_timings": final.get("stage_timings", {}),
                "interpretations": final.get("attempts", 0),
            },
        )
        return outcome

    def end_session(self, session_id: str) -> bool:
        return self.sessions.end_session(session_id)

    async def close(self) -> None:
        """Release connection pools."""
        await self.executor.router.close()


def describe_outcome(outcome: TurnOutcome) -> dict[str, Any]:
    """Error document for a failed turn: ``{error, stage, reason}``."""
    error = outcome.error
    if error is None:
        return {}
    reason = getattr(error, "reason", None)
    return {
        "error": error.message,
        "stage": getattr(error, "stage", "unknown"),
        "reason": reason.value if reason is not None else "InternalError",
    }
