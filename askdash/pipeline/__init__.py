"""
Pipeline package for askdash.

Contains the LangGraph session orchestrator that connects all stages into a
complete turn, and the per-session conversation context.
"""

from askdash.pipeline.orchestrator import SessionOrchestrator, TurnOutcome, TurnState
from askdash.pipeline.session_context import ConversationContext, Session, SessionManager

__all__ = [
    "ConversationContext",
    "Session",
    "SessionManager",
    "SessionOrchestrator",
    "TurnOutcome",
    "TurnState",
]
