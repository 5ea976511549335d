"""
Session Context

Per-session conversation state. Each session owns a bounded window of prior
successful turns, used as interpretation context for follow-up questions,
and a lock that serializes its turns. Sessions never share state.
"""

import asyncio
import logging
import time
from collections import OrderedDict, deque
from collections.abc import Iterator
from dataclasses import dataclass, field

from askdash.config import get_settings
from askdash.models.query import Turn

logger = logging.getLogger(__name__)


class ConversationContext:
    """
    Bounded, ordered window of prior turns (oldest first).

    Appending beyond the window evicts the oldest turn.
    """

    def __init__(self, window: int):
        if window < 0:
            raise ValueError("Context window must be non-negative")
        self._turns: deque[Turn] = deque(maxlen=window)

    @property
    def window(self) -> int:
        return self._turns.maxlen or 0

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def clear(self) -> None:
        self._turns.clear()

    def snapshot(self) -> list[Turn]:
        """Copy of the current window, safe to hand to a stage."""
        return list(self._turns)

    @property
    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    def __iter__(self) -> Iterator[Turn]:
        return iter(list(self._turns))

    def __len__(self) -> int:
        return len(self._turns)


@dataclass
class Session:
    """One conversation: its context window and the lock its turns queue on."""

    session_id: str
    context: ConversationContext
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    turns_completed: int = 0
    last_active: float = field(default_factory=time.monotonic)

    @property
    def busy(self) -> bool:
        return self.lock.locked()


class SessionManager:
    """
    Registry of live sessions.

    Sessions idle for longer than ``idle_timeout`` seconds are dropped, and
    at most ``max_sessions`` are kept (least recently used first out). A
    session with a turn in flight is never evicted.

    Usage:
        sessions = SessionManager(context_window=5)
        session = sessions.get_or_create("sess_123")
        async with session.lock:
            ...
        sessions.end_session("sess_123")
    """

    def __init__(
        self,
        context_window: int | None = None,
        max_sessions: int | None = None,
        idle_timeout: float | None = None,
    ):
        if context_window is None or max_sessions is None or idle_timeout is None:
            settings = get_settings().pipeline
            if context_window is None:
                context_window = settings.context_window
            if max_sessions is None:
                max_sessions = settings.max_sessions
            if idle_timeout is None:
                idle_timeout = float(settings.session_idle_timeout)
        self.context_window = context_window
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self._sessions: OrderedDict[str, Session] = OrderedDict()

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(
                session_id=session_id, context=ConversationContext(self.context_window)
            )
            self._sessions[session_id] = session
            logger.info(f"Started session {session_id}")
        else:
            self._sessions.move_to_end(session_id)
        session.last_active = time.monotonic()
        self._enforce_capacity(keep=session_id)
        return session

    def evict_idle(self) -> int:
        """Drop sessions idle past the timeout. Returns how many were dropped."""
        cutoff = time.monotonic() - self.idle_timeout
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.last_active < cutoff and not session.busy
        ]
        for session_id in expired:
            self._evict(session_id, "idle")
        return len(expired)

    def _enforce_capacity(self, keep: str) -> None:
        excess = len(self._sessions) - self.max_sessions
        if excess <= 0:
            return
        # OrderedDict keeps the least recently used sessions first
        candidates = [
            session_id
            for session_id, session in self._sessions.items()
            if session_id != keep and not session.busy
        ]
        for session_id in candidates[:excess]:
            self._evict(session_id, "capacity")

    def _evict(self, session_id: str, cause: str) -> None:
        session = self._sessions.pop(session_id)
        session.context.clear()
        logger.info(
            f"Evicted session {session_id} ({cause})",
            extra={"turns_completed": session.turns_completed},
        )

    def end_session(self, session_id: str) -> bool:
        """Discard a session and its context. Returns whether it existed."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.context.clear()
        logger.info(
            f"Ended session {session_id}", extra={"turns_completed": session.turns_completed}
        )
        return True

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
