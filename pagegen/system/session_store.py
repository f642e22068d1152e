"""
Keyed session storage.

Session state lives behind :class:`SessionRepository` so the pipeline never
keeps process-wide mutable maps. The in-memory implementation creates a
session on first access and evicts by idle time and by count (least
recently used first). Sessions never share mutable objects.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pagegen.constants import DEFAULT_HISTORY_CAP, DEFAULT_MAX_SESSIONS, DEFAULT_SESSION_TTL_SECONDS
from pagegen.system.conversation import ConversationHistory
from pagegen.system.state import CodeArtifact, Stage, StageState

logger = logging.getLogger(__name__)


@dataclass
class StageLimits:
    """Turn ceiling and threshold fixed for one stage of one session."""
    max_turns: int
    advance_threshold: float


@dataclass
class SessionState:
    session_id: str
    user_id: Optional[str] = None
    commitment: Optional[str] = None
    stage: Stage = Stage.COLLECTION
    stage_state: Optional[StageState] = None
    history: ConversationHistory = field(default_factory=ConversationHistory)
    # Latest version of every generated file, keyed by filename
    files: Dict[str, CodeArtifact] = field(default_factory=dict)
    # Structured summary handed over by each finished stage
    summaries: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # Cached per stage, computed once from the declared commitment
    stage_limits: Dict[str, StageLimits] = field(default_factory=dict)
    project_id: Optional[str] = None
    last_commit_id: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)
    last_accessed: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_accessed = time.monotonic()

    def merge_files(self, artifacts: List[CodeArtifact]) -> None:
        for artifact in artifacts:
            self.files[artifact.filename] = artifact

    def file_list(self) -> List[CodeArtifact]:
        return list(self.files.values())


class SessionRepository(ABC):
    """Keyed store for :class:`SessionState`.

    Implementations must create a session on first access and never return
    one session's state for another key.
    """

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionState]:
        ...

    @abstractmethod
    async def get_or_create(self, session_id: str, **kwargs: Any) -> SessionState:
        ...

    @abstractmethod
    async def save(self, state: SessionState) -> None:
        ...

    @abstractmethod
    async def evict(self, session_id: str) -> bool:
        ...


class InMemorySessionRepository(SessionRepository):
    """Process-local repository with TTL and LRU eviction."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        history_cap: int = DEFAULT_HISTORY_CAP,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self.history_cap = history_cap
        self._sessions: "OrderedDict[str, SessionState]" = OrderedDict()

    def _expired(self, state: SessionState, now: float) -> bool:
        return self.ttl_seconds > 0 and now - state.last_accessed > self.ttl_seconds

    def _sweep(self) -> None:
        now = time.monotonic()
        for session_id in [sid for sid, s in self._sessions.items() if self._expired(s, now)]:
            del self._sessions[session_id]
            logger.info(f"Evicted idle session {session_id}")
        while len(self._sessions) > self.max_sessions:
            session_id, _ = self._sessions.popitem(last=False)
            logger.info(f"Evicted least recently used session {session_id}")

    async def get(self, session_id: str) -> Optional[SessionState]:
        self._sweep()
        state = self._sessions.get(session_id)
        if state is not None:
            state.touch()
            self._sessions.move_to_end(session_id)
        return state

    async def get_or_create(self, session_id: str, **kwargs: Any) -> SessionState:
        state = await self.get(session_id)
        if state is None:
            kwargs.setdefault("history", ConversationHistory(cap=self.history_cap))
            state = SessionState(session_id=session_id, **kwargs)
            self._sessions[session_id] = state
            logger.debug(f"Created session {session_id}")
            self._sweep()
        return state

    async def save(self, state: SessionState) -> None:
        state.touch()
        self._sessions[state.session_id] = state
        self._sessions.move_to_end(state.session_id)
        self._sweep()

    async def evict(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
