"""Per-session conversation history with head pruning."""

import logging
from typing import Any, Dict, Iterator, List, Optional

from pagegen.constants import DEFAULT_HISTORY_CAP
from pagegen.system.state import ConversationTurn, Role

logger = logging.getLogger(__name__)


class ConversationHistory:
    """Ordered, append-only list of turns capped at ``cap`` entries.

    When the cap is exceeded the oldest turns are dropped, which bounds the
    prompt size without touching recent context.
    """

    def __init__(self, cap: int = DEFAULT_HISTORY_CAP, turns: Optional[List[ConversationTurn]] = None):
        if cap < 1:
            raise ValueError("History cap must be at least 1")
        self.cap = cap
        self._turns: List[ConversationTurn] = []
        self.pruned_count = 0
        for turn in turns or []:
            self.append(turn)

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)
        overflow = len(self._turns) - self.cap
        if overflow > 0:
            del self._turns[:overflow]
            self.pruned_count += overflow
            logger.debug(f"Pruned {overflow} turn(s) from history head")

    def add_user(self, content: str) -> ConversationTurn:
        turn = ConversationTurn(Role.USER, content)
        self.append(turn)
        return turn

    def add_assistant(self, content: str) -> ConversationTurn:
        turn = ConversationTurn(Role.ASSISTANT, content)
        self.append(turn)
        return turn

    def to_messages(self) -> List[Dict[str, Any]]:
        return [turn.to_message() for turn in self._turns]

    def last(self, role: Optional[Role] = None) -> Optional[ConversationTurn]:
        for turn in reversed(self._turns):
            if role is None or turn.role == role:
                return turn
        return None

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(list(self._turns))
