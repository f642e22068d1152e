"""
Core state classes for the PageGen pipeline.

This module defines the records that flow between the stream assembler,
the extractor, the tool coordinator and the stage controller: conversation
turns, per-stage state, code artifacts, and tool invocation requests and
results.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Stage(Enum):
    """Pipeline stages in the order a session moves through them."""
    COLLECTION = "collection"
    DESIGN = "design"
    CODING = "coding"

    def next(self) -> Optional["Stage"]:
        order = list(Stage)
        idx = order.index(self)
        return order[idx + 1] if idx + 1 < len(order) else None


class StagePhase(Enum):
    """Turn state machine for one stage."""
    AWAITING_FIRST_INPUT = "awaiting_first_input"
    COLLECTING = "collecting"
    ADVANCE = "advance"
    FORCE_ADVANCE = "force_advance"

    @classmethod
    def get_valid_transitions(cls, current_state: "StagePhase") -> List["StagePhase"]:
        transitions = {
            cls.AWAITING_FIRST_INPUT: [cls.COLLECTING, cls.FORCE_ADVANCE],
            cls.COLLECTING: [cls.COLLECTING, cls.ADVANCE, cls.FORCE_ADVANCE],
            cls.ADVANCE: [],  # Terminal, a new StageState is created for the next stage
            cls.FORCE_ADVANCE: [],
        }
        return transitions.get(current_state, [])

    @property
    def terminal(self) -> bool:
        return self in (StagePhase.ADVANCE, StagePhase.FORCE_ADVANCE)


class TurnDecision(Enum):
    CONTINUE = "continue"
    ADVANCE = "advance"
    FORCE_ADVANCE = "force_advance"


@dataclass
class ConversationTurn:
    role: Role
    content: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_message(self) -> Dict[str, str]:
        """OpenAI-style message dict for the LLM client."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class StageState:
    """Per-session, per-stage turn bookkeeping.

    ``max_turns`` and ``advance_threshold`` are fixed when the state is
    created and never change afterwards.
    """
    session_id: str
    stage: Stage
    max_turns: int
    advance_threshold: float
    commitment: str = "thorough"
    turn_count: int = 0
    collected_data: Dict[str, Any] = field(default_factory=dict)
    welcome_sent: bool = False
    phase: StagePhase = StagePhase.AWAITING_FIRST_INPUT
    completeness: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def transition(self, new_phase: StagePhase) -> None:
        if new_phase not in StagePhase.get_valid_transitions(self.phase):
            logger.warning(
                f"Unexpected stage transition {self.phase.value} -> {new_phase.value} "
                f"for session {self.session_id}"
            )
        self.phase = new_phase

    @property
    def turns_remaining(self) -> int:
        return max(self.max_turns - self.turn_count, 0)


@dataclass(frozen=True)
class CodeArtifact:
    filename: str
    language: str
    content: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ToolInvocationRequest:
    """A tool call requested by the model.

    ``partial`` requests are still being streamed and must never be executed.
    """
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    partial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": dict(self.input), "partial": self.partial}


@dataclass(frozen=True)
class ToolExecutionResult:
    tool_name: str
    success: bool
    output: Any = None
    error: Optional[str] = None
    call_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "call_id": self.call_id,
        }

    def as_context(self) -> str:
        """Text fed back to the model for this result."""
        if self.success:
            return f"[Tool Result: {self.tool_name}] {self.output}"
        return f"[Tool Error: {self.tool_name}] {self.error}"
