"""LLM client interface and the result type produced at the adapter boundary.

Adapters turn whatever shape their provider returns into either a
:class:`TextResult` or a :class:`ToolCallsResult`. Nothing downstream looks
at raw provider responses.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from pagegen.system.state import ToolInvocationRequest


@dataclass
class CallOptions:
    """Per-call knobs. ``timeout`` is in seconds and applies to the whole call
    (or to each delta when streaming)."""
    timeout: Optional[float] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    history: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class TextResult:
    value: str
    kind: str = "text"


@dataclass(frozen=True)
class ToolCallsResult:
    value: List[ToolInvocationRequest]
    text: str = ""
    # True when the calls came through the provider's tool channel, so the
    # follow-up messages must use tool_call ids.
    native: bool = True
    kind: str = "tool_calls"


LLMResult = Union[TextResult, ToolCallsResult]


def build_messages(
    prompt: str,
    system_prompt: Optional[str] = None,
    history: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend(history or [])
    if prompt:
        messages.append({"role": "user", "content": prompt})
    return messages


class LLMClient(ABC):
    """What the pipeline needs from an LLM provider."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
    ) -> str:
        """One complete text response."""

    @abstractmethod
    def stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
    ) -> AsyncIterator[str]:
        """Finite, non-restartable sequence of text deltas."""

    @abstractmethod
    async def complete_with_tools(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        options: Optional[CallOptions] = None,
    ) -> LLMResult:
        """One response in tool-calling mode, normalised to :data:`LLMResult`."""
