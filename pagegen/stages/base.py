"""Shared pieces of the stage agents.

A stage agent runs one user turn for its stage. It yields incremental
:class:`PipelineUpdate` items while it works and fills in a
:class:`TurnOutcome` that the pipeline hands to the turn controller once
the turn is over.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from pagegen.config import PipelineConfig
from pagegen.engine import CoordinatorSettings, StepRecord
from pagegen.llm.client import CallOptions, LLMClient
from pagegen.llm.stream_handler import AssemblerConfig, StreamTokenAssembler
from pagegen.system.session_store import SessionState
from pagegen.system.state import CodeArtifact, Stage, StageState
from pagegen.tools.registry import ToolRegistry
from pagegen.utils.events import EventBus

logger = logging.getLogger(__name__)


@dataclass
class PipelineUpdate:
    """One item yielded by the stage pipeline.

    While a turn streams, ``display_text`` holds only the newly revealed
    text; the last update of a turn holds the whole reply.
    """
    display_text: str
    progress: int = 0
    done: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_text": self.display_text,
            "progress": self.progress,
            "done": self.done,
            "metadata": dict(self.metadata),
        }


@dataclass
class TurnOutcome:
    display_text: str = ""
    raw_text: str = ""
    collected_data: Dict[str, Any] = field(default_factory=dict)
    # The model's own judgement that the stage has what it needs
    ready: bool = False
    files: List[CodeArtifact] = field(default_factory=list)
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseStageAgent(ABC):
    """Runs turns for one stage."""

    stage: Stage

    def __init__(
        self,
        llm: LLMClient,
        config: PipelineConfig,
        *,
        event_bus: Optional[EventBus] = None,
    ):
        self.llm = llm
        self.config = config
        self.event_bus = event_bus

    @abstractmethod
    def run_turn(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        """Yield progress for one turn and fill ``outcome``.

        Raises ``LLMUnavailableError`` when the model cannot be reached; the
        pipeline turns that into a terminal update.
        """
        raise NotImplementedError

    def progress(self, state: StageState, done: bool = False) -> int:
        if done:
            return 100
        return min(int(state.completeness * 100), 99)

    def coordinator_settings(self) -> CoordinatorSettings:
        model = self.config.model
        return CoordinatorSettings(
            max_steps=self.config.max_tool_steps,
            llm_timeout=self.config.llm_timeout,
            tool_timeout=self.config.tool_timeout,
            describe_tools_in_prompt=bool(model is not None and not model.supports_tools),
        )

    def update(self, state: StageState, text: str, intent: str, **metadata: Any) -> PipelineUpdate:
        meta = {"stage": self.stage.value, "intent": intent}
        meta.update(metadata)
        return PipelineUpdate(display_text=text, progress=self.progress(state), metadata=meta)

    def step_update(self, state: StageState, step: StepRecord, registry: ToolRegistry) -> PipelineUpdate:
        names = [registry.display_name(n) for n in step.tool_names] or ["Thinking"]
        failed = [r.tool_name for r in step.tool_results if not r.success]
        text = f"Step {step.index}: {', '.join(names)}"
        if failed:
            text += f" (failed: {', '.join(failed)})"
        return self.update(
            state,
            text,
            "tool_progress",
            step=step.index,
            tool_calls=[c.to_dict() for c in step.tool_calls],
            tool_results=[r.to_dict() for r in step.tool_results],
        )

    async def stream_turn(
        self,
        state: StageState,
        prompt: str,
        system_prompt: str,
        history: List[Dict[str, Any]],
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        """Stream one reply through the assembler, yielding prose as it appears.

        ``outcome`` receives the raw text, the prose and the files, including
        when the stream fails part way through.
        """
        assembler = StreamTokenAssembler(config=AssemblerConfig(max_chunks=self.config.stream.max_chunks))
        options = CallOptions(timeout=self.config.llm_timeout, history=history)
        known_files = 0
        try:
            async for delta in self.llm.stream(prompt, system_prompt, options):
                result = assembler.process_chunk(delta)
                if result.new_plain_text:
                    outcome.display_text += result.new_plain_text
                    yield self.update(state, result.new_plain_text, "streaming")
                if len(result.files) > known_files:
                    known_files = len(result.files)
                    logger.debug(f"[STREAM] {known_files} file(s) complete so far")
                    yield self.update(
                        state, "", "files_progress", files=[f.filename for f in result.files]
                    )
                if assembler.limit_reached:
                    break
            tail = assembler.finish()
            if tail.new_plain_text:
                outcome.display_text += tail.new_plain_text
                yield self.update(state, tail.new_plain_text, "streaming")
        finally:
            outcome.raw_text = assembler.get_current_text()
            outcome.files = assembler.files
            if assembler.degraded_chunks:
                outcome.metadata["degraded_chunks"] = assembler.degraded_chunks
