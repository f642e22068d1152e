"""PageGen - staged AI page generation.

A user converses through three staged agents (information collection,
design strategy, code generation). Model output is streamed through an
incremental assembler that separates prose from generated files, and
tool-calling turns run through a bounded multi-step coordinator.

Example Usage:
    ```python
    from pagegen import StagePipeline
    from pagegen.llm.litellm_gateway import LiteLLMGateway
    from pagegen.llm.model_config import ModelConfig

    llm = LiteLLMGateway(ModelConfig(model="gpt-4o-mini"))
    pipeline = StagePipeline(llm)

    async for update in pipeline.process("I'm a backend engineer", "session-1"):
        print(update.display_text, end="")
    ```
"""

from ._version import __version__
from .engine import CoordinatorResult, CoordinatorSettings, MultiStepToolCoordinator, StepRecord
from .llm.stream_handler import ChunkResult, StreamTokenAssembler
from .stages.controller import StageTurnController
from .stages.pipeline import PipelineUpdate, StagePipeline
from .system.state import (
    CodeArtifact,
    ConversationTurn,
    Stage,
    StagePhase,
    StageState,
    ToolExecutionResult,
    ToolInvocationRequest,
    TurnDecision,
)
from .utils.extractor import CodeFileExtractor, ExtractionResult, extract
from .utils.parser import DetectionResult, ToolCallDetector, parse_tool_calls

__all__ = [
    "__version__",
    "StreamTokenAssembler",
    "ChunkResult",
    "CodeFileExtractor",
    "ExtractionResult",
    "extract",
    "ToolCallDetector",
    "DetectionResult",
    "parse_tool_calls",
    "StageTurnController",
    "MultiStepToolCoordinator",
    "CoordinatorSettings",
    "CoordinatorResult",
    "StepRecord",
    "StagePipeline",
    "PipelineUpdate",
    "CodeArtifact",
    "ConversationTurn",
    "Stage",
    "StagePhase",
    "StageState",
    "ToolExecutionResult",
    "ToolInvocationRequest",
    "TurnDecision",
]
