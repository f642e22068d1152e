"""Stream handling for LLM responses.

This module provides:
- StreamTokenAssembler: accumulates streamed deltas and emits only newly
  revealed prose, holding code/file regions back for the extractor
- AssemblerConfig: knobs for the assembler

Prose is emitted a line at a time. A line is only released once its
newline has arrived, because until then it could still turn out to be a
fence marker or a filename label. ``finish()`` releases the last line.
With that rule the concatenation of every ``new_plain_text`` equals the
prose a one-shot :func:`pagegen.utils.extractor.extract` call computes over
the full text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import logging

from pagegen.constants import DEFAULT_STREAM_MAX_CHUNKS
from pagegen.system.state import CodeArtifact
from pagegen.utils.extractor import CodeFileExtractor, summarize_files
from pagegen.utils.json_scan import is_complete_json

logger = logging.getLogger(__name__)


class StreamState(Enum):
    """States for the assembler."""
    INACTIVE = "inactive"
    ACTIVE = "active"
    COMPLETE = "complete"


@dataclass
class AssemblerConfig:
    # Hard stop for runaway streams
    max_chunks: int = DEFAULT_STREAM_MAX_CHUNKS


@dataclass
class ChunkResult:
    """What one ``process_chunk``/``finish`` call revealed."""
    new_plain_text: str
    is_complete: bool
    files: List[CodeArtifact] = field(default_factory=list)

    def to_dict(self):
        return {
            "new_plain_text": self.new_plain_text,
            "is_complete": self.is_complete,
            "files": [f.to_dict() for f in self.files],
        }


class StreamTokenAssembler:
    """Incrementally separates prose from code while the model is still emitting.

    Usage:
        assembler = StreamTokenAssembler()
        async for delta in llm.stream(prompt):
            result = assembler.process_chunk(delta)
            if result.new_plain_text:
                await emit(result.new_plain_text)
        tail = assembler.finish()

    The assembler holds no resources; abandoning it mid-stream is safe.
    """

    def __init__(
        self,
        extractor: Optional[CodeFileExtractor] = None,
        *,
        config: Optional[AssemblerConfig] = None,
    ):
        self.extractor = extractor or CodeFileExtractor()
        self.config = config or AssemblerConfig()
        self.reset()

    def reset(self) -> None:
        self._state = StreamState.INACTIVE
        self._raw = ""
        self._emitted_lines = 0
        self._emitted_length = 0
        self._chunk_count = 0
        self._degraded = False
        self._finished = False
        self._limit_reached = False
        self.degraded_chunks = 0
        self._files: List[CodeArtifact] = []

    # --- Properties ---

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_complete(self) -> bool:
        return self._state == StreamState.COMPLETE

    @property
    def limit_reached(self) -> bool:
        """True once more than ``max_chunks`` chunks arrived."""
        return self._limit_reached

    @property
    def emitted_length(self) -> int:
        """Characters of prose emitted so far. Never decreases."""
        return self._emitted_length

    @property
    def files(self) -> List[CodeArtifact]:
        return list(self._files)

    @property
    def prose(self) -> str:
        """Prose over everything received so far, including the held-back line."""
        return self.extractor.extract(self._raw).prose

    def get_current_text(self) -> str:
        return self._raw

    # --- Core Methods ---

    def process_chunk(self, delta: str) -> ChunkResult:
        """Append ``delta`` and return the prose it revealed."""
        delta = delta or ""
        if self._finished:
            logger.debug("Chunk received after finish(), ignoring")
            return ChunkResult("", True, self.files)

        if self._state == StreamState.INACTIVE:
            self._state = StreamState.ACTIVE
        self._raw += delta
        self._chunk_count += 1

        if self._degraded:
            return self._passthrough(delta)

        try:
            complete_lines = self._raw.split("\n")[:-1]
            new_text = self._take_new_prose(complete_lines)
            self._files = self.extractor.files_from_lines(self._raw.split("\n"))[0]
        except Exception as e:
            logger.warning(f"Prose separation failed, passing raw delta through: {e}")
            self._degraded = True
            return self._passthrough(delta)

        if self._terminal_marker_seen():
            self._state = StreamState.COMPLETE
        elif self._chunk_count >= self.config.max_chunks:
            logger.warning(
                f"Stream exceeded {self.config.max_chunks} chunks, marking complete"
            )
            self._limit_reached = True
            self._state = StreamState.COMPLETE

        return ChunkResult(new_text, self.is_complete, self.files)

    def finish(self) -> ChunkResult:
        """End-of-stream signal: release the held-back line and mark completion."""
        if self._finished:
            return ChunkResult("", True, self.files)
        self._finished = True
        if self._degraded:
            self._state = StreamState.COMPLETE
            return ChunkResult("", True, self.files)

        try:
            lines = self._raw.split("\n")
            new_text = self._take_new_prose(lines)
            self._files = self.extractor.files_from_lines(lines)[0]
            if self._emitted_lines == 0 and self._files:
                new_text = summarize_files(self._files)
                self._emitted_length += len(new_text)
        except Exception as e:
            logger.warning(f"Prose separation failed at end of stream: {e}")
            self._degraded = True
            new_text = ""

        self._state = StreamState.COMPLETE
        return ChunkResult(new_text, True, self.files)

    # --- Internals ---

    def _take_new_prose(self, lines: List[str]) -> str:
        prose_lines = self.extractor.prose_lines(lines)
        fresh = prose_lines[self._emitted_lines:]
        if not fresh:
            return ""
        text = "\n".join(fresh)
        if self._emitted_lines > 0:
            text = "\n" + text
        self._emitted_lines = len(prose_lines)
        self._emitted_length += len(text)
        return text

    def _passthrough(self, delta: str) -> ChunkResult:
        self.degraded_chunks += 1
        self._emitted_length += len(delta)
        return ChunkResult(delta, self.is_complete, self.files)

    def _terminal_marker_seen(self) -> bool:
        stripped = self._raw.strip()
        return stripped.startswith("{") and is_complete_json(stripped)
