import os
import sys
from pathlib import Path

# Ensure a writable workspace early to avoid import-time logging failures
_ws = Path(os.environ.get("PAGEGEN_WORKSPACE", str(Path(__file__).resolve().parent.parent / "tmp_workspace")))
os.environ.setdefault("PAGEGEN_WORKSPACE", str(_ws))
_ws.mkdir(parents=True, exist_ok=True)

# Add the project root to the Python path so that tests can perform
# absolute imports like 'from pagegen.engine import ...'
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
import yaml  # noqa: E402

from pagegen.config import PipelineConfig  # noqa: E402
from pagegen.llm.client import CallOptions, LLMClient, LLMResult  # noqa: E402
from pagegen.system.artifacts import InMemoryArtifactSink  # noqa: E402
from pagegen.system.session_store import InMemorySessionRepository  # noqa: E402
from pagegen.utils.events import EventBus  # noqa: E402

PACKAGE_CONFIG = project_root / "pagegen" / "config.yml"


class ScriptedLLM(LLMClient):
    """LLM client that replays scripted responses in order.

    ``streams`` holds one list of deltas per ``stream`` call, ``completions``
    one string per ``complete`` call and ``tool_results`` one result per
    ``complete_with_tools`` call. An exception anywhere in a script is raised
    at that point.
    """

    def __init__(
        self,
        streams: Optional[List[List[Any]]] = None,
        completions: Optional[List[Any]] = None,
        tool_results: Optional[List[Any]] = None,
    ):
        self.streams = list(streams or [])
        self.completions = list(completions or [])
        self.tool_results = list(tool_results or [])
        self.stream_calls: List[Dict[str, Any]] = []
        self.complete_calls: List[Dict[str, Any]] = []
        self.tool_calls: List[Dict[str, Any]] = []

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
    ) -> str:
        self.complete_calls.append({"prompt": prompt, "system_prompt": system_prompt})
        item = self.completions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
    ):
        self.stream_calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "history": list(options.history) if options else [],
        })
        for delta in self.streams.pop(0):
            if isinstance(delta, Exception):
                raise delta
            yield delta

    async def complete_with_tools(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        options: Optional[CallOptions] = None,
    ) -> LLMResult:
        # Snapshot: the coordinator keeps appending to the same list
        self.tool_calls.append({"messages": [dict(m) for m in messages], "tools": list(tools)})
        item = self.tool_results.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def chunked(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pipeline_config(monkeypatch):
    """Package default configuration, unaffected by user or project files."""
    for var in ("PAGEGEN_HISTORY_CAP", "PAGEGEN_LLM_TIMEOUT", "PAGEGEN_TOOL_TIMEOUT", "PAGEGEN_MAX_TOOL_STEPS"):
        monkeypatch.delenv(var, raising=False)
    with open(PACKAGE_CONFIG) as f:
        return PipelineConfig.from_dict(yaml.safe_load(f))


@pytest.fixture
def repository():
    return InMemorySessionRepository(ttl_seconds=3600, max_sessions=100, history_cap=20)


@pytest.fixture
def sink():
    return InMemoryArtifactSink()


@pytest.fixture
def event_bus():
    return EventBus()
