"""Information-collection stage.

Conversational turns stream through the assembler; the hidden control block
at the end of each reply carries what the model extracted and whether it
thinks collection is done. When the user shares links and link tools are
available, the turn runs in tool-calling mode instead.
"""

import logging
import re
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from pagegen.config import PipelineConfig
from pagegen.engine import CoordinatorResult, MultiStepToolCoordinator, StepRecord, STATUS_LLM_UNAVAILABLE
from pagegen.llm.client import LLMClient
from pagegen.stages import prompts
from pagegen.stages.base import BaseStageAgent, PipelineUpdate, TurnOutcome
from pagegen.stages.completeness import CompletenessScorer, collection_progress
from pagegen.system.session_store import SessionState
from pagegen.system.state import Stage, StageState, ToolExecutionResult
from pagegen.tools.registry import ToolRegistry
from pagegen.utils.control import read_control_block
from pagegen.utils.errors import LLMUnavailableError
from pagegen.utils.events import EventBus
from pagegen.utils.extractor import extract

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[Stage, SessionState], Optional[ToolRegistry]]

_URL = re.compile(r"https?://[^\s<>()\[\]\"'`]+", re.IGNORECASE)

# Link tools and the collected_data key their results are stored under
TOOL_RESULT_KEYS = {
    "analyze_github": "github",
    "scrape_webpage": "websites",
    "parse_document": "documents",
    "extract_linkedin": "linkedin",
}


def find_links(text: str) -> List[str]:
    links = []
    for match in _URL.finditer(text or ""):
        url = match.group(0).rstrip(".,;:!?")
        if url not in links:
            links.append(url)
    return links


def classify_link(url: str) -> str:
    """collected_data key a bare link belongs under."""
    lowered = url.lower()
    if "github.com" in lowered:
        return "github"
    if "linkedin.com" in lowered:
        return "linkedin"
    if re.search(r"\.(pdf|docx?|pptx?)(\?|$)", lowered):
        return "documents"
    return "websites"


def links_to_data(links: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
    data: Dict[str, List[Dict[str, Any]]] = {}
    for url in links:
        data.setdefault(classify_link(url), []).append({"url": url})
    return data


def tool_results_to_data(results: Iterable[ToolExecutionResult]) -> Dict[str, List[Any]]:
    """Successful link-tool outputs, grouped under their collected_data keys."""
    data: Dict[str, List[Any]] = {}
    for result in results:
        key = TOOL_RESULT_KEYS.get(result.tool_name)
        if key is None or not result.success:
            continue
        data.setdefault(key, []).append(result.output)
    return data


class CollectionAgent(BaseStageAgent):
    stage = Stage.COLLECTION

    def __init__(
        self,
        llm: LLMClient,
        config: PipelineConfig,
        *,
        registry_factory: Optional[RegistryFactory] = None,
        event_bus: Optional[EventBus] = None,
    ):
        super().__init__(llm, config, event_bus=event_bus)
        self.registry_factory = registry_factory

    def progress(self, state: StageState, done: bool = False) -> int:
        scorer = CompletenessScorer(self.config.stage(self.stage.value).categories)
        return collection_progress(scorer.present(state.collected_data), complete=done)

    async def run_turn(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        links = find_links(user_input)
        registry = self.registry_factory(self.stage, session) if self.registry_factory else None

        if links and registry is not None and len(registry):
            logger.info(f"[COLLECT] {len(links)} link(s) in input, using tools")
            async for update in self._tool_turn(session, state, user_input, registry, outcome):
                yield update
        else:
            system_prompt = prompts.collection_prompt(state.commitment, state.collected_data)
            async for update in self.stream_turn(
                state, user_input, system_prompt, session.history.to_messages(), outcome
            ):
                yield update
            self._apply_control(outcome)

        if links:
            bare = links_to_data(links)
            for key, entries in bare.items():
                outcome.collected_data.setdefault(key, entries)
            outcome.metadata["links"] = links

    def _apply_control(self, outcome: TurnOutcome) -> None:
        control = read_control_block(outcome.raw_text)
        if control is None:
            logger.debug("[COLLECT] No control block in reply")
            return
        outcome.collected_data.update(control.collected_data)
        if control.user_type:
            outcome.collected_data.setdefault("user_type", control.user_type)
        outcome.ready = control.ready
        outcome.metadata.update({
            "collection_status": control.status.value,
            "confidence_level": control.confidence_level,
            "next_focus": control.next_focus,
        })
        if control.collection_summary:
            outcome.metadata["collection_summary"] = control.collection_summary

    async def _tool_turn(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        registry: ToolRegistry,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        coordinator = MultiStepToolCoordinator(
            self.llm, registry, settings=self.coordinator_settings(), event_bus=self.event_bus
        )
        system_prompt = prompts.collection_tools_prompt(state.collected_data)
        result: Optional[CoordinatorResult] = None
        async for item in coordinator.iterate(
            user_input, system_prompt, history=session.history.to_messages()
        ):
            if isinstance(item, StepRecord):
                yield self.step_update(state, item, registry)
            else:
                result = item

        assert result is not None
        outcome.tool_calls = [c.to_dict() for c in result.tool_calls]
        outcome.collected_data.update(tool_results_to_data(result.tool_results))
        outcome.metadata["tool_status"] = result.status

        if result.status == STATUS_LLM_UNAVAILABLE:
            error = result.error or {}
            raise LLMUnavailableError(
                error.get("message", "LLM unavailable during tool run"),
                details={"tool_calls": outcome.tool_calls},
            )

        # The reply may still carry a control block
        outcome.raw_text = result.final_text
        outcome.display_text = extract(result.final_text).prose
        self._apply_control(outcome)
        yield self.update(state, outcome.display_text, "streaming")
