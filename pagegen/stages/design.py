"""Design stage: turn the collection summary into a page design plan."""

import logging
from typing import Any, AsyncIterator, Dict

from pagegen.stages import prompts
from pagegen.stages.base import BaseStageAgent, PipelineUpdate, TurnOutcome
from pagegen.system.session_store import SessionState
from pagegen.system.state import Stage, StageState
from pagegen.utils.fences import tokenize
from pagegen.utils.json_scan import loads_lenient

logger = logging.getLogger(__name__)

PLAN_KEYS = ("layout", "theme", "color_scheme", "sections", "notes")
ONLINE_KEYS = ("github", "websites", "linkedin", "documents")


def read_design_plan(text: str) -> Dict[str, Any]:
    """Merge every closed ``json`` block in ``text`` that looks like a plan."""
    plan: Dict[str, Any] = {}
    for block in tokenize(text):
        if not block.closed or block.tag.lower() not in ("json", "jsonc"):
            continue
        payload = loads_lenient(f"{block.info_rest}\n{block.content}".strip())
        if not isinstance(payload, dict):
            logger.debug("Skipping json block that is not an object")
            continue
        if not any(key in payload for key in PLAN_KEYS):
            continue
        plan.update(payload)
    return plan


class DesignAgent(BaseStageAgent):
    stage = Stage.DESIGN

    async def run_turn(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        summary = session.summaries.get(Stage.COLLECTION.value, {})
        collected = summary.get("collected_data", {})
        tool_data = {k: collected[k] for k in ONLINE_KEYS if collected.get(k)}
        system_prompt = prompts.design_prompt(
            {k: v for k, v in summary.items() if k != "collected_data"}, tool_data
        )
        prompt = user_input.strip() or "Please propose the page design."

        async for update in self.stream_turn(
            state, prompt, system_prompt, session.history.to_messages(), outcome
        ):
            yield update

        plan = read_design_plan(outcome.raw_text)
        if plan:
            logger.info(f"[DESIGN] Plan with keys {sorted(plan)}")
            outcome.collected_data.update(plan)
            outcome.metadata["design_plan"] = plan
        else:
            logger.warning("[DESIGN] Reply contained no design plan")
        # Plan blocks are not project files
        outcome.files = []
