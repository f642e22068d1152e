"""Coding stage.

The first turn generates the whole project by streaming fenced files through
the assembler. Once the session has files, later turns are modification
requests handled by the multi-step coordinator with the project-file tools.
Every turn that changes files saves a new version through the artifact sink.
"""

import logging
from typing import AsyncIterator, List, Optional

from pagegen.config import PipelineConfig
from pagegen.engine import CoordinatorResult, MultiStepToolCoordinator, StepRecord, STATUS_LLM_UNAVAILABLE
from pagegen.llm.client import LLMClient
from pagegen.stages import prompts
from pagegen.stages.base import BaseStageAgent, PipelineUpdate, TurnOutcome
from pagegen.system.artifacts import ArtifactSink
from pagegen.system.session_store import SessionState
from pagegen.system.state import CodeArtifact, Stage, StageState
from pagegen.tools.file_tools import ProjectWorkspace, build_project_tools
from pagegen.tools.sandbox import Sandbox
from pagegen.utils.errors import ArtifactStorageError, LLMUnavailableError
from pagegen.utils.events import EventBus

logger = logging.getLogger(__name__)


class CodingAgent(BaseStageAgent):
    stage = Stage.CODING

    def __init__(
        self,
        llm: LLMClient,
        config: PipelineConfig,
        *,
        sink: Optional[ArtifactSink] = None,
        sandbox: Optional[Sandbox] = None,
        event_bus: Optional[EventBus] = None,
    ):
        super().__init__(llm, config, event_bus=event_bus)
        self.sink = sink
        self.sandbox = sandbox

    async def run_turn(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        if session.files:
            async for update in self._modify(session, state, user_input, outcome):
                yield update
        else:
            async for update in self._generate(session, state, user_input, outcome):
                yield update

        if outcome.files or outcome.metadata.get("changed_files"):
            await self._save(session, outcome, user_input)
        outcome.collected_data["files"] = sorted(session.files)

    async def _generate(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        design = session.summaries.get(Stage.DESIGN.value, {})
        collection = session.summaries.get(Stage.COLLECTION.value, {})
        system_prompt = prompts.coding_prompt(
            design.get("collected_data") or design,
            {k: v for k, v in collection.items() if k != "collected_data"},
        )
        prompt = user_input.strip() or "Generate the project."
        try:
            async for update in self.stream_turn(
                state, prompt, system_prompt, session.history.to_messages(), outcome
            ):
                yield update
        finally:
            # Files completed before a failure are kept
            session.merge_files(outcome.files)

        logger.info(f"[CODING] Generated {len(outcome.files)} file(s) for {session.session_id}")
        if not outcome.files:
            logger.warning("[CODING] Generation produced no files")

    async def _modify(
        self,
        session: SessionState,
        state: StageState,
        user_input: str,
        outcome: TurnOutcome,
    ) -> AsyncIterator[PipelineUpdate]:
        workspace = ProjectWorkspace(dict(session.files), sandbox=self.sandbox)
        registry = build_project_tools(workspace)
        coordinator = MultiStepToolCoordinator(
            self.llm, registry, settings=self.coordinator_settings(), event_bus=self.event_bus
        )
        system_prompt = prompts.modification_prompt(sorted(workspace.files))
        result: Optional[CoordinatorResult] = None
        try:
            async for item in coordinator.iterate(
                user_input, system_prompt, history=session.history.to_messages()
            ):
                if isinstance(item, StepRecord):
                    yield self.step_update(state, item, registry)
                else:
                    result = item
        finally:
            # Tool results are already applied to the workspace; keep them
            session.files = workspace.files
            outcome.files = self._changed(workspace)

        assert result is not None
        outcome.tool_calls = [c.to_dict() for c in result.tool_calls]
        outcome.metadata["tool_status"] = result.status
        outcome.metadata["changed_files"] = list(workspace.changed)
        if result.status == STATUS_LLM_UNAVAILABLE:
            error = result.error or {}
            raise LLMUnavailableError(error.get("message", "LLM unavailable during modification"))

        outcome.raw_text = result.final_text
        outcome.display_text = result.final_text or self._describe_changes(workspace)
        yield self.update(state, outcome.display_text, "streaming")

    @staticmethod
    def _changed(workspace: ProjectWorkspace) -> List[CodeArtifact]:
        return [workspace.files[p] for p in workspace.changed if p in workspace.files]

    @staticmethod
    def _describe_changes(workspace: ProjectWorkspace) -> str:
        if not workspace.changed:
            return "No files were changed."
        listed = "\n".join(f"• {p}" for p in workspace.changed)
        return f"Updated {len(workspace.changed)} file(s):\n{listed}"

    async def _save(self, session: SessionState, outcome: TurnOutcome, message: str) -> None:
        if self.sink is None:
            return
        try:
            saved = await self.sink.save(session.session_id, session.file_list(), message=message[:200])
        except ArtifactStorageError as e:
            logger.error(f"[CODING] Could not save artifacts for {session.session_id}: {e}")
            outcome.metadata["storage_error"] = e.to_dict()
            return
        session.project_id = saved.project_id
        session.last_commit_id = saved.commit_id
        outcome.metadata["project_id"] = saved.project_id
        outcome.metadata["commit_id"] = saved.commit_id
