"""Stage pipeline – the surface callers drive.

``StagePipeline.process`` takes one user input for one session and yields
:class:`PipelineUpdate` items that are safe to render as they arrive. The
last item of a turn that finishes a stage has ``done=True`` and carries the
structured summary handed to the next stage.

Session state lives in the injected :class:`SessionRepository`; the
pipeline itself keeps no per-session state between calls.
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

from pagegen.config import PipelineConfig, load_pipeline_config
from pagegen.llm.client import LLMClient
from pagegen.stages.base import BaseStageAgent, PipelineUpdate, TurnOutcome
from pagegen.stages.coding import CodingAgent
from pagegen.stages.collection import CollectionAgent, RegistryFactory
from pagegen.stages.controller import StageTurnController
from pagegen.stages.design import DesignAgent
from pagegen.system.artifacts import ArtifactSink, InMemoryArtifactSink
from pagegen.system.session_store import InMemorySessionRepository, SessionRepository, SessionState
from pagegen.system.state import Stage, StageState, TurnDecision
from pagegen.tools.sandbox import Sandbox
from pagegen.utils.errors import LLMUnavailableError, error_handler
from pagegen.utils.events import EventBus, StageEvent

logger = logging.getLogger(__name__)

APOLOGY = (
    "Sorry, I couldn't reach the language model just now. "
    "Nothing you've shared so far is lost; please try again in a moment."
)

FORCED_MESSAGES = {
    Stage.COLLECTION: "Thanks! I have enough to start designing your page.",
    Stage.DESIGN: "The design is settled. Let's build the page.",
    Stage.CODING: "Your project is ready.",
}


class StagePipeline:
    def __init__(
        self,
        llm: LLMClient,
        *,
        config: Optional[PipelineConfig] = None,
        repository: Optional[SessionRepository] = None,
        sink: Optional[ArtifactSink] = None,
        registry_factory: Optional[RegistryFactory] = None,
        sandbox: Optional[Sandbox] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.llm = llm
        self.config = config if config is not None else load_pipeline_config()
        # Repositories define __len__, so an empty one is falsy
        if repository is None:
            repository = InMemorySessionRepository(
                ttl_seconds=self.config.session_ttl_seconds,
                max_sessions=self.config.max_sessions,
                history_cap=self.config.history_cap,
            )
        self.repository = repository
        self.sink = sink if sink is not None else InMemoryArtifactSink()
        self.event_bus = event_bus
        self.controller = StageTurnController(self.config)
        self.agents: Dict[Stage, BaseStageAgent] = {
            Stage.COLLECTION: CollectionAgent(
                llm, self.config, registry_factory=registry_factory, event_bus=event_bus
            ),
            Stage.DESIGN: DesignAgent(llm, self.config, event_bus=event_bus),
            Stage.CODING: CodingAgent(
                llm, self.config, sink=self.sink, sandbox=sandbox, event_bus=event_bus
            ),
        }

    async def process(
        self,
        user_input: str,
        session_id: str,
        *,
        commitment: Optional[str] = None,
        start: bool = False,
    ) -> AsyncIterator[PipelineUpdate]:
        """Run one input for ``session_id``.

        Blank input shows the stage welcome once and is otherwise a no-op that
        does not count as a turn. ``start=True`` runs a blank turn anyway, so
        a stage without a welcome can begin on its own.
        """
        session = await self.repository.get_or_create(session_id)
        try:
            if session.commitment is None:
                session.commitment = self.controller.resolve_commitment(commitment or user_input)
                logger.info(f"Session {session_id} commitment: {session.commitment}")

            state = await self._current_state(session)
            agent = self.agents[state.stage]

            blank = not (user_input or "").strip()
            if blank:
                message = self.controller.welcome(state)
                if message is not None:
                    yield PipelineUpdate(
                        message,
                        agent.progress(state),
                        metadata={"stage": state.stage.value, "intent": "welcome"},
                    )
                    return
                if not start:
                    logger.debug(f"Blank input for {session_id} ignored in {state.stage.value}")
                    yield PipelineUpdate(
                        "",
                        agent.progress(state),
                        metadata={
                            "stage": state.stage.value,
                            "intent": "idle",
                            "turn_count": state.turn_count,
                        },
                    )
                    return

            decision = self.controller.begin_turn(state)
            if decision is TurnDecision.FORCE_ADVANCE:
                if not blank:
                    session.history.add_user(user_input)
                yield await self._advance(session, state, agent, forced=True)
                return

            outcome = TurnOutcome()
            try:
                async for update in agent.run_turn(session, state, user_input, outcome):
                    yield update
            except LLMUnavailableError as e:
                yield await self._fail(session, state, agent, outcome, e)
                return

            if not blank:
                session.history.add_user(user_input)
            session.history.add_assistant(outcome.display_text)
            self.controller.record(state, outcome.collected_data)
            decision = self.controller.evaluate(state, ready=outcome.ready)
            await self._publish(StageEvent.TURN_COMPLETED, {
                "session_id": session_id,
                "stage": state.stage.value,
                "turn_count": state.turn_count,
                "completeness": state.completeness,
            })

            if decision is TurnDecision.CONTINUE:
                yield PipelineUpdate(
                    outcome.display_text,
                    agent.progress(state),
                    metadata=self._metadata(state, outcome, "awaiting_input"),
                )
                return

            yield await self._advance(
                session, state, agent,
                forced=decision is TurnDecision.FORCE_ADVANCE,
                outcome=outcome,
            )
        finally:
            await self.repository.save(session)

    async def _current_state(self, session: SessionState) -> StageState:
        if session.stage_state is None:
            session.stage_state = self.controller.create_state(session, session.stage)
            await self._publish(StageEvent.ENTERED, {
                "session_id": session.session_id,
                "stage": session.stage.value,
                "max_turns": session.stage_state.max_turns,
            })
        return session.stage_state

    @staticmethod
    def _metadata(state: StageState, outcome: TurnOutcome, intent: str) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "stage": state.stage.value,
            "intent": intent,
            "turn_count": state.turn_count,
            "max_turns": state.max_turns,
            "turns_remaining": state.turns_remaining,
            "completeness": round(state.completeness, 3),
        }
        metadata.update(outcome.metadata)
        if outcome.files:
            metadata["files"] = [f.to_dict() for f in outcome.files]
        if outcome.tool_calls:
            metadata["tool_calls"] = outcome.tool_calls
        return metadata

    async def _advance(
        self,
        session: SessionState,
        state: StageState,
        agent: BaseStageAgent,
        *,
        forced: bool,
        outcome: Optional[TurnOutcome] = None,
    ) -> PipelineUpdate:
        outcome = outcome or TurnOutcome()
        summary = self.controller.summarize(state, forced=forced)
        if "collection_summary" in outcome.metadata:
            summary["model_summary"] = outcome.metadata["collection_summary"]
        session.summaries[state.stage.value] = summary

        next_stage = state.stage.next()
        if next_stage is not None:
            session.stage = next_stage
            session.stage_state = self.controller.create_state(session, next_stage)
        else:
            # Project ready; the next input starts a fresh coding turn cycle
            session.stage_state = None

        event = StageEvent.FORCED if forced else StageEvent.ADVANCED
        await self._publish(event, {
            "session_id": session.session_id,
            "stage": state.stage.value,
            "next_stage": next_stage.value if next_stage else None,
            "summary": summary,
        })

        text = outcome.display_text or FORCED_MESSAGES[state.stage]
        metadata = self._metadata(state, outcome, "force_advance" if forced else "advance")
        metadata.update({
            "force_advance": forced,
            "next_stage": next_stage.value if next_stage else None,
            "summary": summary,
        })
        if state.stage is Stage.COLLECTION:
            metadata["collection_summary"] = summary
        return PipelineUpdate(text, agent.progress(state, done=True), done=True, metadata=metadata)

    async def _fail(
        self,
        session: SessionState,
        state: StageState,
        agent: BaseStageAgent,
        outcome: TurnOutcome,
        error: LLMUnavailableError,
    ) -> PipelineUpdate:
        error_handler.log_error(
            error,
            {"session_id": session.session_id, "stage": state.stage.value},
            fatal=True,
        )
        # The input was never answered, so it does not use up a turn
        state.turn_count = max(state.turn_count - 1, 0)
        self.controller.record(state, outcome.collected_data)
        await self._publish(StageEvent.FAILED, {
            "session_id": session.session_id,
            "stage": state.stage.value,
            "error": error.to_dict(),
        })

        text = outcome.display_text
        text = f"{text}\n\n{APOLOGY}" if text else APOLOGY
        metadata = self._metadata(state, outcome, "error")
        metadata.update({"retryable": True, "error": error.to_dict()})
        files = outcome.files or session.file_list()
        if files:
            metadata["files"] = [f.to_dict() for f in files]
        return PipelineUpdate(text, agent.progress(state), done=True, metadata=metadata)

    async def _publish(self, event: StageEvent, data: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event, data)
