"""Stage Turn Controller.

Per stage and session the controller runs the turn state machine::

    AWAITING_FIRST_INPUT -> COLLECTING -> (ADVANCE | FORCE_ADVANCE)

Turn ceilings and advance thresholds come from the session's declared
commitment level (or a stage override in configuration). They are computed
once per stage, cached on the session and never recomputed mid-stage.
"""

import copy
import logging
from typing import Any, Dict, Optional

from pagegen.config import PipelineConfig
from pagegen.stages.completeness import CompletenessScorer, has_value
from pagegen.system.session_store import SessionState, StageLimits
from pagegen.system.state import Stage, StagePhase, StageState, TurnDecision
from pagegen.utils.errors import StageLogicError

logger = logging.getLogger(__name__)

# Used to fill summary fields when a stage is forced forward without them
FORCED_DEFAULTS: Dict[str, Dict[str, Any]] = {
    Stage.COLLECTION.value: {
        "core_identity": "Professional",
        "key_skills": ["Professional skills", "Communication", "Teamwork"],
        "achievements": ["Completed a range of meaningful projects"],
        "values": ["Quality", "Continuous learning"],
        "goals": ["Present my work and experience online"],
    },
    Stage.DESIGN.value: {
        "layout": "single-page",
        "theme": "modern",
        "sections": ["hero", "about", "projects", "contact"],
    },
    Stage.CODING.value: {},
}


def merge_collected(target: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``incoming`` into ``target`` in place.

    Nested dicts merge recursively, lists are extended without duplicates,
    and empty incoming values never overwrite existing ones.
    """
    for key, value in incoming.items():
        if not has_value(value):
            continue
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merge_collected(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            current.extend(v for v in value if v not in current)
        else:
            target[key] = copy.deepcopy(value)
    return target


class StageTurnController:
    def __init__(self, config: PipelineConfig):
        self.config = config
        self._scorers: Dict[str, CompletenessScorer] = {}

    def scorer(self, stage: Stage) -> CompletenessScorer:
        if stage.value not in self._scorers:
            self._scorers[stage.value] = CompletenessScorer(self.config.stage(stage.value).categories)
        return self._scorers[stage.value]

    def resolve_commitment(self, text: Optional[str]) -> str:
        return self.config.resolve_commitment(text)

    def limits_for(self, session: SessionState, stage: Stage) -> StageLimits:
        """Turn ceiling and threshold for ``stage``, cached on the session."""
        cached = session.stage_limits.get(stage.value)
        if cached is not None:
            return cached

        commitment = self.config.commitment(session.commitment)
        stage_settings = self.config.stage(stage.value)
        limits = StageLimits(
            max_turns=stage_settings.max_turns or commitment.max_turns,
            advance_threshold=(
                stage_settings.advance_threshold
                if stage_settings.advance_threshold is not None
                else commitment.advance_threshold
            ),
        )
        session.stage_limits[stage.value] = limits
        logger.debug(
            f"Limits for {session.session_id}/{stage.value} ({commitment.name}): "
            f"max_turns={limits.max_turns} threshold={limits.advance_threshold}"
        )
        return limits

    def create_state(self, session: SessionState, stage: Stage) -> StageState:
        limits = self.limits_for(session, stage)
        state = StageState(
            session_id=session.session_id,
            stage=stage,
            max_turns=limits.max_turns,
            advance_threshold=limits.advance_threshold,
            commitment=self.config.commitment(session.commitment).name,
        )
        logger.info(f"Session {session.session_id} entered stage {stage.value}")
        return state

    def welcome(self, state: StageState) -> Optional[str]:
        """One-time orientation message for a stage that has seen no input yet.

        Not counted as a turn and does not leave AWAITING_FIRST_INPUT.
        """
        if state.welcome_sent or state.phase is not StagePhase.AWAITING_FIRST_INPUT:
            return None
        message = self.config.stage(state.stage.value).welcome_message
        if not message:
            return None
        state.welcome_sent = True
        return message.strip()

    def begin_turn(self, state: StageState) -> TurnDecision:
        """Call before processing a user input."""
        if state.turn_count >= state.max_turns:
            logger.warning(
                f"Turn ceiling reached for {state.session_id}/{state.stage.value} "
                f"({state.turn_count}/{state.max_turns}), forcing advance"
            )
            state.transition(StagePhase.FORCE_ADVANCE)
            return TurnDecision.FORCE_ADVANCE

        state.turn_count += 1
        state.transition(StagePhase.COLLECTING)
        return TurnDecision.CONTINUE

    def record(self, state: StageState, data: Optional[Dict[str, Any]]) -> None:
        if not data:
            return
        try:
            if not isinstance(data, dict):
                raise StageLogicError(f"Collected data must be a mapping, got {type(data).__name__}")
            merge_collected(state.collected_data, data)
        except Exception as e:
            logger.error(f"Failed to merge collected data for {state.session_id}: {e}")

    def score(self, state: StageState) -> float:
        state.completeness = self.scorer(state.stage).score(state.collected_data)
        return state.completeness

    def evaluate(self, state: StageState, *, ready: bool = False) -> TurnDecision:
        """Decide after a turn. ``ready`` is the model's own judgement that it has enough."""
        score = self.score(state)
        if ready or score >= state.advance_threshold:
            logger.info(
                f"Stage {state.stage.value} complete for {state.session_id} "
                f"(score={score:.2f}, ready={ready})"
            )
            state.transition(StagePhase.ADVANCE)
            return TurnDecision.ADVANCE
        if state.turn_count >= state.max_turns:
            logger.warning(
                f"Stage {state.stage.value} for {state.session_id} forced forward "
                f"at score {score:.2f}"
            )
            state.transition(StagePhase.FORCE_ADVANCE)
            return TurnDecision.FORCE_ADVANCE
        state.transition(StagePhase.COLLECTING)
        return TurnDecision.CONTINUE

    def summarize(self, state: StageState, forced: bool = False) -> Dict[str, Any]:
        """Structured handover for the next stage. Never empty."""
        data = state.collected_data
        defaults = FORCED_DEFAULTS.get(state.stage.value, {})
        summary: Dict[str, Any] = {
            "stage": state.stage.value,
            "forced": forced,
            "completeness": round(state.completeness, 3),
            "turn_count": state.turn_count,
            "commitment": state.commitment,
        }
        try:
            for category in self.scorer(state.stage).categories:
                keys = category.keys or [category.name]
                field_name = keys[0]
                value = next((data[k] for k in keys if has_value(data.get(k))), None)
                if value is None and forced:
                    value = defaults.get(field_name)
                if value is not None:
                    summary[field_name] = copy.deepcopy(value)
        except Exception as e:
            logger.error(f"Failed to build summary for {state.session_id}: {e}")

        if forced:
            summary["confidence_level"] = "MEDIUM"
            for key, value in defaults.items():
                summary.setdefault(key, copy.deepcopy(value))
        else:
            summary["confidence_level"] = data.get("confidence_level") or (
                "HIGH" if state.completeness >= 0.8 else "MEDIUM"
            )
        summary["collected_data"] = copy.deepcopy(data)
        return summary
