"""End-to-end tests for StagePipeline with a scripted LLM.

Test strategies:
1. Collection turns: welcome, continue, advance on the model's signal,
   forced advance at the turn ceiling, link tools
2. Design: the json plan becomes the stage data
3. Coding: first turn generates and saves, later turns modify via tools
4. An unreachable LLM ends the turn with a retryable update
"""

import json

import pytest

from pagegen.llm.client import TextResult, ToolCallsResult
from pagegen.stages.pipeline import APOLOGY, StagePipeline
from pagegen.system.state import CodeArtifact, Stage, ToolInvocationRequest
from pagegen.tools.registry import ToolRegistry
from pagegen.utils.errors import LLMUnavailableError
from pagegen.utils.events import StageEvent

from conftest import ScriptedLLM


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def make_pipeline(pipeline_config, repository, sink):
    def factory(llm, **kwargs):
        return StagePipeline(llm, config=pipeline_config, repository=repository, sink=sink, **kwargs)
    return factory


async def run(pipeline, text, session_id="s1", **kwargs):
    return [update async for update in pipeline.process(text, session_id, **kwargs)]


def control(status, data=None, summary=None):
    payload = {"collection_status": status, "collected_data": data or {}}
    if summary is not None:
        payload["collection_summary"] = summary
    return f"```HIDDEN_CONTROL\n{json.dumps(payload)}\n```"


# =============================================================================
# CONSTRUCTION
# =============================================================================

class TestConstruction:
    def test_injected_collaborators_are_kept(self, pipeline_config, repository, sink):
        assert len(repository) == 0
        pipeline = StagePipeline(ScriptedLLM(), config=pipeline_config, repository=repository, sink=sink)
        assert pipeline.repository is repository
        assert pipeline.sink is sink
        assert pipeline.config is pipeline_config

    @pytest.mark.asyncio
    async def test_sessions_land_in_injected_repository(self, pipeline_config, repository):
        pipeline = StagePipeline(ScriptedLLM(), config=pipeline_config, repository=repository)
        await run(pipeline, "")
        assert "s1" in repository
        assert len(repository) == 1


# =============================================================================
# COLLECTION
# =============================================================================

class TestCollection:
    @pytest.mark.asyncio
    async def test_welcome_on_blank_input(self, make_pipeline, repository):
        pipeline = make_pipeline(ScriptedLLM())
        updates = await run(pipeline, "")

        assert len(updates) == 1
        assert updates[0].metadata["intent"] == "welcome"
        assert updates[0].display_text.startswith("Hi!")
        assert not updates[0].done

        session = await repository.get("s1")
        assert session.commitment == "thorough"
        assert session.stage_state.turn_count == 0

    @pytest.mark.asyncio
    async def test_blank_input_after_welcome_is_not_a_turn(self, make_pipeline, repository):
        llm = ScriptedLLM()
        pipeline = make_pipeline(llm)
        await run(pipeline, "", commitment="quick")
        updates = await run(pipeline, "   ")

        assert len(updates) == 1
        assert updates[0].metadata["intent"] == "idle"
        assert not updates[0].done
        assert llm.stream_calls == []

        session = await repository.get("s1")
        assert session.stage_state.turn_count == 0
        assert len(session.history) == 0

    @pytest.mark.asyncio
    async def test_turn_continues_below_threshold(self, make_pipeline, repository):
        llm = ScriptedLLM(streams=[[
            "Nice to meet you! What do you build?\n",
            "```HIDDEN_CONTROL\n",
            '{"collection_status": "CONTINUE", "collected_data": {"core_identity": "Engineer"}}\n',
            "```",
        ]])
        pipeline = make_pipeline(llm)
        updates = await run(pipeline, "I'm an engineer", commitment="thorough")

        assert updates[0].metadata["intent"] == "streaming"
        assert updates[0].display_text == "Nice to meet you! What do you build?"

        final = updates[-1]
        assert final.metadata["intent"] == "awaiting_input"
        assert not final.done
        assert final.display_text == "Nice to meet you! What do you build?"
        assert final.progress == 50
        assert final.metadata["collection_status"] == "CONTINUE"
        assert "HIDDEN_CONTROL" not in "".join(u.display_text for u in updates)

        session = await repository.get("s1")
        assert session.stage_state.turn_count == 1
        assert session.stage_state.collected_data == {"core_identity": "Engineer"}
        assert len(session.history) == 2
        assert "thorough" in llm.stream_calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_ready_signal_advances(self, make_pipeline, repository, event_bus):
        advanced = []

        def on_advanced(data):
            advanced.append(data)

        event_bus.subscribe(StageEvent.ADVANCED, on_advanced)
        llm = ScriptedLLM(streams=[[
            "Great, I have what I need.\n",
            control("READY_TO_ADVANCE", {"core_identity": "Engineer"}, {"headline": "Engineer"}),
        ]])
        pipeline = make_pipeline(llm, event_bus=event_bus)
        updates = await run(pipeline, "That's all", commitment="thorough")

        final = updates[-1]
        assert final.done
        assert final.progress == 100
        assert final.metadata["intent"] == "advance"
        assert final.metadata["next_stage"] == "design"
        assert final.metadata["collection_summary"]["core_identity"] == "Engineer"
        assert final.metadata["collection_summary"]["model_summary"] == {"headline": "Engineer"}

        session = await repository.get("s1")
        assert session.stage is Stage.DESIGN
        assert session.stage_state.stage is Stage.DESIGN
        assert session.summaries["collection"]["core_identity"] == "Engineer"
        assert advanced[0]["next_stage"] == "design"

    @pytest.mark.asyncio
    async def test_quick_session_forced_forward(self, make_pipeline, repository):
        llm = ScriptedLLM(streams=[["Tell me more about you.\n"] for _ in range(3)])
        pipeline = make_pipeline(llm)

        first = await run(pipeline, "hello", commitment="quick")
        second = await run(pipeline, "hmm", commitment="quick")
        third = await run(pipeline, "ok", commitment="quick")

        assert first[-1].metadata["intent"] == "awaiting_input"
        assert second[-1].metadata["intent"] == "awaiting_input"
        final = third[-1]
        assert final.done
        assert final.metadata["intent"] == "force_advance"
        assert final.metadata["force_advance"] is True
        assert final.display_text == "Tell me more about you."

        summary = final.metadata["summary"]
        assert summary["forced"] is True
        assert summary["core_identity"] == "Professional"
        session = await repository.get("s1")
        assert session.stage is Stage.DESIGN

    @pytest.mark.asyncio
    async def test_links_use_tools(self, make_pipeline, repository):
        registry = ToolRegistry()

        @registry.tool("analyze_github", "Summarise a GitHub profile")
        async def analyze_github(url: str):
            return {"repos": 3}

        llm = ScriptedLLM(tool_results=[
            ToolCallsResult([ToolInvocationRequest("c1", "analyze_github", {"url": "https://github.com/ada"})]),
            TextResult(
                "You have 3 public repos!\n"
                + control("CONTINUE", {"core_identity": "Developer"})
            ),
        ])
        pipeline = make_pipeline(llm, registry_factory=lambda stage, session: registry)
        updates = await run(pipeline, "Here is my profile https://github.com/ada.", commitment="thorough")

        intents = [u.metadata["intent"] for u in updates]
        assert intents == ["tool_progress", "streaming", "awaiting_input"]
        assert updates[0].display_text == "Step 1: Analyze github"
        assert updates[-1].display_text == "You have 3 public repos!"
        assert updates[-1].metadata["links"] == ["https://github.com/ada"]

        session = await repository.get("s1")
        assert session.stage_state.collected_data["github"] == [{"repos": 3}]
        assert session.stage_state.collected_data["core_identity"] == "Developer"


# =============================================================================
# FAILURES
# =============================================================================

class TestFailures:
    @pytest.mark.asyncio
    async def test_unreachable_llm_is_retryable(self, make_pipeline, repository):
        llm = ScriptedLLM(streams=[
            ["Partial reply\n", LLMUnavailableError("provider down")],
            ["Welcome back!\n"],
        ])
        pipeline = make_pipeline(llm)
        updates = await run(pipeline, "hello", commitment="thorough")

        final = updates[-1]
        assert final.done
        assert final.metadata["intent"] == "error"
        assert final.metadata["retryable"] is True
        assert final.metadata["error"]["code"] == "LLM_UNAVAILABLE"
        assert final.display_text == f"Partial reply\n\n{APOLOGY}"

        session = await repository.get("s1")
        assert session.stage_state.turn_count == 0
        assert len(session.history) == 0

        retry = await run(pipeline, "hello again")
        assert retry[-1].metadata["intent"] == "awaiting_input"
        assert session.stage_state.turn_count == 1


# =============================================================================
# DESIGN
# =============================================================================

class TestDesign:
    @pytest.mark.asyncio
    async def test_plan_advances_to_coding(self, make_pipeline, repository):
        session = await repository.get_or_create("s1")
        session.commitment = "thorough"
        session.stage = Stage.DESIGN
        session.summaries["collection"] = {
            "core_identity": "Engineer",
            "collected_data": {"core_identity": "Engineer", "github": [{"url": "https://github.com/ada"}]},
        }
        llm = ScriptedLLM(streams=[[
            "A clean grid layout suits your work.\n",
            "```json\n",
            '{"layout": "grid", "theme": "dark", "sections": ["hero", "projects"]}\n',
            "```\n",
        ]])
        pipeline = make_pipeline(llm)
        updates = await run(pipeline, "", start=True)

        final = updates[-1]
        assert final.done
        assert final.metadata["next_stage"] == "coding"
        assert final.metadata["design_plan"]["layout"] == "grid"
        assert final.display_text == "A clean grid layout suits your work."
        assert "files" not in final.metadata
        assert "github.com/ada" in llm.stream_calls[0]["system_prompt"]
        assert session.stage is Stage.CODING
        assert len(session.history) == 1


# =============================================================================
# CODING
# =============================================================================

class TestCoding:
    @pytest.mark.asyncio
    async def test_generation_saves_a_version(self, make_pipeline, repository, sink):
        session = await repository.get_or_create("s1")
        session.commitment = "thorough"
        session.stage = Stage.CODING
        session.summaries["design"] = {"collected_data": {"layout": "grid"}}

        llm = ScriptedLLM(streams=[[
            "Here is your site.\n```tsx:app/page.tsx\n",
            "export default function HomePage() {\n  return <main>Hi</main>\n}\n",
            "```\n",
        ]])
        pipeline = make_pipeline(llm)
        updates = await run(pipeline, "Build it")

        intents = [u.metadata["intent"] for u in updates]
        assert "files_progress" in intents
        final = updates[-1]
        assert final.done
        assert final.metadata["next_stage"] is None
        assert final.metadata["files"][0]["filename"] == "app/page.tsx"
        assert final.metadata["commit_id"] == session.last_commit_id

        assert await sink.history("s1") == [session.last_commit_id]
        assert "app/page.tsx" in session.files
        assert session.stage_state is None
        assert "export default" not in "".join(u.display_text for u in updates)

    @pytest.mark.asyncio
    async def test_modification_uses_file_tools(self, make_pipeline, repository, sink):
        session = await repository.get_or_create("s1")
        session.commitment = "thorough"
        session.stage = Stage.CODING
        session.merge_files([CodeArtifact("app/page.tsx", "tsx", "<h1>Hello</h1>")])

        llm = ScriptedLLM(tool_results=[
            ToolCallsResult([ToolInvocationRequest("c1", "edit_file", {
                "file_path": "app/page.tsx", "old_content": "Hello", "new_content": "Hi",
            })]),
            TextResult("Changed the greeting."),
        ])
        pipeline = make_pipeline(llm)
        updates = await run(pipeline, "Say hi instead")

        assert updates[0].metadata["intent"] == "tool_progress"
        assert updates[0].display_text == "Step 1: Editing file"
        final = updates[-1]
        assert final.done
        assert final.display_text == "Changed the greeting."
        assert final.metadata["changed_files"] == ["app/page.tsx"]

        assert session.files["app/page.tsx"].content == "<h1>Hi</h1>"
        saved = await sink.load("s1")
        assert saved[0].content == "<h1>Hi</h1>"
