"""Tests for ToolRegistry."""

import asyncio

import pytest
from pydantic import BaseModel

from pagegen.tools.registry import Tool, ToolRegistry
from pagegen.utils.errors import ToolExecutionError, ToolNotFoundError, ToolTimeoutError


class GreetInput(BaseModel):
    name: str
    excited: bool = False


@pytest.fixture
def registry():
    registry = ToolRegistry()

    @registry.tool("greet", "Greet someone", input_model=GreetInput, display_name="Greeting")
    def greet(name: str, excited: bool = False):
        return f"Hello {name}{'!' if excited else '.'}"

    @registry.tool("nap", "Sleep for a while")
    async def nap(seconds: float = 1.0):
        await asyncio.sleep(seconds)
        return "rested"

    return registry


class TestRegistration:
    def test_descriptors(self, registry):
        descriptors = {d["function"]["name"]: d for d in registry.descriptors()}
        assert set(descriptors) == {"greet", "nap"}
        greet = descriptors["greet"]
        assert greet["type"] == "function"
        assert "name" in greet["function"]["parameters"]["properties"]
        assert descriptors["nap"]["function"]["parameters"] == {"type": "object", "properties": {}}

    def test_display_names(self, registry):
        assert registry.display_name("greet") == "Greeting"
        assert registry.display_name("read_file") == "Read file"

    def test_membership(self, registry):
        assert "greet" in registry
        assert len(registry) == 2
        assert registry.names == ["greet", "nap"]

    def test_tool_requires_name(self):
        with pytest.raises(ValueError):
            Tool("", "nameless", lambda: None)

    def test_describe_for_prompt(self, registry):
        lines = registry.describe_for_prompt().split("\n")
        assert lines[0] == "- greet(name, excited): Greet someone"


class TestExecution:
    @pytest.mark.asyncio
    async def test_sync_handler_with_validation(self, registry):
        assert await registry.execute("greet", {"name": "Ada", "excited": True}) == "Hello Ada!"

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, registry):
        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.execute("greet", {"excited": True})
        assert exc_info.value.code == "TOOL_INVALID_PARAMETERS"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        with pytest.raises(ToolNotFoundError):
            await registry.execute("fly", {})

    @pytest.mark.asyncio
    async def test_timeout(self, registry):
        with pytest.raises(ToolTimeoutError):
            await registry.execute("nap", {"seconds": 1.0}, timeout=0.01)

    @pytest.mark.asyncio
    async def test_handler_exception_is_wrapped(self):
        registry = ToolRegistry()

        @registry.tool("broken", "Always fails")
        async def broken():
            raise KeyError("missing")

        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.execute("broken", {})
        assert exc_info.value.details["error_type"] == "KeyError"
