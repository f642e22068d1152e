"""Tests for LiteLLMGateway with litellm.acompletion mocked out.

Test strategies:
1. Raw provider responses normalise to TextResult / ToolCallsResult once
2. Request parameters come from ModelConfig and CallOptions
3. Streaming yields only non-empty deltas
4. Timeouts surface as LLMTimeoutError (an LLMUnavailableError)
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from pagegen.llm.client import CallOptions, TextResult, ToolCallsResult
from pagegen.llm.litellm_gateway import LiteLLMGateway
from pagegen.llm.model_config import ModelConfig
from pagegen.utils.errors import LLMTimeoutError, LLMUnavailableError
from pagegen.utils.parser import derive_call_id

ACOMPLETION = "pagegen.llm.litellm_gateway.litellm.acompletion"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def gateway(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return LiteLLMGateway(ModelConfig(model="openai/gpt-4o-mini", max_output_tokens=512, temperature=0.2))


def response(content=None, tool_calls=None):
    return {"choices": [{"message": {"content": content, "tool_calls": tool_calls}}]}


async def deltas(*parts):
    for part in parts:
        yield {"choices": [{"delta": {"content": part}}]}


# =============================================================================
# NORMALISATION
# =============================================================================

class TestNormalizeResponse:
    def test_plain_text(self):
        result = LiteLLMGateway.normalize_response(response("Hello"))
        assert result == TextResult("Hello")

    def test_tool_calls(self):
        raw = response("Reading it now.", [
            {"id": "call_1", "function": {"name": "read_file", "arguments": '{"file_path": "app/page.tsx"}'}},
        ])
        result = LiteLLMGateway.normalize_response(raw)
        assert isinstance(result, ToolCallsResult)
        assert result.native
        assert result.text == "Reading it now."
        assert result.value[0].id == "call_1"
        assert result.value[0].input == {"file_path": "app/page.tsx"}

    def test_missing_id_and_empty_arguments(self):
        raw = response(None, [{"function": {"name": "list_files", "arguments": ""}}])
        call = LiteLLMGateway.normalize_response(raw).value[0]
        assert call.input == {}
        assert call.id == derive_call_id("list_files", {})

    def test_nameless_calls_dropped(self):
        raw = response("Just text", [{"id": "x", "function": {"arguments": "{}"}}])
        assert LiteLLMGateway.normalize_response(raw) == TextResult("Just text")

    def test_no_choices(self):
        assert LiteLLMGateway.normalize_response({"choices": []}) == TextResult("")


# =============================================================================
# CALLS
# =============================================================================

class TestCalls:
    def test_requires_model(self):
        with pytest.raises(ValueError):
            LiteLLMGateway(None)

    @pytest.mark.asyncio
    async def test_complete_sends_config(self, gateway):
        with patch(ACOMPLETION, new=AsyncMock(return_value=response("Hi there"))) as acompletion:
            text = await gateway.complete("Hello", "Be brief", CallOptions(history=[{"role": "user", "content": "earlier"}]))

        assert text == "Hi there"
        params = acompletion.await_args.kwargs
        assert params["model"] == "openai/gpt-4o-mini"
        assert params["max_tokens"] == 512
        assert params["temperature"] == 0.2
        assert "api_key" not in params
        assert [m["role"] for m in params["messages"]] == ["system", "user", "user"]

    @pytest.mark.asyncio
    async def test_tools_passed_when_supported(self, gateway):
        tools = [{"type": "function", "function": {"name": "read_file", "parameters": {}}}]
        with patch(ACOMPLETION, new=AsyncMock(return_value=response("done"))) as acompletion:
            result = await gateway.complete_with_tools([{"role": "user", "content": "hi"}], tools)

        assert result == TextResult("done")
        assert acompletion.await_args.kwargs["tools"] == tools
        assert acompletion.await_args.kwargs["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_tools_withheld_when_unsupported(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        gateway = LiteLLMGateway(ModelConfig(model="openai/tiny", supports_tools=False))
        with patch(ACOMPLETION, new=AsyncMock(return_value=response("ok"))) as acompletion:
            await gateway.complete_with_tools([], [{"type": "function"}])
        assert "tools" not in acompletion.await_args.kwargs

    @pytest.mark.asyncio
    async def test_stream_skips_empty_deltas(self, gateway):
        with patch(ACOMPLETION, new=AsyncMock(return_value=deltas("Hel", "", "lo"))) as acompletion:
            received = [d async for d in gateway.stream("Hello")]

        assert received == ["Hel", "lo"]
        assert acompletion.await_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, gateway):
        async def slow(**params):
            await asyncio.sleep(1)

        with patch(ACOMPLETION, new=slow):
            with pytest.raises(LLMTimeoutError) as exc_info:
                await gateway.complete("Hello", options=CallOptions(timeout=0.01))

        assert isinstance(exc_info.value, LLMUnavailableError)
        assert exc_info.value.code == "LLM_TIMEOUT"
