# pagegen/llm/litellm_gateway.py

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import litellm  # type: ignore
from tenacity import (  # type: ignore
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pagegen.constants import DEFAULT_LLM_RETRY_ATTEMPTS
from pagegen.llm.client import (
    CallOptions,
    LLMClient,
    LLMResult,
    TextResult,
    ToolCallsResult,
    build_messages,
)
from pagegen.llm.model_config import ModelConfig
from pagegen.system.state import ToolInvocationRequest
from pagegen.utils.errors import LLMTimeoutError, LLMUnavailableError
from pagegen.utils.json_scan import loads_lenient
from pagegen.utils.parser import derive_call_id

logger = logging.getLogger(__name__)

# Provider hiccups worth another attempt before giving up
_TRANSIENT_ERRORS = (
    litellm.exceptions.Timeout,
    litellm.exceptions.RateLimitError,
    litellm.exceptions.APIConnectionError,
    litellm.exceptions.ServiceUnavailableError,
    litellm.exceptions.InternalServerError,
)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class LiteLLMGateway(LLMClient):
    """
    LLM client backed by LiteLLM.

    Responses are normalised here, once, into ``TextResult`` or
    ``ToolCallsResult``. Transient provider errors are retried with
    exponential backoff; anything still failing afterwards, and any timeout,
    surfaces as :class:`LLMUnavailableError`.
    """

    def __init__(self, model_config: ModelConfig):
        if not model_config or not model_config.model:
            raise ValueError("Valid ModelConfig with a model identifier is required.")
        self.model_config = model_config
        logger.info(f"LiteLLMGateway initialized for model: {self.model_config.model}")
        logger.debug(f"Model config: {self.model_config.get_config()}")

    # ------------------------------------------------------------------
    # LLMClient
    # ------------------------------------------------------------------

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
    ) -> str:
        options = options or CallOptions()
        messages = build_messages(prompt, system_prompt, options.history)
        raw = await self._call(self._prepare_params(messages, options), options.timeout)
        result = self.normalize_response(raw)
        if isinstance(result, ToolCallsResult):
            return result.text
        return result.value

    async def stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
    ) -> AsyncIterator[str]:
        options = options or CallOptions()
        messages = build_messages(prompt, system_prompt, options.history)
        params = self._prepare_params(messages, options)
        params["stream"] = True
        response = await self._call(params, options.timeout)

        iterator = response.__aiter__()
        while True:
            try:
                if options.timeout:
                    chunk = await asyncio.wait_for(iterator.__anext__(), options.timeout)
                else:
                    chunk = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError as e:
                raise LLMTimeoutError(
                    f"No stream delta within {options.timeout}s",
                    details={"model": self.model_config.model},
                ) from e
            delta = self._delta_text(chunk)
            if delta:
                yield delta

    async def complete_with_tools(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        options: Optional[CallOptions] = None,
    ) -> LLMResult:
        options = options or CallOptions()
        params = self._prepare_params(messages, options)
        if tools and self.model_config.supports_tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"
        raw = await self._call(params, options.timeout)
        return self.normalize_response(raw)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare_params(self, messages: List[Dict[str, Any]], options: CallOptions) -> Dict[str, Any]:
        """Prepare the dictionary of parameters for litellm.acompletion."""
        params = {
            "model": self.model_config.model,
            "messages": messages,
            "max_tokens": options.max_tokens or self.model_config.max_output_tokens,
            "temperature": options.temperature if options.temperature is not None else self.model_config.temperature,
        }
        api_key = self.model_config.api_key or os.getenv(
            f"{self.model_config.provider.upper()}_API_KEY"
        )
        if api_key:
            params["api_key"] = api_key
        if self.model_config.api_base:
            params["api_base"] = self.model_config.api_base
        if self.model_config.api_version:
            params["api_version"] = self.model_config.api_version

        # Remove None values to avoid sending empty params
        return {k: v for k, v in params.items() if v is not None}

    async def _call(self, params: Dict[str, Any], timeout: Optional[float]) -> Any:
        request_id = os.urandom(4).hex()
        logger.info(
            f"[Request:{request_id}] LiteLLM call model={params.get('model')} "
            f"stream={params.get('stream', False)} tools={len(params.get('tools', []))}"
        )
        try:
            if timeout:
                return await asyncio.wait_for(self._acompletion(params), timeout)
            return await self._acompletion(params)
        except asyncio.TimeoutError as e:
            logger.error(f"[Request:{request_id}] LLM call timed out after {timeout}s")
            raise LLMTimeoutError(
                f"LLM call timed out after {timeout}s",
                details={"model": self.model_config.model, "request_id": request_id},
            ) from e
        except litellm.exceptions.AuthenticationError as e:
            logger.error(f"[Request:{request_id}] LiteLLM Authentication Error: {e}")
            raise LLMUnavailableError(
                f"Authentication failed for {self.model_config.provider}",
                details={"request_id": request_id},
            ) from e
        except litellm.exceptions.BadRequestError as e:
            status_code = getattr(e, 'status_code', 'N/A')
            logger.error(f"[Request:{request_id}] LiteLLM Bad Request Error (status {status_code}): {e}")
            raise LLMUnavailableError(
                f"Invalid request (Status {status_code})",
                details={"request_id": request_id, "error": str(e)},
            ) from e
        except _TRANSIENT_ERRORS as e:
            logger.error(f"[Request:{request_id}] LiteLLM still failing after retries: {e}")
            raise LLMUnavailableError(
                "LLM provider unreachable after retries",
                details={"request_id": request_id, "error": str(e)},
            ) from e

    @retry(
        stop=stop_after_attempt(DEFAULT_LLM_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _acompletion(self, params: Dict[str, Any]) -> Any:
        return await litellm.acompletion(**params)

    @staticmethod
    def _delta_text(chunk: Any) -> str:
        choices = _get(chunk, "choices") or []
        if not choices:
            return ""
        delta = _get(choices[0], "delta")
        return _get(delta, "content") or ""

    @staticmethod
    def normalize_response(raw: Any) -> LLMResult:
        """Turn a LiteLLM (OpenAI-shaped) response into an :data:`LLMResult`."""
        choices = _get(raw, "choices") or []
        if not choices:
            logger.warning("LLM response had no choices")
            return TextResult(value="")
        message = _get(choices[0], "message")
        text = _get(message, "content") or ""

        calls: List[ToolInvocationRequest] = []
        for tool_call in _get(message, "tool_calls") or []:
            function = _get(tool_call, "function")
            name = _get(function, "name")
            if not name:
                continue
            arguments = _get(function, "arguments")
            if isinstance(arguments, str):
                arguments = loads_lenient(arguments) if arguments.strip() else {}
            if not isinstance(arguments, dict):
                logger.warning(f"Tool call {name} arguments not an object, using empty input")
                arguments = {}
            call_id = _get(tool_call, "id") or derive_call_id(name, arguments)
            calls.append(ToolInvocationRequest(id=call_id, name=name, input=arguments))

        if calls:
            return ToolCallsResult(value=calls, text=text, native=True)
        return TextResult(value=text)
