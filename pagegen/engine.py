from __future__ import annotations

"""Engine – multi-step tool coordination for PageGen.

The coordinator drives a bounded number of tool-calling rounds against the
LLM. Each round sends the conversation plus the available tool descriptors;
tool calls in the reply run one after another, their results are appended
to the conversation, and the next round starts. The loop ends when the
model answers without calling a tool or the step budget runs out.

Tool failures never end the run: they become ``success=False`` results that
the model sees on the next round. A timed-out LLM round is retried up to
``timeout_retries`` times, each retry using up one step of the budget. Only
an unreachable LLM, or one that keeps timing out, ends a run early, with
status ``llm_unavailable`` and every completed step preserved.
"""

import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from pagegen.constants import (
    DEFAULT_LLM_TIMEOUT_SECONDS,
    DEFAULT_TOOL_TIMEOUT_SECONDS,
    get_max_tool_steps_default,
)
from pagegen.llm.client import CallOptions, LLMClient, LLMResult, ToolCallsResult, build_messages
from pagegen.system.state import ToolExecutionResult, ToolInvocationRequest
from pagegen.tools.registry import ToolRegistry
from pagegen.utils.errors import LLMTimeoutError, LLMUnavailableError, ToolExecutionError
from pagegen.utils.events import EventBus, ToolEvent
from pagegen.utils.parser import ToolCallDetector

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_MAX_STEPS = "max_steps"
STATUS_FALLBACK = "fallback"
STATUS_LLM_UNAVAILABLE = "llm_unavailable"

TEXT_TOOL_INSTRUCTIONS = (
    "You can use the following tools. To call one, write [Tool:<name>] followed by "
    "a JSON object with its parameters on the same line, e.g. "
    '[Tool:read_file]{"file_path": "app/page.tsx"}. '
    "Results will be given back to you. When you are done, answer without calling a tool."
)


# ---------------------------------------------------------------------------
# Settings & state
# ---------------------------------------------------------------------------

@dataclass
class CoordinatorSettings:
    """Configuration for a MultiStepToolCoordinator instance."""

    max_steps: int = field(default_factory=get_max_tool_steps_default)
    llm_timeout: Optional[float] = DEFAULT_LLM_TIMEOUT_SECONDS
    tool_timeout: Optional[float] = DEFAULT_TOOL_TIMEOUT_SECONDS
    # Stop when the model sends the same batch of calls this many times in a row
    repeat_limit: int = 3
    # Timed-out LLM rounds retried per run; each retry uses up a step
    timeout_retries: int = 1
    # For models without native tool calling: list tools in the system prompt
    describe_tools_in_prompt: bool = False


@dataclass
class LoopState:
    """Per-run loop bookkeeping, reset at the start of every run."""
    executed_ids: Set[str] = field(default_factory=set)
    last_batch_signature: Optional[str] = None
    repeat_count: int = 0

    def reset(self) -> None:
        self.executed_ids = set()
        self.last_batch_signature = None
        self.repeat_count = 0

    def check_repeated(self, calls: List[ToolInvocationRequest], limit: int) -> bool:
        """Return True once the same batch has arrived ``limit`` times in a row."""
        signature = json.dumps(
            [(c.name, c.input) for c in calls], sort_keys=True, default=str
        )
        if signature == self.last_batch_signature:
            self.repeat_count += 1
        else:
            self.repeat_count = 1
        self.last_batch_signature = signature
        return self.repeat_count >= limit


@dataclass
class StepRecord:
    """One completed tool round."""
    index: int
    tool_calls: List[ToolInvocationRequest]
    tool_results: List[ToolExecutionResult]
    text: str = ""
    skipped_ids: List[str] = field(default_factory=list)

    @property
    def tool_names(self) -> List[str]:
        return [c.name for c in self.tool_calls]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "tool_calls": [c.to_dict() for c in self.tool_calls],
            "tool_results": [r.to_dict() for r in self.tool_results],
            "text": self.text,
            "skipped_ids": list(self.skipped_ids),
        }


@dataclass
class CoordinatorResult:
    final_text: str
    tool_calls: List[ToolInvocationRequest] = field(default_factory=list)
    tool_results: List[ToolExecutionResult] = field(default_factory=list)
    steps: List[StepRecord] = field(default_factory=list)
    status: str = STATUS_COMPLETED
    error: Optional[Dict[str, Any]] = None
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_text": self.final_text,
            "tool_calls": [c.to_dict() for c in self.tool_calls],
            "tool_results": [r.to_dict() for r in self.tool_results],
            "steps": [s.to_dict() for s in self.steps],
            "status": self.status,
            "error": self.error,
            "execution_time": self.execution_time,
        }


StepCallback = Callable[[StepRecord], Union[None, Awaitable[None]]]


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class MultiStepToolCoordinator:
    """Bounded tool-calling loop over an :class:`LLMClient` and a :class:`ToolRegistry`."""

    def __init__(
        self,
        llm: LLMClient,
        registry: ToolRegistry,
        *,
        settings: Optional[CoordinatorSettings] = None,
        detector: Optional[ToolCallDetector] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.llm = llm
        self.registry = registry
        self.settings = settings or CoordinatorSettings()
        self.detector = detector or ToolCallDetector()
        self.event_bus = event_bus
        self._loop_state = LoopState()

    async def run(
        self,
        user_input: str,
        system_prompt: str,
        max_steps: Optional[int] = None,
        *,
        history: Optional[List[Dict[str, Any]]] = None,
        on_step: Optional[StepCallback] = None,
    ) -> CoordinatorResult:
        result: Optional[CoordinatorResult] = None
        async for item in self.iterate(
            user_input, system_prompt, max_steps, history=history, on_step=on_step
        ):
            if isinstance(item, CoordinatorResult):
                result = item
        assert result is not None
        return result

    async def iterate(
        self,
        user_input: str,
        system_prompt: str,
        max_steps: Optional[int] = None,
        *,
        history: Optional[List[Dict[str, Any]]] = None,
        on_step: Optional[StepCallback] = None,
    ) -> AsyncGenerator[Union[StepRecord, CoordinatorResult], None]:
        """Yield each :class:`StepRecord` as it completes, then the :class:`CoordinatorResult`."""
        start_time = time.time()
        max_steps = max_steps if max_steps is not None else self.settings.max_steps
        self._loop_state.reset()

        prompt = self._system_prompt(system_prompt)
        messages = build_messages(user_input, prompt, history)
        tools = self.registry.descriptors() if not self.settings.describe_tools_in_prompt else []

        tool_calls: List[ToolInvocationRequest] = []
        tool_results: List[ToolExecutionResult] = []
        steps: List[StepRecord] = []
        final_text = ""
        status = STATUS_MAX_STEPS

        def finish(status: str, error: Optional[Dict[str, Any]] = None) -> CoordinatorResult:
            text = final_text or self._failure_summary(tool_results)
            logger.info(
                f"Coordinator finished: status={status} steps={len(steps)} "
                f"tools={len(tool_results)}"
            )
            return CoordinatorResult(
                final_text=text,
                tool_calls=list(tool_calls),
                tool_results=list(tool_results),
                steps=list(steps),
                status=status,
                error=error,
                execution_time=time.time() - start_time,
            )

        timeouts = 0
        for step_index in range(1, max_steps + 1):
            try:
                response = await self.llm.complete_with_tools(
                    messages, tools, CallOptions(timeout=self.settings.llm_timeout)
                )
            except LLMTimeoutError as e:
                timeouts += 1
                if timeouts > self.settings.timeout_retries or step_index == max_steps:
                    logger.error(f"LLM timed out at step {step_index}, giving up: {e}")
                    yield finish(STATUS_LLM_UNAVAILABLE, e.to_dict())
                    return
                logger.warning(f"LLM timed out at step {step_index}, retrying ({timeouts}/{self.settings.timeout_retries})")
                continue
            except LLMUnavailableError as e:
                logger.error(f"LLM unavailable at step {step_index}: {e}")
                yield finish(STATUS_LLM_UNAVAILABLE, e.to_dict())
                return

            calls, text, raw_text, native = self._calls_from(response)

            if not calls:
                if text.strip():
                    final_text = text
                    status = STATUS_COMPLETED
                else:
                    logger.warning(
                        f"Step {step_index}: no text and no tool calls, falling back to plain completion"
                    )
                    try:
                        final_text = await self.llm.complete(
                            user_input,
                            system_prompt,
                            CallOptions(timeout=self.settings.llm_timeout, history=list(history or [])),
                        )
                    except LLMUnavailableError as e:
                        logger.error(f"LLM unavailable during fallback: {e}")
                        yield finish(STATUS_LLM_UNAVAILABLE, e.to_dict())
                        return
                    status = STATUS_FALLBACK
                break

            if self._loop_state.check_repeated(calls, self.settings.repeat_limit):
                logger.warning(
                    f"[LOOP_GUARD] Same tool batch requested {self._loop_state.repeat_count} times, stopping"
                )
                final_text = text or final_text
                status = STATUS_COMPLETED
                break

            executed: List[ToolInvocationRequest] = []
            results: List[ToolExecutionResult] = []
            skipped: List[str] = []
            for call in calls:
                if call.id in self._loop_state.executed_ids:
                    logger.info(f"Skipping already executed tool call {call.id} ({call.name})")
                    skipped.append(call.id)
                    continue
                self._loop_state.executed_ids.add(call.id)
                result = await self._execute(call)
                # Recorded before the next suspension point
                executed.append(call)
                results.append(result)
                tool_calls.append(call)
                tool_results.append(result)

            if text:
                final_text = text
            self._append_round(messages, raw_text, executed, results, skipped, native)

            step = StepRecord(
                index=step_index,
                tool_calls=executed,
                tool_results=results,
                text=text,
                skipped_ids=skipped,
            )
            steps.append(step)
            await self._notify(step, on_step)
            yield step

        yield finish(status)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _system_prompt(self, system_prompt: str) -> str:
        if not self.settings.describe_tools_in_prompt or not len(self.registry):
            return system_prompt
        return f"{system_prompt}\n\n{TEXT_TOOL_INSTRUCTIONS}\n{self.registry.describe_for_prompt()}"

    def _calls_from(self, response: LLMResult) -> Tuple[List[ToolInvocationRequest], str, str, bool]:
        """Return ``(calls, display_text, raw_text, native)`` for one response."""
        if isinstance(response, ToolCallsResult):
            calls = [c for c in response.value if not c.partial]
            return calls, response.text or "", response.text or "", response.native

        raw = response.value or ""
        detection = self.detector.parse(raw)
        if detection.has_partial:
            logger.debug("Response contains an unfinished tool call, not executing it")
        calls = detection.complete_calls
        if not calls:
            return [], raw, raw, False
        return calls, detection.text, raw, False

    async def _execute(self, call: ToolInvocationRequest) -> ToolExecutionResult:
        await self._publish(ToolEvent.STARTED, {"call": call.to_dict()})
        try:
            output = await self.registry.execute(call.name, call.input, timeout=self.settings.tool_timeout)
            result = ToolExecutionResult(call.name, True, output, call_id=call.id)
            logger.info(f"Tool {call.name} succeeded")
            await self._publish(ToolEvent.COMPLETED, result.to_dict())
        except ToolExecutionError as e:
            logger.error(f"Tool {call.name} failed: {e}")
            result = ToolExecutionResult(call.name, False, error=str(e), call_id=call.id)
            await self._publish(ToolEvent.FAILED, result.to_dict())
        except Exception as e:
            # Registries are injected; whatever they raise is this tool's failure
            logger.error(f"Tool {call.name} raised {type(e).__name__}: {e}")
            result = ToolExecutionResult(call.name, False, error=f"{type(e).__name__}: {e}", call_id=call.id)
            await self._publish(ToolEvent.FAILED, result.to_dict())
        return result

    @staticmethod
    def _append_round(
        messages: List[Dict[str, Any]],
        raw_text: str,
        executed: List[ToolInvocationRequest],
        results: List[ToolExecutionResult],
        skipped: List[str],
        native: bool,
    ) -> None:
        if native and executed:
            messages.append({
                "role": "assistant",
                "content": raw_text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.input)},
                    }
                    for call in executed
                ],
            })
            for call, result in zip(executed, results):
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": result.as_context(),
                })
            if skipped:
                messages.append({
                    "role": "user",
                    "content": f"Tool calls {', '.join(skipped)} were already executed; their results are above.",
                })
            return

        messages.append({"role": "assistant", "content": raw_text})
        feedback = [result.as_context() for result in results]
        feedback.extend(f"[Tool Skipped: {call_id}] already executed" for call_id in skipped)
        messages.append({"role": "user", "content": "\n".join(feedback)})

    @staticmethod
    def _failure_summary(results: List[ToolExecutionResult]) -> str:
        if not results or any(r.success for r in results):
            return ""
        failures = "\n".join(f"- {r.tool_name}: {r.error}" for r in results)
        return f"I couldn't complete the requested tool actions:\n{failures}"

    async def _notify(self, step: StepRecord, on_step: Optional[StepCallback]) -> None:
        logger.debug(f"Step {step.index} complete: tools={step.tool_names}")
        await self._publish(ToolEvent.STEP_COMPLETED, step.to_dict())
        if on_step is None:
            return
        try:
            outcome = on_step(step)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Step callback failed: {e}")

    async def _publish(self, event: ToolEvent, data: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event, data)
