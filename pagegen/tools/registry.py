# Tool registry – name -> description, input schema, execute(params)
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError  # type: ignore

from pagegen.utils.errors import ToolExecutionError, ToolNotFoundError, ToolTimeoutError

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass
class Tool:
    """One callable tool.

    Inputs are validated against ``input_model`` when given; otherwise
    ``input_schema`` is only advertised to the model and the raw dict is
    passed through.
    """
    name: str
    description: str
    handler: ToolHandler
    input_model: Optional[Type[BaseModel]] = None
    input_schema: Dict[str, Any] = field(default_factory=dict)
    display_name: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Tool must have a name")
        if self.input_model is not None and not self.input_schema:
            self.input_schema = self.input_model.model_json_schema()
        if not self.input_schema:
            self.input_schema = {"type": "object", "properties": {}}

    def descriptor(self) -> Dict[str, Any]:
        """OpenAI/LiteLLM function-tool descriptor."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def validate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.input_model is None:
            return dict(params or {})
        try:
            return self.input_model.model_validate(params or {}).model_dump()
        except ValidationError as e:
            raise ToolExecutionError(
                f"Invalid parameters for {self.name}: {e.errors()}",
                code="TOOL_INVALID_PARAMETERS",
                details={"tool_name": self.name, "params": params},
            ) from e


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> Tool:
        if tool.name in self._tools:
            logger.warning(f"Tool {tool.name} re-registered, replacing previous definition")
        self._tools[tool.name] = tool
        return tool

    def tool(
        self,
        name: str,
        description: str,
        input_model: Optional[Type[BaseModel]] = None,
        display_name: Optional[str] = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`."""
        def decorator(fn: ToolHandler) -> ToolHandler:
            self.register(Tool(
                name=name,
                description=description,
                handler=fn,
                input_model=input_model,
                display_name=display_name,
            ))
            return fn
        return decorator

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def descriptors(self) -> List[Dict[str, Any]]:
        return [t.descriptor() for t in self._tools.values()]

    def display_name(self, name: str) -> str:
        tool = self._tools.get(name)
        if tool and tool.display_name:
            return tool.display_name
        return name.replace("_", " ").capitalize()

    def describe_for_prompt(self) -> str:
        """Plain-text tool list for models without native tool calling."""
        lines = []
        for tool in self._tools.values():
            params = ", ".join(tool.input_schema.get("properties", {}).keys())
            lines.append(f"- {tool.name}({params}): {tool.description}")
        return "\n".join(lines)

    async def execute(self, name: str, params: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """Run a tool. Raises ``ToolExecutionError`` subclasses on any failure."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        validated = tool.validate(params)
        logger.info(f"Executing tool {name}")
        try:
            if inspect.iscoroutinefunction(tool.handler):
                call = tool.handler(**validated)
            else:
                call = self._run_sync(tool.handler, validated)
            if timeout:
                return await asyncio.wait_for(call, timeout)
            return await call
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(name, timeout) from e
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(
                f"{name} failed: {e}",
                details={"tool_name": name, "error_type": type(e).__name__},
            ) from e

    @staticmethod
    async def _run_sync(handler: ToolHandler, params: Dict[str, Any]) -> Any:
        result = await asyncio.to_thread(handler, **params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
