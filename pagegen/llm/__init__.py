"""LLM access for PageGen.

Only the provider-neutral pieces are imported eagerly; the LiteLLM adapter
is loaded on first access so importing configuration stays cheap.
"""

from .client import CallOptions, LLMClient, LLMResult, TextResult, ToolCallsResult
from .model_config import ModelConfig

__all__ = [
    "CallOptions",
    "LLMClient",
    "LLMResult",
    "TextResult",
    "ToolCallsResult",
    "ModelConfig",
    "LiteLLMGateway",
]


def __getattr__(name):
    """Lazily import the LiteLLM gateway when it's first accessed."""
    if name == "LiteLLMGateway":
        from .litellm_gateway import LiteLLMGateway
        return LiteLLMGateway
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
