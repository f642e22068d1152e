import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class ModelConfig:
    """Configuration for a model."""
    model: str
    provider: str = "openai"
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    api_version: Optional[str] = None
    # Max tokens the model may generate in a single response (output cap).
    max_output_tokens: Optional[int] = None
    temperature: float = 0.7
    streaming_enabled: bool = True
    # Whether the model accepts native tool descriptors. When False, tools
    # are described in the system prompt and calls are parsed out of text.
    supports_tools: bool = True

    def __post_init__(self):
        if self.api_key is None and self.provider:
            self.api_key = os.getenv(f"{self.provider.upper()}_API_KEY")

        if "/" not in self.model and self.provider:
            logger.warning(
                f"Model '{self.model}' lacks provider prefix. Assuming '{self.provider}/{self.model}'."
            )
            self.model = f"{self.provider}/{self.model}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        model = data.get("default") or data.get("model") or "openai/gpt-4o-mini"
        provider = data.get("provider") or (model.split("/", 1)[0] if "/" in model else "openai")
        return cls(
            model=model,
            provider=provider,
            api_base=data.get("api_base"),
            api_version=data.get("api_version"),
            max_output_tokens=data.get("max_output_tokens"),
            temperature=float(data.get("temperature", 0.7)),
            streaming_enabled=bool(data.get("streaming_enabled", True)),
            supports_tools=bool(data.get("supports_tools", True)),
        )

    def get_config(self) -> Dict[str, Any]:
        """Config dict with the API key redacted, for logging."""
        return {
            "model": self.model,
            "provider": self.provider,
            "api_base": self.api_base,
            "api_version": self.api_version,
            "max_output_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "streaming_enabled": self.streaming_enabled,
            "supports_tools": self.supports_tools,
            "api_key": "***" if self.api_key else None,
        }
