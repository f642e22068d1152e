from __future__ import annotations
import os
from typing import Any


# -----------------------------------------------------------------------------
# Numeric defaults (fallbacks)
# -----------------------------------------------------------------------------

# Per-session conversation history is pruned from the head beyond this cap.
DEFAULT_HISTORY_CAP = int(os.getenv("PAGEGEN_HISTORY_CAP", "20"))

DEFAULT_LLM_TIMEOUT_SECONDS = float(os.getenv("PAGEGEN_LLM_TIMEOUT", "120"))
DEFAULT_TOOL_TIMEOUT_SECONDS = float(os.getenv("PAGEGEN_TOOL_TIMEOUT", "60"))

# Tool-calling rounds per coordinator run.
DEFAULT_MAX_TOOL_STEPS = int(os.getenv("PAGEGEN_MAX_TOOL_STEPS", "6"))

# Hard stop for runaway streams.
DEFAULT_STREAM_MAX_CHUNKS = int(os.getenv("PAGEGEN_STREAM_MAX_CHUNKS", "2000"))

# Session repository eviction
DEFAULT_SESSION_TTL_SECONDS = float(os.getenv("PAGEGEN_SESSION_TTL_SECONDS", "3600"))
DEFAULT_MAX_SESSIONS = int(os.getenv("PAGEGEN_MAX_SESSIONS", "1000"))

DEFAULT_COMMITMENT = "thorough"

# LLM retry policy (tenacity)
DEFAULT_LLM_RETRY_ATTEMPTS = int(os.getenv("PAGEGEN_LLM_RETRY_ATTEMPTS", "3"))

# Collection progress shown to the user never reaches 100 before the stage ends.
COLLECTION_PROGRESS_CAP = 90


def _coerce_int(value: Any, default: int) -> int:
    """Safely coerce a value to int, returning default on failure."""
    try:
        return int(value)
    except Exception:
        return default


def get_max_tool_steps_default() -> int:
    """Return the default tool-step budget.

    Source of truth:
      - config key: pipeline.max_tool_steps
      - fallback: DEFAULT_MAX_TOOL_STEPS
    """
    try:
        from pagegen.config import get_config_value

        configured = get_config_value("pipeline.max_tool_steps", None)
        if configured is not None:
            return _coerce_int(configured, DEFAULT_MAX_TOOL_STEPS)
    except Exception:
        pass
    return DEFAULT_MAX_TOOL_STEPS
