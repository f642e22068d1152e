import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore
from dotenv import load_dotenv  # type: ignore

from pagegen.constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_HISTORY_CAP,
    DEFAULT_LLM_TIMEOUT_SECONDS,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_MAX_TOOL_STEPS,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_STREAM_MAX_CHUNKS,
    DEFAULT_TOOL_TIMEOUT_SECONDS,
)
from pagegen.llm.model_config import ModelConfig
from pagegen.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


def deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = deep_merge_dicts(dict(base.get(key, {})), value)
        else:
            base[key] = value
    return base


def get_user_config_path() -> Path:
    if os.name == 'posix':
        base = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))
    else:
        base = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
    return base / 'pagegen' / 'config.yml'


def get_project_config_paths(cwd_override: Optional[str] = None) -> Dict[str, Path]:
    start_dir = Path(cwd_override or os.environ.get('PAGEGEN_CWD') or os.getcwd()).resolve()
    config_dir = start_dir / '.pagegen'
    return {
        "config": config_dir / 'config.yml',
        "local": config_dir / 'settings.local.yml',
    }


def _merge_file(merged: Dict[str, Any], path: Path, label: str) -> Dict[str, Any]:
    try:
        if path.exists():
            with open(path) as f:
                merged = deep_merge_dicts(merged, yaml.safe_load(f) or {})
                logger.debug(f"Loaded {label} config: {path}")
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading {label} config {path}: {e}")
    return merged


def load_config(cwd_override: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration by merging multiple locations with clear precedence.

    Precedence (lowest → highest):
      1. Package default (pagegen/config.yml)
      2. User config (~/.config/pagegen/config.yml or %APPDATA%/pagegen/config.yml)
      3. Project config (<cwd>/.pagegen/config.yml)
      4. Project local overrides (<cwd>/.pagegen/settings.local.yml)
      5. Explicit override via PAGEGEN_CONFIG_PATH
    """
    merged: Dict[str, Any] = {}
    merged = _merge_file(merged, Path(__file__).parent / "config.yml", "package default")
    merged = _merge_file(merged, get_user_config_path(), "user")

    project_paths = get_project_config_paths(cwd_override)
    merged = _merge_file(merged, project_paths["config"], "project")
    merged = _merge_file(merged, project_paths["local"], "project local")

    override = os.getenv('PAGEGEN_CONFIG_PATH')
    if override:
        merged = _merge_file(merged, Path(override), "override")

    return merged


def _get_nested(cfg: Dict[str, Any], key: str, default=None):
    node: Any = cfg
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def get_config_value(key: str, default=None, cwd_override: Optional[str] = None):
    cfg = load_config(cwd_override)
    return _get_nested(cfg, key, default)


# ---------------------------------------------------------------------------
# Typed view over the merged dict
# ---------------------------------------------------------------------------

@dataclass
class CommitmentSettings:
    """Turn ceiling and advance threshold for one declared commitment level."""
    name: str
    max_turns: int
    advance_threshold: float
    aliases: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.max_turns < 1:
            raise ConfigurationError(
                f"Commitment level '{self.name}' needs max_turns >= 1, got {self.max_turns}"
            )
        if not 0.0 <= self.advance_threshold <= 1.0:
            raise ConfigurationError(
                f"Commitment level '{self.name}' advance_threshold must be within [0, 1]"
            )


@dataclass
class CategorySettings:
    """A data category that counts toward a stage's completeness score."""
    name: str
    weight: float
    keys: List[str] = field(default_factory=list)


@dataclass
class StageSettings:
    name: str
    categories: List[CategorySettings] = field(default_factory=list)
    # Overrides the commitment level when set
    max_turns: Optional[int] = None
    advance_threshold: Optional[float] = None
    welcome_message: Optional[str] = None


@dataclass
class StreamSettings:
    max_chunks: int = DEFAULT_STREAM_MAX_CHUNKS


def _default_commitments() -> Dict[str, CommitmentSettings]:
    return {
        "quick": CommitmentSettings("quick", 3, 0.2, ["quick", "trial", "试一试", "快速体验"]),
        "thorough": CommitmentSettings("thorough", 6, 0.6, ["thorough", "serious", "认真制作"]),
        "professional": CommitmentSettings("professional", 8, 0.8, ["professional", "pro", "专业制作"]),
    }


@dataclass
class PipelineConfig:
    history_cap: int = DEFAULT_HISTORY_CAP
    llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT_SECONDS
    max_tool_steps: int = DEFAULT_MAX_TOOL_STEPS
    default_commitment: str = DEFAULT_COMMITMENT
    session_ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS
    max_sessions: int = DEFAULT_MAX_SESSIONS
    commitment_levels: Dict[str, CommitmentSettings] = field(default_factory=_default_commitments)
    stages: Dict[str, StageSettings] = field(default_factory=dict)
    stream: StreamSettings = field(default_factory=StreamSettings)
    model: Optional[ModelConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        pipeline = data.get("pipeline") or {}

        commitments: Dict[str, CommitmentSettings] = {}
        for name, raw in (data.get("commitment_levels") or {}).items():
            raw = raw or {}
            commitments[name] = CommitmentSettings(
                name=name,
                max_turns=int(raw.get("max_turns", 6)),
                advance_threshold=float(raw.get("advance_threshold", 0.5)),
                aliases=[str(a) for a in raw.get("aliases", [])],
            )

        stages: Dict[str, StageSettings] = {}
        for name, raw in (data.get("stages") or {}).items():
            raw = raw or {}
            categories = [
                CategorySettings(
                    name=cat_name,
                    weight=float((cat or {}).get("weight", 0)),
                    keys=list((cat or {}).get("keys", [cat_name])),
                )
                for cat_name, cat in (raw.get("categories") or {}).items()
            ]
            stages[name] = StageSettings(
                name=name,
                categories=categories,
                max_turns=raw.get("max_turns"),
                advance_threshold=raw.get("advance_threshold"),
                welcome_message=raw.get("welcome_message"),
            )

        stream = data.get("stream") or {}
        model = data.get("model")

        cfg = cls(
            history_cap=int(os.getenv("PAGEGEN_HISTORY_CAP", pipeline.get("history_cap", DEFAULT_HISTORY_CAP))),
            llm_timeout=float(os.getenv("PAGEGEN_LLM_TIMEOUT", pipeline.get("llm_timeout", DEFAULT_LLM_TIMEOUT_SECONDS))),
            tool_timeout=float(os.getenv("PAGEGEN_TOOL_TIMEOUT", pipeline.get("tool_timeout", DEFAULT_TOOL_TIMEOUT_SECONDS))),
            max_tool_steps=int(os.getenv("PAGEGEN_MAX_TOOL_STEPS", pipeline.get("max_tool_steps", DEFAULT_MAX_TOOL_STEPS))),
            default_commitment=pipeline.get("default_commitment", DEFAULT_COMMITMENT),
            session_ttl_seconds=float(pipeline.get("session_ttl_seconds", DEFAULT_SESSION_TTL_SECONDS)),
            max_sessions=int(pipeline.get("max_sessions", DEFAULT_MAX_SESSIONS)),
            stages=stages,
            stream=StreamSettings(max_chunks=int(stream.get("max_chunks", DEFAULT_STREAM_MAX_CHUNKS))),
            model=ModelConfig.from_dict(model) if isinstance(model, dict) else None,
        )
        if commitments:
            cfg.commitment_levels = commitments
        if cfg.default_commitment not in cfg.commitment_levels:
            raise ConfigurationError(
                f"default_commitment '{cfg.default_commitment}' is not a configured commitment level"
            )
        return cfg

    def commitment(self, name: Optional[str]) -> CommitmentSettings:
        """Settings for ``name``; unknown names fall back to the default level."""
        if name in self.commitment_levels:
            return self.commitment_levels[name]
        return self.commitment_levels[self.default_commitment]

    def resolve_commitment(self, text: Optional[str]) -> str:
        """Map free-form text (a level name or one of its aliases) to a level name."""
        if not text:
            return self.default_commitment
        lowered = text.strip().lower()
        if lowered in self.commitment_levels:
            return lowered
        for name, settings in self.commitment_levels.items():
            for alias in settings.aliases:
                if alias.lower() in lowered:
                    return name
        return self.default_commitment

    def stage(self, name: str) -> StageSettings:
        return self.stages.get(name) or StageSettings(name=name)


def load_pipeline_config(cwd_override: Optional[str] = None) -> PipelineConfig:
    return PipelineConfig.from_dict(load_config(cwd_override))


# Load user-level .env first, then the project one (project wins)
try:
    user_env_path = get_user_config_path().parent / '.env'
    if user_env_path.exists():
        load_dotenv(dotenv_path=str(user_env_path), override=False)
except OSError:
    pass

load_dotenv(override=False)

config = load_config()

DEFAULT_MODEL = os.getenv("PAGEGEN_DEFAULT_MODEL", _get_nested(config, "model.default")) or "openai/gpt-4o-mini"
WORKSPACE_PATH = Path(os.getenv("PAGEGEN_WORKSPACE", Path.home() / ".pagegen" / "workspace"))
