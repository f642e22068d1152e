import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class PageGenError(Exception):
    """Base exception for all PageGen errors with structured error information."""

    def __init__(
        self,
        message: str,
        code: str = "PAGEGEN_ERROR",
        recoverable: bool = True,
        suggested_action: str = "retry",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.code = code
        self.recoverable = recoverable
        self.suggested_action = suggested_action
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for pipeline metadata."""
        return {
            "code": self.code,
            "message": str(self),
            "recoverable": self.recoverable,
            "suggested_action": self.suggested_action,
            "details": self.details
        }


class LLMUnavailableError(PageGenError):
    """The LLM provider could not be reached. The only fatal error class."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "LLM_UNAVAILABLE")
        kwargs.setdefault("suggested_action", "retry_later")
        super().__init__(message, recoverable=True, **kwargs)


class LLMTimeoutError(LLMUnavailableError):
    """LLM call exceeded its timeout."""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="LLM_TIMEOUT", **kwargs)


class ToolExecutionError(PageGenError):
    """Tool execution failed."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "TOOL_EXECUTION_ERROR")
        super().__init__(
            message,
            recoverable=True,
            suggested_action="retry_with_different_parameters",
            **kwargs
        )


class ToolNotFoundError(ToolExecutionError):
    """Tool not registered."""
    def __init__(self, tool_name: str, **kwargs):
        super().__init__(
            f"Tool '{tool_name}' not found",
            code="TOOL_NOT_FOUND",
            details={"tool_name": tool_name},
            **kwargs
        )


class ToolTimeoutError(ToolExecutionError):
    """Tool execution exceeded its timeout."""
    def __init__(self, tool_name: str, timeout: float, **kwargs):
        super().__init__(
            f"Tool '{tool_name}' timed out after {timeout}s",
            code="TOOL_TIMEOUT",
            details={"tool_name": tool_name, "timeout": timeout},
            **kwargs
        )


class StageLogicError(PageGenError):
    """Scoring or data merging failed inside a stage."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            code="STAGE_LOGIC_ERROR",
            recoverable=True,
            suggested_action="continue",
            **kwargs
        )


class ArtifactStorageError(PageGenError):
    """Artifact sink rejected a save or load."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            code="ARTIFACT_STORAGE_ERROR",
            recoverable=True,
            suggested_action="retry_later",
            **kwargs
        )


class ConfigurationError(PageGenError):
    """Invalid configuration value."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            recoverable=False,
            suggested_action="check_config",
            **kwargs
        )


class ErrorHandler:
    def __init__(self, log_dir: Optional[Path] = None):
        """Error reports go to ``log_dir``; the directory is created on first use."""
        self._log_dir = log_dir
        self._file_handler: Optional[logging.Handler] = None

    @property
    def log_dir(self) -> Path:
        if self._log_dir is None:
            from pagegen.utils.logs import get_workspace_path

            self._log_dir = get_workspace_path() / "errors_log"
        return self._log_dir

    def _ensure_log_dir(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        if self._file_handler is None:
            fh = logging.FileHandler(self.log_dir / "errors.log")
            fh.setLevel(logging.ERROR)
            fh.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            ))
            logger.addHandler(fh)
            self._file_handler = fh

    def log_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        *,
        fatal: bool = False,
    ) -> Dict[str, Any]:
        """Unified error logging with structured output"""
        error_data = {
            "timestamp": datetime.now().isoformat(),
            "error_type": type(error).__name__,
            "message": str(error),
            "traceback": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            "context": context or {},
            "severity": "FATAL" if fatal else "ERROR",
        }
        if isinstance(error, PageGenError):
            error_data["error"] = error.to_dict()

        logger.error(
            f"{error_data['severity']}: {error_data['message']}",
            extra={"error_data": error_data},
            exc_info=sys.exc_info() if fatal else None,
        )

        try:
            self._ensure_log_dir()
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            error_file = self.log_dir / f"error_{timestamp}.json"
            error_file.write_text(json.dumps(error_data, indent=2, default=str))
        except OSError as e:
            logger.warning(f"Could not write error report: {e}")

        return error_data


# Global error handler instance
error_handler = ErrorHandler()
