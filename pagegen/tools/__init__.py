"""Tools module for PageGen."""

from .registry import Tool, ToolRegistry
from .sandbox import CommandResult, InMemorySandbox, Sandbox

__all__ = [
    "Tool",
    "ToolRegistry",
    "Sandbox",
    "InMemorySandbox",
    "CommandResult",
    "ProjectWorkspace",
    "build_project_tools",
]


def __getattr__(name):
    """Lazily import the project-file tools when they're first accessed."""
    if name in ("ProjectWorkspace", "build_project_tools"):
        from .file_tools import ProjectWorkspace, build_project_tools
        return locals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
