"""Narrow interface to the code-preview sandbox.

The pipeline only ever writes files, runs a command and lists files; the
concrete sandbox service is hidden behind this contract.
"""

import fnmatch
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict[str, object]:
        return {"exit_code": self.exit_code, "stdout": self.stdout, "stderr": self.stderr}


class Sandbox(ABC):
    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        ...

    @abstractmethod
    async def run_command(
        self, command: str, cwd: Optional[str] = None, timeout: Optional[float] = None
    ) -> CommandResult:
        ...

    @abstractmethod
    async def list_files(self, directory: str = "") -> List[str]:
        ...


@dataclass
class InMemorySandbox(Sandbox):
    """Records writes and commands. ``responses`` maps a command glob to its result."""
    files: Dict[str, str] = field(default_factory=dict)
    commands: List[str] = field(default_factory=list)
    responses: Dict[str, CommandResult] = field(default_factory=dict)

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    async def run_command(
        self, command: str, cwd: Optional[str] = None, timeout: Optional[float] = None
    ) -> CommandResult:
        self.commands.append(command if not cwd else f"(cd {cwd} && {command})")
        for pattern, result in self.responses.items():
            if fnmatch.fnmatch(command, pattern):
                return result
        return CommandResult(exit_code=0)

    async def list_files(self, directory: str = "") -> List[str]:
        prefix = directory.rstrip("/") + "/" if directory else ""
        return sorted(p for p in self.files if p.startswith(prefix))
