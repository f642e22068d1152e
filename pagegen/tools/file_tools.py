"""Project-file tools used by the coding stage when modifying a generated project.

All tools work on the session's file map (filename -> CodeArtifact). When a
sandbox is attached, writes are mirrored to it and ``run_command`` becomes
available.
"""

import fnmatch
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field  # type: ignore

from pagegen.system.state import CodeArtifact
from pagegen.tools.registry import Tool, ToolRegistry
from pagegen.tools.sandbox import Sandbox
from pagegen.utils.filenames import language_from_extension

logger = logging.getLogger(__name__)


class ReadFileInput(BaseModel):
    file_path: str = Field(..., description="Path of the file to read.")
    start_line: Optional[int] = Field(None, ge=1, description="First line to return (1-based).")
    end_line: Optional[int] = Field(None, ge=1, description="Last line to return (inclusive).")


class WriteFileInput(BaseModel):
    file_path: str = Field(..., description="Path of the file to create or overwrite.")
    content: str = Field(..., description="Full file content.")


class EditFileInput(BaseModel):
    file_path: str = Field(..., description="Path of the file to edit.")
    old_content: str = Field(..., description="Exact text to replace. Must occur in the file.")
    new_content: str = Field(..., description="Replacement text.")


class AppendFileInput(BaseModel):
    file_path: str = Field(..., description="Path of the file to append to.")
    content: str = Field(..., description="Text to append.")


class DeleteFileInput(BaseModel):
    file_path: str = Field(..., description="Path of the file to delete.")


class SearchCodeInput(BaseModel):
    query: str = Field(..., description="Text to search for (case-insensitive).")
    file_pattern: Optional[str] = Field(None, description="Glob limiting which files are searched.")


class ListFilesInput(BaseModel):
    directory: Optional[str] = Field(None, description="Only list files under this directory.")


class RunCommandInput(BaseModel):
    command: str = Field(..., description="Shell command to run in the sandbox.")
    directory: Optional[str] = Field(None, description="Working directory inside the project.")


def _normalize(path: str) -> str:
    path = path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


class ProjectWorkspace:
    """File operations over one session's generated project."""

    def __init__(self, files: Dict[str, CodeArtifact], sandbox: Optional[Sandbox] = None):
        self.files = files
        self.sandbox = sandbox
        self.changed: List[str] = []

    def _require(self, path: str) -> CodeArtifact:
        artifact = self.files.get(path)
        if artifact is None:
            raise FileNotFoundError(f"File not found: {path}")
        return artifact

    async def _store(self, path: str, content: str, description: str) -> CodeArtifact:
        previous = self.files.get(path)
        artifact = CodeArtifact(
            filename=path,
            language=previous.language if previous else language_from_extension(path),
            content=content,
            description=description,
        )
        self.files[path] = artifact
        if path not in self.changed:
            self.changed.append(path)
        if self.sandbox is not None:
            await self.sandbox.write_file(path, content)
        return artifact

    async def read_file(self, file_path: str, start_line: Optional[int] = None,
                        end_line: Optional[int] = None) -> str:
        path = _normalize(file_path)
        lines = self._require(path).content.split("\n")
        start = (start_line or 1) - 1
        end = end_line or len(lines)
        numbered = [f"{i + 1}: {line}" for i, line in enumerate(lines[start:end], start=start)]
        return "\n".join(numbered)

    async def write_file(self, file_path: str, content: str) -> str:
        path = _normalize(file_path)
        existed = path in self.files
        await self._store(path, content, "Written by write_file")
        return f"{'Updated' if existed else 'Created'} {path} ({len(content)} chars)"

    async def edit_file(self, file_path: str, old_content: str, new_content: str) -> str:
        path = _normalize(file_path)
        current = self._require(path).content
        occurrences = current.count(old_content)
        if occurrences == 0:
            raise ValueError(f"old_content not found in {path}")
        if occurrences > 1:
            raise ValueError(f"old_content occurs {occurrences} times in {path}; make it unique")
        await self._store(path, current.replace(old_content, new_content, 1), "Edited by edit_file")
        return f"Edited {path}"

    async def append_to_file(self, file_path: str, content: str) -> str:
        path = _normalize(file_path)
        current = self._require(path).content
        separator = "" if not current or current.endswith("\n") else "\n"
        await self._store(path, current + separator + content, "Appended by append_to_file")
        return f"Appended {len(content)} chars to {path}"

    async def delete_file(self, file_path: str) -> str:
        path = _normalize(file_path)
        self._require(path)
        del self.files[path]
        if path not in self.changed:
            self.changed.append(path)
        return f"Deleted {path}"

    async def search_code(self, query: str, file_pattern: Optional[str] = None) -> List[Dict[str, object]]:
        needle = query.lower()
        matches = []
        for path, artifact in sorted(self.files.items()):
            if file_pattern and not fnmatch.fnmatch(path, file_pattern):
                continue
            for number, line in enumerate(artifact.content.split("\n"), start=1):
                if needle in line.lower():
                    matches.append({"file": path, "line": number, "text": line.strip()})
        return matches

    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        prefix = _normalize(directory).rstrip("/") + "/" if directory else ""
        return sorted(p for p in self.files if p.startswith(prefix))

    async def run_command(self, command: str, directory: Optional[str] = None) -> Dict[str, object]:
        if self.sandbox is None:
            raise RuntimeError("No sandbox attached")
        result = await self.sandbox.run_command(command, cwd=directory)
        return result.to_dict()


def build_project_tools(workspace: ProjectWorkspace) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(Tool(
        "read_file", "Read a project file, optionally a line range. Lines are numbered.",
        workspace.read_file, ReadFileInput, display_name="Reading file",
    ))
    registry.register(Tool(
        "write_file", "Create a new file or overwrite an existing one with full content.",
        workspace.write_file, WriteFileInput, display_name="Writing file",
    ))
    registry.register(Tool(
        "edit_file", "Replace one exact, unique snippet of an existing file.",
        workspace.edit_file, EditFileInput, display_name="Editing file",
    ))
    registry.register(Tool(
        "append_to_file", "Append text to the end of an existing file.",
        workspace.append_to_file, AppendFileInput, display_name="Appending to file",
    ))
    registry.register(Tool(
        "delete_file", "Delete a project file.",
        workspace.delete_file, DeleteFileInput, display_name="Deleting file",
    ))
    registry.register(Tool(
        "search_code", "Search project files for text, optionally limited by a glob.",
        workspace.search_code, SearchCodeInput, display_name="Searching code",
    ))
    registry.register(Tool(
        "list_files", "List project files, optionally under one directory.",
        workspace.list_files, ListFilesInput, display_name="Listing files",
    ))
    if workspace.sandbox is not None:
        registry.register(Tool(
            "run_command", "Run a shell command in the preview sandbox.",
            workspace.run_command, RunCommandInput, display_name="Running command",
        ))
    return registry
