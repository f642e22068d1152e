"""Artifact sinks – versioned storage for generated project files.

Every ``save`` creates a new version (commit) rather than overwriting the
previous one. Writes for one session are serialised by a per-session lock;
different sessions never wait on each other.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pagegen.system.state import CodeArtifact
from pagegen.utils.errors import ArtifactStorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveResult:
    project_id: str
    commit_id: str


@dataclass(frozen=True)
class ArtifactVersion:
    commit_id: str
    timestamp: str
    files: List[CodeArtifact]
    message: str = ""


class ArtifactSink(ABC):
    """Consumer-side contract of the external project/file store."""

    @abstractmethod
    async def save(
        self, session_id: str, artifacts: List[CodeArtifact], message: str = ""
    ) -> SaveResult:
        ...

    @abstractmethod
    async def load(self, session_id: str, commit_id: Optional[str] = None) -> List[CodeArtifact]:
        """Files of ``commit_id``, or of the latest version when omitted."""

    @abstractmethod
    async def history(self, session_id: str) -> List[str]:
        """Commit ids, oldest first."""


class _LockingSink(ArtifactSink):
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._project_ids: Dict[str, str] = {}

    def _project_id(self, session_id: str) -> str:
        if session_id not in self._project_ids:
            self._project_ids[session_id] = f"proj_{uuid.uuid4().hex[:12]}"
        return self._project_ids[session_id]

    @staticmethod
    def _new_commit_id() -> str:
        return f"commit_{uuid.uuid4().hex[:12]}"


class InMemoryArtifactSink(_LockingSink):
    """Keeps every version in memory. Used by tests and local runs."""

    def __init__(self):
        super().__init__()
        self._versions: Dict[str, List[ArtifactVersion]] = defaultdict(list)

    async def save(
        self, session_id: str, artifacts: List[CodeArtifact], message: str = ""
    ) -> SaveResult:
        if not session_id:
            raise ArtifactStorageError("session_id is required to save artifacts")
        async with self._locks[session_id]:
            commit_id = self._new_commit_id()
            self._versions[session_id].append(ArtifactVersion(
                commit_id=commit_id,
                timestamp=datetime.now().isoformat(),
                files=list(artifacts),
                message=message,
            ))
            logger.info(f"Saved {len(artifacts)} file(s) for session {session_id} as {commit_id}")
            return SaveResult(project_id=self._project_id(session_id), commit_id=commit_id)

    async def load(self, session_id: str, commit_id: Optional[str] = None) -> List[CodeArtifact]:
        versions = self._versions.get(session_id) or []
        if not versions:
            return []
        if commit_id is None:
            return list(versions[-1].files)
        for version in versions:
            if version.commit_id == commit_id:
                return list(version.files)
        raise ArtifactStorageError(
            f"Unknown commit '{commit_id}' for session '{session_id}'",
            details={"session_id": session_id, "commit_id": commit_id},
        )

    async def history(self, session_id: str) -> List[str]:
        return [v.commit_id for v in self._versions.get(session_id) or []]


class WorkspaceArtifactSink(_LockingSink):
    """Writes each version under ``<root>/<session_id>/<commit_id>/``.

    A ``manifest.json`` per session lists the versions in order.
    """

    def __init__(self, root: Path):
        super().__init__()
        self.root = Path(root)

    def _session_dir(self, session_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in session_id)
        return self.root / safe

    def _read_manifest(self, session_id: str) -> Dict:
        manifest = self._session_dir(session_id) / "manifest.json"
        if not manifest.exists():
            return {"project_id": None, "versions": []}
        try:
            return json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ArtifactStorageError(f"Corrupt manifest for session '{session_id}': {e}") from e

    async def save(
        self, session_id: str, artifacts: List[CodeArtifact], message: str = ""
    ) -> SaveResult:
        async with self._locks[session_id]:
            manifest = self._read_manifest(session_id)
            project_id = manifest.get("project_id") or self._project_id(session_id)
            commit_id = self._new_commit_id()
            version_dir = self._session_dir(session_id) / commit_id
            try:
                for artifact in artifacts:
                    target = (version_dir / artifact.filename).resolve()
                    if version_dir.resolve() not in target.parents:
                        raise ArtifactStorageError(
                            f"Refusing to write outside the version directory: {artifact.filename}"
                        )
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_text(artifact.content, encoding="utf-8")
                manifest["project_id"] = project_id
                manifest["versions"].append({
                    "commit_id": commit_id,
                    "timestamp": datetime.now().isoformat(),
                    "message": message,
                    "files": [
                        {"filename": a.filename, "language": a.language, "description": a.description}
                        for a in artifacts
                    ],
                })
                manifest_path = self._session_dir(session_id) / "manifest.json"
                manifest_path.parent.mkdir(parents=True, exist_ok=True)
                manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
            except OSError as e:
                raise ArtifactStorageError(f"Failed to save artifacts: {e}") from e
            logger.info(f"Wrote {len(artifacts)} file(s) to {version_dir}")
            return SaveResult(project_id=project_id, commit_id=commit_id)

    async def load(self, session_id: str, commit_id: Optional[str] = None) -> List[CodeArtifact]:
        versions = self._read_manifest(session_id)["versions"]
        if not versions:
            return []
        entry = versions[-1] if commit_id is None else next(
            (v for v in versions if v["commit_id"] == commit_id), None
        )
        if entry is None:
            raise ArtifactStorageError(f"Unknown commit '{commit_id}' for session '{session_id}'")
        version_dir = self._session_dir(session_id) / entry["commit_id"]
        files = []
        for meta in entry["files"]:
            content = (version_dir / meta["filename"]).read_text(encoding="utf-8")
            files.append(CodeArtifact(
                filename=meta["filename"],
                language=meta["language"],
                content=content,
                description=meta.get("description"),
            ))
        return files

    async def history(self, session_id: str) -> List[str]:
        return [v["commit_id"] for v in self._read_manifest(session_id)["versions"]]
