"""Tests for versioned artifact sinks."""

import asyncio
import json

import pytest

from pagegen.system.artifacts import WorkspaceArtifactSink
from pagegen.system.state import CodeArtifact
from pagegen.utils.errors import ArtifactStorageError


def files(version):
    return [
        CodeArtifact("app/page.tsx", "tsx", f"export default function HomePage() {{ return {version} }}"),
        CodeArtifact("package.json", "json", '{"name": "site"}'),
    ]


class TestInMemoryArtifactSink:
    @pytest.mark.asyncio
    async def test_every_save_is_a_new_version(self, sink):
        first = await sink.save("s1", files(1), message="first")
        second = await sink.save("s1", files(2), message="second")

        assert first.commit_id != second.commit_id
        assert first.project_id == second.project_id
        assert await sink.history("s1") == [first.commit_id, second.commit_id]

        latest = await sink.load("s1")
        assert "return 2" in latest[0].content
        old = await sink.load("s1", first.commit_id)
        assert "return 1" in old[0].content

    @pytest.mark.asyncio
    async def test_unknown_commit(self, sink):
        await sink.save("s1", files(1))
        with pytest.raises(ArtifactStorageError):
            await sink.load("s1", "commit_missing")

    @pytest.mark.asyncio
    async def test_empty_session(self, sink):
        assert await sink.load("nobody") == []
        assert await sink.history("nobody") == []
        with pytest.raises(ArtifactStorageError):
            await sink.save("", files(1))

    @pytest.mark.asyncio
    async def test_concurrent_saves_all_recorded(self, sink):
        results = await asyncio.gather(*(sink.save("s1", files(i)) for i in range(5)))
        assert len({r.commit_id for r in results}) == 5
        assert len(await sink.history("s1")) == 5


class TestWorkspaceArtifactSink:
    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        sink = WorkspaceArtifactSink(tmp_path)
        saved = await sink.save("session/1", files(1), message="initial")

        session_dir = tmp_path / "session_1"
        assert (session_dir / saved.commit_id / "app" / "page.tsx").exists()
        manifest = json.loads((session_dir / "manifest.json").read_text())
        assert manifest["project_id"] == saved.project_id
        assert manifest["versions"][0]["message"] == "initial"

        loaded = await sink.load("session/1")
        assert [f.filename for f in loaded] == ["app/page.tsx", "package.json"]
        assert loaded[0].language == "tsx"

    @pytest.mark.asyncio
    async def test_versions_kept(self, tmp_path):
        sink = WorkspaceArtifactSink(tmp_path)
        first = await sink.save("s", files(1))
        await sink.save("s", files(2))
        assert len(await sink.history("s")) == 2
        assert "return 1" in (await sink.load("s", first.commit_id))[0].content

    @pytest.mark.asyncio
    async def test_refuses_paths_outside_version_dir(self, tmp_path):
        sink = WorkspaceArtifactSink(tmp_path / "projects")
        with pytest.raises(ArtifactStorageError):
            await sink.save("s", [CodeArtifact("../../evil.txt", "text", "x")])
        assert not (tmp_path / "evil.txt").exists()
