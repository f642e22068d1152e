"""Tests for the offline CLI commands (extract, detect)."""

import pytest
from typer.testing import CliRunner

from pagegen.cli import app

runner = CliRunner()

OUTPUT = (
    "Here is your page.\n\n"
    "```tsx:app/page.tsx\n"
    "export default function HomePage() {\n  return <h1>Hi</h1>\n}\n"
    "```\n"
)


@pytest.fixture
def saved_output(tmp_path):
    path = tmp_path / "reply.md"
    path.write_text(OUTPUT, encoding="utf-8")
    return path


class TestExtractCommand:
    def test_lists_files_and_prose(self, saved_output):
        result = runner.invoke(app, ["extract", str(saved_output)])
        assert result.exit_code == 0
        assert "Here is your page." in result.output
        assert "app/page.tsx" in result.output

    def test_writes_files(self, saved_output, tmp_path):
        out = tmp_path / "site"
        result = runner.invoke(app, ["extract", str(saved_output), "--write", str(out)])
        assert result.exit_code == 0
        assert (out / "app" / "page.tsx").read_text(encoding="utf-8").startswith("export default")

    def test_no_files(self, tmp_path):
        path = tmp_path / "plain.md"
        path.write_text("Just some words.\n", encoding="utf-8")
        result = runner.invoke(app, ["extract", str(path)])
        assert result.exit_code == 0
        assert "No files found" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["extract", str(tmp_path / "missing.md")])
        assert result.exit_code == 1


class TestDetectCommand:
    def test_lists_calls(self, tmp_path):
        path = tmp_path / "calls.md"
        path.write_text('Let me look.\n[Tool:read_file]{"file_path": "a.ts"}\n', encoding="utf-8")
        result = runner.invoke(app, ["detect", str(path)])
        assert result.exit_code == 0
        assert "read_file" in result.output
        assert "complete" in result.output

    def test_nothing_found(self, tmp_path):
        path = tmp_path / "none.md"
        path.write_text("No tools here.", encoding="utf-8")
        result = runner.invoke(app, ["detect", str(path)])
        assert result.exit_code == 0
        assert "No tool calls found" in result.output
