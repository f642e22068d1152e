"""Tests for tool calls written into model text.

Test strategies:
1. Accepted spellings: canonical object, loose quoting, cut-off opener,
   OpenAI style and the [Tool:name] shorthand
2. Brace balance ignores braces inside strings
3. Partial calls are reported but never complete
4. Streaming: each complete call is returned exactly once
"""

import pytest

from pagegen.utils.parser import (
    StreamingToolCallTracker,
    ToolCallDetector,
    derive_call_id,
    parse_tool_calls,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def detector():
    return ToolCallDetector()


# =============================================================================
# COMPLETE CALLS
# =============================================================================

class TestCompleteCalls:
    def test_brace_inside_string_value(self, detector):
        result = detector.parse('{"type":"tool_use","name":"x","input":{"a":"}"}}')
        assert len(result.calls) == 1
        call = result.calls[0]
        assert not call.partial
        assert call.name == "x"
        assert call.input == {"a": "}"}
        assert not result.has_partial

    def test_explicit_id_is_kept(self, detector):
        text = '{"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {"file_path": "a.ts"}}'
        call = detector.parse(text).calls[0]
        assert call.id == "toolu_1"
        assert call.input == {"file_path": "a.ts"}

    def test_surrounding_text_is_preserved(self, detector):
        text = (
            'Let me check.\n'
            '{"type": "tool_use", "name": "list_files", "input": {}}\n'
            'Done.'
        )
        result = detector.parse(text)
        assert [c.name for c in result.complete_calls] == ["list_files"]
        assert result.text_blocks == ["Let me check.", "Done."]
        assert result.text == "Let me check.\nDone."

    def test_pretty_printed_object(self, detector):
        text = '{\n  "type": "tool_use",\n  "name": "search_code",\n  "input": {"query": "Hero"}\n}'
        result = detector.parse(text)
        assert len(result.complete_calls) == 1
        assert result.complete_calls[0].input == {"query": "Hero"}

    def test_loosely_quoted_object(self, detector):
        result = detector.parse("{type: 'tool_use', name: 'x', input: {a: 1}}")
        assert len(result.complete_calls) == 1
        assert result.complete_calls[0].input == {"a": 1}

    def test_cut_off_opener(self, detector):
        result = detector.parse('"type": "tool_use", "name": "x", "input": {}}')
        assert len(result.complete_calls) == 1
        assert result.complete_calls[0].name == "x"

    def test_openai_style(self, detector):
        result = detector.parse('{"name": "list_files", "arguments": {"directory": "app"}}')
        assert result.complete_calls[0].name == "list_files"
        assert result.complete_calls[0].input == {"directory": "app"}

    def test_shorthand(self, detector):
        result = detector.parse('I will read it. [Tool:read_file]{"file_path": "app/page.tsx"}')
        call = result.complete_calls[0]
        assert call.name == "read_file"
        assert call.id == derive_call_id("read_file", {"file_path": "app/page.tsx"})
        assert result.text_blocks == ["I will read it."]

    def test_shorthand_without_parameters(self, detector):
        result = detector.parse("[Tool:list_files] then more text")
        assert result.complete_calls[0].input == {}
        assert "then more text" in result.text

    def test_duplicate_calls_reported_once(self, detector):
        text = '[Tool:list_files]{"directory": "app"}\n[Tool:list_files]{"directory": "app"}'
        assert len(detector.parse(text).calls) == 1

    def test_other_json_is_text(self, detector):
        result = detector.parse('{"layout": "grid"}')
        assert result.calls == []
        assert result.text == '{"layout": "grid"}'


# =============================================================================
# PARTIAL CALLS
# =============================================================================

class TestPartialCalls:
    def test_unclosed_object(self, detector):
        result = detector.parse('{"type": "tool_use", "name": "write_file", "input": {"content": "abc')
        assert result.has_partial
        assert result.complete_calls == []
        assert result.partial_calls[0].name == "write_file"

    def test_shorthand_tag_without_parameters_yet(self, detector):
        result = detector.parse("[Tool:list_files]")
        assert result.has_partial
        assert result.partial_calls[0].id == "partial_list_files"

    def test_unclosed_beyond_line_window(self):
        detector = ToolCallDetector(max_lines=2)
        text = '{"type": "tool_use", "name": "w", "input": {\n"a": 1,\n"b": 2,\n"c": 3}}'
        result = detector.parse(text)
        assert result.complete_calls == []
        assert result.has_partial


def test_parse_tool_calls_plain_text():
    result = parse_tool_calls("Nothing to run here.")
    assert result.calls == []
    assert result.text == "Nothing to run here."


def test_derive_call_id_is_stable():
    assert derive_call_id("x", {"a": 1, "b": 2}) == derive_call_id("x", {"b": 2, "a": 1})
    assert derive_call_id("x", {"a": 1}) != derive_call_id("x", {"a": 2})
    assert derive_call_id("x", {}).startswith("toolu_")


# =============================================================================
# STREAMING
# =============================================================================

class TestStreamingTracker:
    def test_call_returned_once_when_complete(self):
        tracker = StreamingToolCallTracker()
        assert tracker.feed('Reading. [Tool:read_file]{"file_pa') == []
        assert tracker.has_partial

        calls = tracker.feed('th": "a.ts"}')
        assert [c.name for c in calls] == ["read_file"]
        assert not tracker.has_partial

        assert tracker.feed(" and that is all.") == []
        assert tracker.returned_ids == {calls[0].id}
