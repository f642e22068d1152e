"""Tests for brace scanning and lenient JSON decoding."""

from pagegen.utils.json_scan import (
    brace_depth,
    is_complete_json,
    loads_lenient,
    repair_json,
    scan_object,
)


class TestScanObject:
    def test_brace_inside_string_is_ignored(self):
        text = '{"a": "}"} tail'
        assert scan_object(text) == (9, 0)

    def test_escaped_quote_keeps_string_open(self):
        text = '{"a": "say \\"}\\" now"}'
        end, depth = scan_object(text)
        assert end == len(text) - 1
        assert depth == 0

    def test_unterminated_object_reports_depth(self):
        assert scan_object('{"a": {"b": 1}') == (None, 1)

    def test_no_object(self):
        assert scan_object("no braces here") == (None, 0)

    def test_start_offset(self):
        text = '{"x": 1} and {"y": 2}'
        end, _ = scan_object(text, start=5)
        assert text[end] == "}"
        assert end == len(text) - 1


class TestHelpers:
    def test_brace_depth_ignores_quoted_braces(self):
        assert brace_depth('{"x": "{{"') == 1
        assert brace_depth('{"x": {}}') == 0

    def test_is_complete_json(self):
        assert is_complete_json('{"a": 1}')
        assert is_complete_json('  {"a": {"b": [1, 2]}}  ')
        assert not is_complete_json('{"a": 1} trailing')
        assert not is_complete_json('{"a": 1')
        assert not is_complete_json("[1, 2]")
        assert not is_complete_json("")

    def test_repair_json(self):
        assert repair_json("{'a': 1, b: 2,}") == '{"a": 1, "b": 2}'


class TestLoadsLenient:
    def test_strict_json(self):
        assert loads_lenient('{"a": [1, 2]}') == {"a": [1, 2]}

    def test_loose_json_is_repaired(self):
        assert loads_lenient("{'a': 1, b: 'two',}") == {"a": 1, "b": "two"}

    def test_garbage_returns_none(self):
        assert loads_lenient("not json at all") is None
        assert loads_lenient("") is None
