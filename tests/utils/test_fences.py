"""Tests for the code fence tokenizer."""

from pagegen.utils.fences import fenced_line_indices, tokenize, tokenize_lines


class TestTokenize:
    def test_closed_block(self):
        blocks = tokenize("intro\n```tsx:app/page.tsx\nconst a = 1\n```\nafter")
        assert len(blocks) == 1
        block = blocks[0]
        assert block.info == "tsx:app/page.tsx"
        assert block.tag == "tsx:app/page.tsx"
        assert block.content == "const a = 1"
        assert (block.start_line, block.end_line) == (1, 3)
        assert block.closed

    def test_unterminated_block(self):
        blocks = tokenize("```js\nlet x = 1")
        assert len(blocks) == 1
        assert not blocks[0].closed
        assert blocks[0].end_line == 1
        assert blocks[0].content == "let x = 1"

    def test_single_line_block(self):
        block = tokenize("```js let x = 1```")[0]
        assert block.closed
        assert block.info == "js"
        assert block.content == "let x = 1"

    def test_closing_marker_at_line_end(self):
        block = tokenize("```css\nbody { margin: 0 }```\nnext")[0]
        assert block.closed
        assert block.content == "body { margin: 0 }"
        assert block.end_line == 1

    def test_info_rest_and_reserved(self):
        block = tokenize('```tsx filename="a.tsx"\nx\n```')[0]
        assert block.tag == "tsx"
        assert block.info_rest == 'filename="a.tsx"'
        assert not block.reserved

        control = tokenize("```HIDDEN_CONTROL\n{}\n```")[0]
        assert control.reserved

    def test_multiple_blocks_in_order(self):
        text = "```a\n1\n```\ntext\n```b\n2\n```"
        assert [b.tag for b in tokenize(text)] == ["a", "b"]

    def test_prefix_agrees_with_full_text(self):
        lines = "a\n```ts\nb\n```\nc".split("\n")
        full = fenced_line_indices(tokenize_lines(lines))
        for cut in range(1, len(lines) + 1):
            partial = fenced_line_indices(tokenize_lines(lines[:cut]))
            assert partial == {i for i in full if i < cut}


def test_fenced_line_indices_cover_markers():
    blocks = tokenize("x\n```\ny\n```\nz")
    assert fenced_line_indices(blocks) == {1, 2, 3}
