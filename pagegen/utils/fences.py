"""Line tokenizer for markdown code fences.

A fence opens on a line that starts with three backticks and closes on the
next line that starts with (or ends with) three backticks. Whether a line
sits inside a fence depends only on the lines before it, so tokenizing a
prefix of a stream gives the same answer for those lines as tokenizing the
whole stream.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

FENCE = "```"

# Info strings that carry control data for the pipeline, never files
RESERVED_INFO_TAGS = frozenset({"HIDDEN_CONTROL"})


@dataclass(frozen=True)
class FencedBlock:
    """One fenced region of the text.

    ``start_line``/``end_line`` are inclusive line indices covering the fence
    markers. For an unterminated fence ``end_line`` is the last line of the
    text and ``closed`` is False.
    """
    info: str
    content: str
    start_line: int
    end_line: int
    closed: bool

    @property
    def tag(self) -> str:
        """First whitespace-separated token of the info string."""
        parts = self.info.split(None, 1)
        return parts[0] if parts else ""

    @property
    def info_rest(self) -> str:
        parts = self.info.split(None, 1)
        return parts[1] if len(parts) > 1 else ""

    @property
    def reserved(self) -> bool:
        return self.tag.upper() in RESERVED_INFO_TAGS


def _opening(line: str) -> Optional[str]:
    stripped = line.lstrip()
    if stripped.startswith(FENCE):
        return stripped[len(FENCE):].lstrip("`")
    return None


def _closing(line: str) -> Tuple[bool, str]:
    """Return (closes, content_before_marker) for a line inside a fence."""
    stripped = line.strip()
    if stripped.startswith(FENCE):
        return True, ""
    if stripped.endswith(FENCE):
        return True, line[:line.rindex(FENCE)]
    return False, line


def tokenize(text: str) -> List[FencedBlock]:
    """Split ``text`` into its fenced blocks in order of appearance."""
    return tokenize_lines((text or "").split("\n"))


def tokenize_lines(lines: List[str]) -> List[FencedBlock]:
    blocks: List[FencedBlock] = []
    i = 0
    n = len(lines)
    while i < n:
        rest = _opening(lines[i])
        if rest is None:
            i += 1
            continue

        # ```tag content``` on a single line
        if FENCE in rest:
            inner = rest[:rest.index(FENCE)]
            parts = inner.split(None, 1)
            info = parts[0] if parts else ""
            blocks.append(FencedBlock(
                info=info,
                content=parts[1] if len(parts) > 1 else "",
                start_line=i,
                end_line=i,
                closed=True,
            ))
            i += 1
            continue

        start = i
        body: List[str] = []
        closed = False
        i += 1
        while i < n:
            closes, before = _closing(lines[i])
            if closes:
                if before.strip():
                    body.append(before)
                closed = True
                break
            body.append(lines[i])
            i += 1

        blocks.append(FencedBlock(
            info=rest.strip(),
            content="\n".join(body),
            start_line=start,
            end_line=min(i, n - 1),
            closed=closed,
        ))
        i += 1
    return blocks


def fenced_line_indices(blocks: List[FencedBlock]) -> set:
    """All line indices covered by ``blocks``, markers included."""
    covered = set()
    for block in blocks:
        covered.update(range(block.start_line, block.end_line + 1))
    return covered
