"""Separate model output into user-facing prose and generated files.

Files are pulled out of fenced code blocks by an ordered list of naming
strategies. Strategies are fallbacks, not cumulative: the first one that
names at least one block wins and the rest are not consulted. When none of
them match, a last-resort pass names every sizeable block synthetically.

Prose is whatever remains outside the fences, cleaned line by line. Because
each line's fate depends only on the lines before it, the prose of a text
prefix is always a prefix of the prose of the full text; the stream
assembler relies on that.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pagegen.system.state import CodeArtifact
from pagegen.utils.fences import FencedBlock, fenced_line_indices, tokenize_lines
from pagegen.utils.filenames import (
    infer_filename,
    language_from_extension,
    looks_like_path,
)

logger = logging.getLogger(__name__)


class StrategyKind(Enum):
    LANGUAGE_PATH_HEADER = "language_path_header"  # ```ts:app/page.tsx
    FILENAME_ATTRIBUTE = "filename_attribute"      # ```tsx filename="app/page.tsx"
    PATH_INFO_STRING = "path_info_string"          # ```app/page.tsx
    LANGUAGE_ONLY = "language_only"                # ```tsx, name inferred from content
    PRECEDING_LABEL = "preceding_label"            # **app/page.tsx** / ## app/page.tsx / app/page.tsx:
    LAST_RESORT = "last_resort"


# Most specific first. LAST_RESORT is never part of the order; it only runs
# when every strategy here found nothing.
DEFAULT_STRATEGY_ORDER: Tuple[StrategyKind, ...] = (
    StrategyKind.LANGUAGE_PATH_HEADER,
    StrategyKind.FILENAME_ATTRIBUTE,
    StrategyKind.PATH_INFO_STRING,
    StrategyKind.LANGUAGE_ONLY,
    StrategyKind.PRECEDING_LABEL,
)

LAST_RESORT_MIN_CHARS = 10

_LANG_PATH = re.compile(r"^([A-Za-z][\w+#-]*):(?!//)(\S+)(?:\s+(.*))?$")
_FILENAME_ATTR = re.compile(r"""\b(?:filename|file|path|title)\s*=\s*["']?([^"'\s]+)["']?""")
_LANG_TAG = re.compile(r"^[A-Za-z][\w+#-]*$")

_LABELS = (
    re.compile(r"^#{1,6}\s+`?([^\s`]+?)`?\s*:?\s*$"),
    re.compile(r"^\*\*`?([^\s`*]+?)`?\*\*\s*:?\s*$"),
    re.compile(r"^`?([^\s`#*]+?)`?:\s*$"),
)

# Prose clean-up
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_BOLD_FILENAME = re.compile(r"\*\*`?([\w@./\-\[\]]+\.[A-Za-z0-9]+)`?\*\*")
_BARE_HEADER = re.compile(r"^[A-Za-z][\w+#-]*:(?!//)\S*[./]\S*$")
_MARKERS_ONLY = re.compile(r"^[\s#*>_=~|`\-–—•.:;,()\[\]]*$")
_NUMBERING_ONLY = re.compile(r"^\d+[.)]?$")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ExtractionResult:
    prose: str
    files: List[CodeArtifact] = field(default_factory=list)
    strategy: Optional[StrategyKind] = None


def _clean_filename(name: str) -> str:
    name = name.strip().strip("#*`'\" ").strip()
    if name.startswith("./"):
        name = name[2:]
    return name


def _artifact(filename: str, language: str, content: str) -> Optional[CodeArtifact]:
    filename = _clean_filename(filename)
    content = content.strip()
    if not filename or not content:
        return None
    language = language or language_from_extension(filename)
    return CodeArtifact(
        filename=filename,
        language=language,
        content=content,
        description=f"Extracted {language} file",
    )


# ---------------------------------------------------------------------------
# Strategies. Each one looks at a single closed block and either names it or
# returns None.
# ---------------------------------------------------------------------------

def _language_path_header(block: FencedBlock, lines: Sequence[str]) -> Optional[CodeArtifact]:
    match = _LANG_PATH.match(block.info)
    if not match:
        return None
    language, path, same_line = match.groups()
    if not looks_like_path(path):
        return None
    content = block.content
    if same_line:
        content = f"{same_line}\n{content}"
    return _artifact(path, language, content)


def _filename_attribute(block: FencedBlock, lines: Sequence[str]) -> Optional[CodeArtifact]:
    match = _FILENAME_ATTR.search(block.info)
    if not match:
        return None
    path = match.group(1)
    tag = block.tag if _LANG_TAG.match(block.tag) else ""
    return _artifact(path, tag, block.content)


def _path_info_string(block: FencedBlock, lines: Sequence[str]) -> Optional[CodeArtifact]:
    tag = block.tag
    if "." not in tag or "/" not in tag or not looks_like_path(tag):
        return None
    return _artifact(tag, language_from_extension(tag), block.content)


def _language_only(block: FencedBlock, lines: Sequence[str]) -> Optional[CodeArtifact]:
    tag = block.tag
    if not tag or not _LANG_TAG.match(tag):
        return None
    return _artifact(infer_filename(block.content, tag), tag, block.content)


def _preceding_label(block: FencedBlock, lines: Sequence[str]) -> Optional[CodeArtifact]:
    idx = block.start_line - 1
    while idx >= 0 and not lines[idx].strip():
        idx -= 1
    if idx < 0:
        return None
    label = lines[idx].strip()
    for pattern in _LABELS:
        match = pattern.match(label)
        if match and looks_like_path(_clean_filename(match.group(1))):
            path = match.group(1)
            tag = block.tag if _LANG_TAG.match(block.tag) else ""
            return _artifact(path, tag, block.content)
    return None


_STRATEGIES: Dict[StrategyKind, Callable[[FencedBlock, Sequence[str]], Optional[CodeArtifact]]] = {
    StrategyKind.LANGUAGE_PATH_HEADER: _language_path_header,
    StrategyKind.FILENAME_ATTRIBUTE: _filename_attribute,
    StrategyKind.PATH_INFO_STRING: _path_info_string,
    StrategyKind.LANGUAGE_ONLY: _language_only,
    StrategyKind.PRECEDING_LABEL: _preceding_label,
}


def apply_strategy(
    kind: StrategyKind, blocks: Sequence[FencedBlock], lines: Sequence[str]
) -> List[CodeArtifact]:
    """Run one strategy over all closed, non-reserved blocks, deduplicating by filename."""
    if kind is StrategyKind.LAST_RESORT:
        return _last_resort(blocks)
    strategy = _STRATEGIES[kind]
    files: List[CodeArtifact] = []
    seen = set()
    for block in blocks:
        if not block.closed or block.reserved:
            continue
        artifact = strategy(block, lines)
        if artifact is None:
            continue
        if artifact.filename in seen:
            logger.debug(f"[{kind.value}] Duplicate file skipped: {artifact.filename}")
            continue
        seen.add(artifact.filename)
        files.append(artifact)
    return files


def _last_resort(blocks: Sequence[FencedBlock]) -> List[CodeArtifact]:
    files: List[CodeArtifact] = []
    seen = set()
    closed = [b for b in blocks if b.closed and not b.reserved]
    for n, block in enumerate(closed, start=1):
        content = block.content.strip()
        if len(content) <= LAST_RESORT_MIN_CHARS:
            continue
        tag = block.tag if _LANG_TAG.match(block.tag) else ""
        inferred = infer_filename(content, block.tag or "auto")
        filename = f"extracted-{n}-{inferred.rsplit('/', 1)[-1]}"
        if filename in seen:
            continue
        seen.add(filename)
        files.append(CodeArtifact(
            filename=filename,
            language=tag or language_from_extension(inferred),
            content=content,
            description=f"Extracted from code block {n}",
        ))
    return files


def clean_prose_line(line: str) -> str:
    """Clean one line outside any fence. Returns '' when the line should be dropped."""
    line = _INLINE_CODE.sub("", line)
    line = _BOLD_FILENAME.sub(r"\1", line)
    # A stray fence marker mid-line must never become a fence on re-extraction
    line = line.replace("```", "")
    line = _WHITESPACE.sub(" ", line).strip()
    if not line:
        return ""
    if _MARKERS_ONLY.match(line) or _NUMBERING_ONLY.match(line):
        return ""
    if _BARE_HEADER.match(line):
        return ""
    for pattern in _LABELS:
        match = pattern.match(line)
        if match and looks_like_path(_clean_filename(match.group(1))):
            return ""
    if looks_like_path(line):
        return ""
    return line


def summarize_files(files: Sequence[CodeArtifact]) -> str:
    listing = "\n".join(f"• {f.filename}" for f in files)
    return f"Generated {len(files)} file(s):\n{listing}"


class CodeFileExtractor:
    """Split text into prose and :class:`CodeArtifact` files.

    Args:
        strategies: Naming strategies tried in order. Defaults to
            :data:`DEFAULT_STRATEGY_ORDER`.
    """

    def __init__(self, strategies: Sequence[StrategyKind] = DEFAULT_STRATEGY_ORDER):
        self.strategies = tuple(k for k in strategies if k is not StrategyKind.LAST_RESORT)

    def prose_lines(self, lines: Sequence[str]) -> List[str]:
        """Cleaned prose lines for ``lines``, fence regions removed."""
        covered = fenced_line_indices(tokenize_lines(list(lines)))
        kept: List[str] = []
        for idx, line in enumerate(lines):
            if idx in covered:
                continue
            cleaned = clean_prose_line(line)
            if cleaned:
                kept.append(cleaned)
        return kept

    def files_from_lines(self, lines: Sequence[str]) -> Tuple[List[CodeArtifact], Optional[StrategyKind]]:
        blocks = tokenize_lines(list(lines))
        if not blocks:
            return [], None
        for kind in self.strategies:
            files = apply_strategy(kind, blocks, lines)
            if files:
                logger.debug(f"[EXTRACT] {kind.value} produced {len(files)} file(s)")
                return files, kind
        files = _last_resort(blocks)
        if files:
            logger.debug(f"[EXTRACT] last resort produced {len(files)} file(s)")
            return files, StrategyKind.LAST_RESORT
        return [], None

    def extract(self, text: str) -> ExtractionResult:
        """Extract prose and files from ``text``. Never raises."""
        try:
            lines = (text or "").split("\n")
            files, strategy = self.files_from_lines(lines)
            prose = "\n".join(self.prose_lines(lines))
            if not prose and files:
                prose = summarize_files(files)
            return ExtractionResult(prose=prose, files=files, strategy=strategy)
        except Exception as e:
            logger.warning(f"[EXTRACT] Extraction failed, returning raw text: {e}")
            return ExtractionResult(prose=text or "", files=[])


_default_extractor = CodeFileExtractor()


def extract(text: str) -> ExtractionResult:
    return _default_extractor.extract(text)
