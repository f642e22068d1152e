"""Brace-balanced scanning and lenient decoding of JSON-ish model output.

Models emit JSON that is cut mid-stream, wrapped in prose, or loosely
quoted. Everything here works on raw text and never raises.
"""

import json
import logging
import re
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_][\w-]*)(\s*:)")
_SINGLE_QUOTED = re.compile(r"'((?:[^'\\\n]|\\.)*)'")


def scan_object(text: str, start: int = 0) -> Tuple[Optional[int], int]:
    """Find the end of the object that opens at the first ``{`` at or after ``start``.

    Braces inside quoted strings are ignored; a backslash escapes the next
    character inside a string. Both ``"`` and ``'`` open strings so loosely
    quoted objects are counted the same way as strict JSON.

    Returns:
        ``(end_index, depth)`` where ``end_index`` is the index of the closing
        brace, or ``None`` with the depth still open when the text ends first.
    """
    begin = text.find("{", start)
    if begin == -1:
        return None, 0

    depth = 0
    quote: Optional[str] = None
    escaped = False
    for i in range(begin, len(text)):
        ch = text[i]
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i, 0
    return None, depth


def brace_depth(text: str) -> int:
    """Net ``{``/``}`` depth of ``text`` counted outside quoted strings."""
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for ch in text:
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
    return depth


def is_complete_json(text: str) -> bool:
    """True when ``text`` is one object whose closing brace ends the text."""
    stripped = (text or "").strip()
    if not stripped.startswith("{"):
        return False
    end, _ = scan_object(stripped)
    return end == len(stripped) - 1


def repair_json(text: str) -> str:
    """Best-effort repair of loosely written JSON.

    Handles trailing commas, unquoted keys and single-quoted strings.
    """
    fixed = _SINGLE_QUOTED.sub(lambda m: json.dumps(m.group(1).replace("\\'", "'")), text)
    fixed = _UNQUOTED_KEY.sub(r'\1"\2"\3', fixed)
    fixed = _TRAILING_COMMA.sub(r"\1", fixed)
    return fixed


def loads_lenient(text: str) -> Optional[Any]:
    """Decode ``text`` as JSON, retrying once on the repaired form."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        pass
    try:
        return json.loads(repair_json(text))
    except (TypeError, ValueError) as e:
        logger.debug(f"Lenient JSON decode failed: {e}")
        return None
