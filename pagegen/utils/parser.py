# Detects tool invocations that a model wrote into its text output instead of
# using the native tool-calling channel.
#
# Accepted spellings:
#   {"type": "tool_use", "id": "...", "name": "...", "input": {...}}
#   {type: 'tool_use', name: 'x', input: {...}}     (loosely quoted)
#   "type": "tool_use", "name": ...                 (object opener cut off)
#   {"name": "x", "arguments": {...}}               (OpenAI style)
#   [Tool:name]{"param": "value"}                   (bracket shorthand)

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from pagegen.system.state import ToolInvocationRequest
from pagegen.utils.json_scan import loads_lenient, scan_object

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 50
_OPENER_LOOKBACK_LINES = 5

_TOOL_USE = re.compile(r"""["']?type["']?\s*:\s*["']tool_use["']""")
_NAME_FIRST = re.compile(
    r"""\{\s*["']?name["']?\s*:\s*["'][\w.\-]+["']\s*,\s*["']?(?:input|arguments|parameters)["']?\s*:"""
)
_SHORTHAND = re.compile(r"\[Tool:\s*([\w.\-]+)\s*\]")

_NAME = re.compile(r"""["']?name["']?\s*:\s*["']([\w.\-]+)["']""")
_ID = re.compile(r"""["']?id["']?\s*:\s*["']([^"']+)["']""")

_INPUT_KEYS = ("input", "arguments", "parameters")


@dataclass
class DetectionResult:
    calls: List[ToolInvocationRequest] = field(default_factory=list)
    text_blocks: List[str] = field(default_factory=list)
    has_partial: bool = False

    @property
    def complete_calls(self) -> List[ToolInvocationRequest]:
        return [c for c in self.calls if not c.partial]

    @property
    def partial_calls(self) -> List[ToolInvocationRequest]:
        return [c for c in self.calls if c.partial]

    @property
    def text(self) -> str:
        return "\n".join(self.text_blocks)


def derive_call_id(name: str, params: Dict[str, Any]) -> str:
    """Stable id for calls that arrive without one, so re-delivery is recognised."""
    canonical = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.sha1(f"{name}:{canonical}".encode("utf-8")).hexdigest()
    return f"toolu_{digest[:12]}"


def _enclosing_brace(text: str, line_start: int, pos: int) -> Optional[int]:
    """Innermost ``{`` still open at ``pos``, searching from ``line_start``."""
    stack: List[int] = []
    in_string = False
    escaped = False
    for i in range(line_start, pos):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append(i)
        elif ch == "}" and stack:
            stack.pop()
    return stack[-1] if stack else None


class ToolCallDetector:
    """Find complete and in-flight tool calls in free-form model output.

    A call is complete once its object's braces balance outside of quoted
    strings and it decodes to something with a name and an input mapping.
    Anything still open after ``max_lines`` lines, or that fails to decode,
    is reported with ``partial=True`` and must not be executed.
    """

    def __init__(self, max_lines: int = DEFAULT_MAX_LINES):
        self.max_lines = max_lines

    def parse(self, text: str) -> DetectionResult:
        try:
            return self._parse(text or "")
        except Exception as e:
            logger.warning(f"Tool call detection failed, treating output as text: {e}")
            return DetectionResult(text_blocks=[text] if text else [])

    # ------------------------------------------------------------------

    def _find_start(self, text: str, pos: int) -> Optional[Tuple[int, int, Optional[str], bool]]:
        """Earliest call start at or after ``pos``.

        Returns ``(start, object_start, shorthand_name, synthetic_brace)``.
        ``start`` is where the call's text begins; ``object_start`` is where
        brace scanning begins.
        """
        candidates: List[Tuple[int, int, Optional[str], bool]] = []

        for match in _TOOL_USE.finditer(text, pos):
            brace = None
            line_start = match.start()
            # The opener may sit a few lines up when the object is pretty-printed
            for _ in range(_OPENER_LOOKBACK_LINES):
                line_start = text.rfind("\n", 0, max(line_start - 1, 0)) + 1
                brace = _enclosing_brace(text, max(line_start, pos), match.start())
                if brace is not None or line_start <= pos:
                    break
            if brace is not None:
                candidates.append((brace, brace, None, False))
            else:
                candidates.append((match.start(), match.start(), None, True))
            break

        match = _NAME_FIRST.search(text, pos)
        if match:
            candidates.append((match.start(), match.start(), None, False))

        match = _SHORTHAND.search(text, pos)
        if match:
            candidates.append((match.start(), match.end(), match.group(1), False))

        if not candidates:
            return None
        return min(candidates, key=lambda c: c[0])

    def _window_end(self, text: str, start: int) -> int:
        end = start
        for _ in range(self.max_lines):
            nl = text.find("\n", end)
            if nl == -1:
                return len(text)
            end = nl + 1
        return end

    def _parse(self, text: str) -> DetectionResult:
        result = DetectionResult()
        seen: Set[str] = set()
        pos = 0

        while pos < len(text):
            found = self._find_start(text, pos)
            if found is None:
                break
            start, obj_start, shorthand, synthetic = found

            before = text[pos:start].strip()
            if before:
                result.text_blocks.append(before)

            if shorthand is not None:
                call, pos = self._shorthand_call(text, obj_start, shorthand)
            else:
                call, pos = self._object_call(text, obj_start, synthetic)

            if call is None:
                continue
            if call.partial:
                result.has_partial = True
                logger.debug(f"Partial tool call in flight: {call.name or '<unknown>'}")
            elif call.id in seen:
                logger.debug(f"Duplicate tool call id skipped: {call.id}")
                continue
            else:
                seen.add(call.id)
            result.calls.append(call)

        tail = text[pos:].strip()
        if tail:
            result.text_blocks.append(tail)
        return result

    def _object_call(
        self, text: str, obj_start: int, synthetic: bool
    ) -> Tuple[Optional[ToolInvocationRequest], int]:
        window_end = self._window_end(text, obj_start)
        window = text[obj_start:window_end]
        if synthetic:
            window = "{" + window
        end, _ = scan_object(window)

        if end is None:
            return self._partial(window, None), window_end

        consumed = obj_start + end + (0 if synthetic else 1)
        payload = loads_lenient(window[:end + 1])
        call = self._validate(payload)
        if call is None:
            return self._partial(window[:end + 1], None), consumed
        return call, consumed

    def _shorthand_call(
        self, text: str, after_tag: int, name: str
    ) -> Tuple[Optional[ToolInvocationRequest], int]:
        rest = text[after_tag:]
        stripped = rest.lstrip()
        if not stripped:
            # Tag seen, parameters not streamed yet
            return self._partial("", name), len(text)
        if not stripped.startswith("{"):
            params: Dict[str, Any] = {}
            return ToolInvocationRequest(
                id=derive_call_id(name, params), name=name, input=params
            ), after_tag

        obj_start = after_tag + (len(rest) - len(stripped))
        window_end = self._window_end(text, obj_start)
        window = text[obj_start:window_end]
        end, _ = scan_object(window)
        if end is None:
            return self._partial(window, name), window_end

        params = loads_lenient(window[:end + 1])
        consumed = obj_start + end + 1
        if not isinstance(params, dict):
            return self._partial(window[:end + 1], name), consumed
        return ToolInvocationRequest(
            id=derive_call_id(name, params), name=name, input=params
        ), consumed

    def _validate(self, payload: Any) -> Optional[ToolInvocationRequest]:
        if not isinstance(payload, dict):
            return None
        if "type" in payload and payload.get("type") != "tool_use":
            return None
        name = payload.get("name")
        if not isinstance(name, str) or not name:
            return None

        params: Any = None
        for key in _INPUT_KEYS:
            if key in payload:
                params = payload[key]
                break
        else:
            return None
        if isinstance(params, str):
            params = loads_lenient(params) if params.strip() else {}
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return None

        call_id = payload.get("id")
        if not isinstance(call_id, str) or not call_id:
            call_id = derive_call_id(name, params)
        return ToolInvocationRequest(id=call_id, name=name, input=params)

    @staticmethod
    def _partial(fragment: str, name: Optional[str]) -> ToolInvocationRequest:
        if name is None:
            match = _NAME.search(fragment)
            name = match.group(1) if match else ""
        id_match = _ID.search(fragment)
        call_id = id_match.group(1) if id_match else f"partial_{name or 'unknown'}"
        return ToolInvocationRequest(id=call_id, name=name, input={}, partial=True)


def parse_tool_calls(text: str) -> DetectionResult:
    return ToolCallDetector().parse(text)


class StreamingToolCallTracker:
    """Feed a growing stream buffer and get each complete call exactly once."""

    def __init__(self, detector: Optional[ToolCallDetector] = None):
        self.detector = detector or ToolCallDetector()
        self._buffer = ""
        self._returned: Set[str] = set()
        self.has_partial = False

    def feed(self, delta: str) -> List[ToolInvocationRequest]:
        self._buffer += delta or ""
        result = self.detector.parse(self._buffer)
        self.has_partial = result.has_partial
        fresh = []
        for call in result.complete_calls:
            if call.id in self._returned:
                continue
            self._returned.add(call.id)
            fresh.append(call)
        return fresh

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def returned_ids(self) -> Set[str]:
        return set(self._returned)
