"""Reader for hidden control blocks.

The collection prompt asks the model to append a machine-readable block to
each reply::

    ```HIDDEN_CONTROL
    {"collection_status": "CONTINUE", "collected_data": {...}, ...}
    ```

The block is never shown to the user (the extractor removes it from prose
and never turns it into a file). It tells the stage whether the model
believes enough has been collected and what it extracted so far.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pagegen.utils.fences import tokenize
from pagegen.utils.json_scan import is_complete_json, loads_lenient

logger = logging.getLogger(__name__)


class CollectionStatus(Enum):
    CONTINUE = "CONTINUE"
    READY_TO_ADVANCE = "READY_TO_ADVANCE"
    NEED_CLARIFICATION = "NEED_CLARIFICATION"


@dataclass
class ControlBlock:
    status: CollectionStatus = CollectionStatus.CONTINUE
    user_type: Optional[str] = None
    collected_data: Dict[str, Any] = field(default_factory=dict)
    confidence_level: Optional[str] = None
    reasoning: Optional[str] = None
    next_focus: Optional[str] = None
    collection_summary: Optional[Dict[str, Any]] = None

    @property
    def ready(self) -> bool:
        return self.status is CollectionStatus.READY_TO_ADVANCE


def read_control_block(text: str) -> Optional[ControlBlock]:
    """Return the last complete control block in ``text``, if any.

    Unterminated blocks and blocks whose JSON is still open are ignored;
    loosely written JSON is repaired once before giving up.
    """
    found: Optional[ControlBlock] = None
    for block in tokenize(text):
        if not block.reserved or not block.closed:
            continue
        payload_text = f"{block.info_rest}\n{block.content}".strip()
        if not is_complete_json(payload_text):
            logger.debug("Control block JSON incomplete, ignoring")
            continue
        payload = loads_lenient(payload_text)
        if not isinstance(payload, dict):
            logger.warning("Control block could not be decoded, ignoring")
            continue
        found = _from_payload(payload)
    return found


def _from_payload(payload: Dict[str, Any]) -> ControlBlock:
    raw_status = str(payload.get("collection_status", "CONTINUE")).upper()
    try:
        status = CollectionStatus(raw_status)
    except ValueError:
        logger.debug(f"Unknown collection_status {raw_status!r}, treating as CONTINUE")
        status = CollectionStatus.CONTINUE

    collected = payload.get("collected_data")
    summary = payload.get("collection_summary")
    return ControlBlock(
        status=status,
        user_type=payload.get("user_type"),
        collected_data=collected if isinstance(collected, dict) else {},
        confidence_level=payload.get("confidence_level"),
        reasoning=payload.get("reasoning"),
        next_focus=payload.get("next_focus"),
        collection_summary=summary if isinstance(summary, dict) else None,
    )
