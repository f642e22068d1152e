from .errors import PageGenError, error_handler
from .events import EventBus, EventPriority, StageEvent, ToolEvent
from .logs import setup_logger

__all__ = [
    "PageGenError",
    "error_handler",
    "EventBus",
    "EventPriority",
    "StageEvent",
    "ToolEvent",
    "setup_logger",
]
