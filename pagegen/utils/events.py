"""
Event system for PageGen.

Provides a central event bus for publishing and subscribing to stage and
tool progress events. The pipeline and the multi-step coordinator publish
here so that a UI layer can follow progress without being wired into
either of them.
"""

from typing import Callable, Dict, List, Optional, TypeVar, Union, Awaitable
from collections import defaultdict
from enum import Enum, auto
import asyncio
import inspect
import logging
import weakref

logger = logging.getLogger(__name__)

T = TypeVar('T')
EventHandler = Union[Callable[[T], None], Callable[[T], Awaitable[None]]]


class EventPriority(Enum):
    """Priority levels for event handling."""
    HIGH = auto()
    NORMAL = auto()
    LOW = auto()


class EventBus:
    """
    Central event bus for PageGen events.

    Features:
    - Supports both sync and async subscribers
    - Prioritized event handling
    - Weak references so subscribers can be garbage collected
    """

    _instance = None

    @classmethod
    def get_instance(cls) -> "EventBus":
        """Get or create the singleton instance of EventBus."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self):
        self._handlers: Dict[str, Dict[EventPriority, List[weakref.ref]]] = defaultdict(
            lambda: {
                EventPriority.HIGH: [],
                EventPriority.NORMAL: [],
                EventPriority.LOW: []
            }
        )
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(event_type: Union[str, Enum]) -> str:
        return event_type.value if isinstance(event_type, Enum) else event_type

    def subscribe(
        self,
        event_type: Union[str, Enum],
        handler: EventHandler[T],
        priority: EventPriority = EventPriority.NORMAL
    ) -> None:
        """
        Subscribe to an event with a handler function.

        Args:
            event_type: The name/type of the event
            handler: The function to call when event occurs (sync or async)
            priority: Execution priority for this handler
        """
        # Bound methods need WeakMethod, a plain ref to them dies immediately
        if inspect.ismethod(handler):
            handler_ref = weakref.WeakMethod(handler)
        else:
            handler_ref = weakref.ref(handler)

        key = self._key(event_type)
        self._handlers[key][priority].append(handler_ref)
        logger.debug(f"Subscribed to {key} with {priority.name} priority")

    def unsubscribe(self, event_type: Union[str, Enum], handler: EventHandler[T]) -> None:
        key = self._key(event_type)
        if key not in self._handlers:
            return

        for priority in EventPriority:
            self._handlers[key][priority] = [
                h_ref for h_ref in self._handlers[key][priority]
                if h_ref() is not None and h_ref() != handler
            ]

        logger.debug(f"Unsubscribed from {key}")

    async def publish(self, event_type: Union[str, Enum], data: Optional[T] = None) -> None:
        """
        Publish an event to all subscribers.

        Handler failures are logged and never propagate to the publisher.
        """
        key = self._key(event_type)
        if key not in self._handlers:
            return

        async with self._lock:
            for priority in [EventPriority.HIGH, EventPriority.NORMAL, EventPriority.LOW]:
                handlers = []
                for handler_ref in list(self._handlers[key][priority]):
                    handler = handler_ref()
                    if handler is not None:
                        handlers.append(handler)
                    else:
                        self._handlers[key][priority].remove(handler_ref)

                for handler in handlers:
                    try:
                        result = handler(data)
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        logger.error(f"Error in event handler for {key}: {e}")

    def clear_all_handlers(self) -> None:
        """Clear all event handlers - useful for testing."""
        self._handlers.clear()

    def get_subscriber_count(self, event_type: Union[str, Enum]) -> int:
        key = self._key(event_type)
        if key not in self._handlers:
            return 0

        count = 0
        for priority in EventPriority:
            count += sum(1 for h_ref in self._handlers[key][priority] if h_ref() is not None)
        return count


class StageEvent(Enum):
    """Stage lifecycle events published by the pipeline."""
    ENTERED = "stage_entered"          # New stage state created
    TURN_COMPLETED = "turn_completed"  # One user turn processed
    ADVANCED = "stage_advanced"        # Completeness threshold reached
    FORCED = "stage_forced"            # Turn ceiling reached, forced forward
    FAILED = "stage_failed"            # Fatal LLM failure during a turn


class ToolEvent(Enum):
    """Tool execution events published by the multi-step coordinator."""
    STARTED = "tool_started"
    COMPLETED = "tool_completed"
    FAILED = "tool_failed"
    STEP_COMPLETED = "step_completed"  # One coordinator round finished
