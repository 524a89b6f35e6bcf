"""EventBus for decoupled publish/subscribe communication."""

from enum import Enum, auto
from typing import Any, Callable
from collections import defaultdict


class EventType(Enum):
    # Fitting pipeline
    FIT_STARTED = auto()             # data: character (str), clothing (str)
    CORRESPONDENCE_BUILT = auto()    # data: mapped (int), missing (int), unmapped (int)
    ALIGNMENT_APPLIED = auto()       # data: aligned (int)
    ALIGNMENT_FAILED = auto()        # data: reason (str)
    PENETRATION_RESOLVED = auto()    # data: modified (bool), adjusted (int), report
    FIT_COMPLETE = auto()            # data: result

    # Human-readable status line for the UI collaborator
    STATUS = auto()                  # data: message (str)


class EventBus:
    """Simple publish/subscribe event system."""

    def __init__(self):
        self._handlers: dict[EventType, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Callable) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: Callable) -> None:
        handlers = self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: EventType, **data: Any) -> None:
        for handler in list(self._handlers[event_type]):
            handler(**data)

    def clear(self) -> None:
        self._handlers.clear()
