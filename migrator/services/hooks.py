"""Lifecycle hook registry exposed to add-on handlers."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..errors import HookAbortError
from ..models.record import Record

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    BEFORE_RUN = "before_run"
    BEFORE_OBJECT = "before_object"
    AFTER_OBJECT_DATA_RETRIEVED = "after_object_data_retrieved"
    BEFORE_OBJECT_WRITE = "before_object_write"
    AFTER_OBJECT_WRITE = "after_object_write"
    AFTER_RUN = "after_run"


@dataclass
class HookContext:
    """What a handler receives. ``records`` is the live record list and may be edited."""
    event: HookEvent
    object_name: Optional[str] = None
    records: Optional[List[Record]] = None
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HookResult:
    abort: bool = False
    message: str = ""


HookHandler = Callable[[HookContext], Optional[HookResult]]


class HookRegistry:
    """
    Table of handlers per lifecycle event.

    Handlers run in registration order. A handler that returns
    ``HookResult(abort=True)`` stops the run.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._handlers: Dict[HookEvent, List[HookHandler]] = {event: [] for event in HookEvent}

    def register(self, event: HookEvent, handler: HookHandler) -> None:
        self._handlers[HookEvent(event)].append(handler)

    def unregister(self, event: HookEvent, handler: HookHandler) -> None:
        self._handlers[HookEvent(event)].remove(handler)

    def has_handlers(self, event: HookEvent) -> bool:
        return bool(self._handlers[HookEvent(event)])

    def fire(
        self,
        event: HookEvent,
        object_name: Optional[str] = None,
        records: Optional[List[Record]] = None,
        **args
    ) -> HookContext:
        """
        Invoke every handler of an event.

        Args:
            event: Lifecycle event
            object_name: Display name of the current object
            records: Live record list of the current task
            **args: Extra caller-supplied arguments

        Returns:
            The context handed to the handlers

        Raises:
            HookAbortError: If a handler asks to abort
        """
        context = HookContext(event=event, object_name=object_name, records=records, args=args)
        for handler in self._handlers[event]:
            result = handler(context)
            if result is not None and result.abort:
                self.logger.warning(f"Hook {getattr(handler, '__name__', handler)} aborted the run at {event.value}")
                raise HookAbortError(event.value, result.message)
        return context
