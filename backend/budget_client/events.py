"""
Event taxonomy and in-process event bus for real-time notifications.
"""
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CONNECT = "connect"
    TRANSACTION_ADDED = "transaction-added"
    TRANSACTION_UPDATED = "transaction-updated"
    TRANSACTION_DELETED = "transaction-deleted"
    SAVINGS_GOAL_ADDED = "savings-goal-added"
    SAVINGS_GOAL_UPDATED = "savings-goal-updated"
    SAVINGS_GOAL_DELETED = "savings-goal-deleted"
    BUDGET_SETTINGS_UPDATED = "budget-settings-updated"


class EventMessage(BaseModel):
    """Envelope received on the real-time channel."""
    type: str
    data: Optional[Any] = None
    message: Optional[str] = None

    @property
    def event_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None


Handler = Callable[[EventMessage], Union[None, Awaitable[None]]]

# Key for handlers subscribed to every event
ALL_EVENTS = None


class EventBus:
    """
    Publish/subscribe over EventType.

    Handlers may be plain functions or coroutine functions; coroutines are
    awaited in subscription order. A failing handler is logged and does not
    stop delivery to the others.
    """

    def __init__(self):
        self._handlers: Dict[Optional[EventType], List[Handler]] = {}

    def subscribe(
        self,
        handler: Handler,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """Register a handler. Returns a callable that removes it again."""
        keys = list(event_types) if event_types is not None else [ALL_EVENTS]
        for key in keys:
            self._handlers.setdefault(key, []).append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler, keys)

        return unsubscribe

    def unsubscribe(
        self,
        handler: Handler,
        event_types: Optional[Iterable[Optional[EventType]]] = None,
    ) -> None:
        keys = list(event_types) if event_types is not None else list(self._handlers)
        for key in keys:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, message: EventMessage) -> None:
        event_type = message.event_type
        if event_type is None:
            logger.debug(f"[EVENTS] Unknown event type {message.type!r}")

        targets = list(self._handlers.get(event_type, [])) if event_type else []
        targets += list(self._handlers.get(ALL_EVENTS, []))

        for handler in targets:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[EVENTS] Handler {getattr(handler, '__name__', handler)!r} failed for {message.type}: {e}")
