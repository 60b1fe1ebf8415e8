"""
Simple in-memory event bus.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from mindmap.models.event import MindMapEvent, MindMapEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[MindMapEvent], Optional[Awaitable[None]]]


class EventBus:
    """In-memory pub/sub for mind map notifications.

    Delivery is fire-and-forget: a failing handler is logged and does not
    stop the publisher or the remaining handlers.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[MindMapEventType, List[EventHandler]] = {}

    def subscribe(self, event_type: MindMapEventType, handler: EventHandler) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: MindMapEventType, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event: MindMapEvent) -> None:
        handlers = list(self._subscribers.get(event.type, []))
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("[EventBus] handler failed for %s", event.type.value)
