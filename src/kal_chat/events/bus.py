"""Publish/subscribe bus that carries controller events to the UI.

Usage:
    bus = EventBus()

    async def on_attachment_failed(event):
        print(f"Could not read {event.data['name']}")

    bus.subscribe(ATTACHMENT_FAILED, on_attachment_failed)

    await bus.publish(ATTACHMENT_FAILED, {"name": "scan.pdf", "reason": "..."})
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import inspect
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


@dataclass
class Event:
    """One published event."""

    name: str
    data: dict[str, Any]
    source: str | None = None


Handler = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """Deliver events to sync or async handlers in subscription order.

    A failing handler is logged and skipped; it never reaches the publisher
    or the handlers after it.
    """

    def __init__(self) -> None:
        self._subscribers: defaultdict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: Handler) -> None:
        self._subscribers[event_name].append(handler)

    async def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        event = Event(name=event_name, data=data, source=source)
        for handler in list(self._subscribers.get(event_name, ())):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as exc:  # noqa: BLE001 - UI handlers are third-party code.
                LOGGER.error(
                    "event.handler_failed",
                    extra={
                        "event": "event.handler_failed",
                        "event_name": event_name,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
