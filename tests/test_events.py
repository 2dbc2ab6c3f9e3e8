"""Tests for the publish/subscribe event bus."""

from __future__ import annotations

import unittest

from kal_chat.events import ATTACHMENT_FAILED, TURN_FAILED, Event, EventBus


class EventBusTests(unittest.IsolatedAsyncioTestCase):
    """Validate subscription and dispatch behavior."""

    async def test_sync_and_async_handlers_receive_event(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def sync_handler(event: Event) -> None:
            seen.append(f"sync:{event.data['name']}")

        async def async_handler(event: Event) -> None:
            seen.append(f"async:{event.data['name']}")

        bus.subscribe(ATTACHMENT_FAILED, sync_handler)
        bus.subscribe(ATTACHMENT_FAILED, async_handler)
        await bus.publish(ATTACHMENT_FAILED, {"name": "scan.pdf"}, source="test")
        self.assertEqual(seen, ["sync:scan.pdf", "async:scan.pdf"])

    async def test_failing_handler_does_not_stop_others(self) -> None:
        bus = EventBus()
        seen: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("handler bug")

        bus.subscribe(TURN_FAILED, broken)
        bus.subscribe(TURN_FAILED, seen.append)
        with self.assertLogs("kal_chat.events.bus", level="ERROR"):
            await bus.publish(TURN_FAILED, {"session_id": "s1"})
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].name, TURN_FAILED)

    async def test_handlers_only_receive_their_event(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        bus.subscribe(TURN_FAILED, seen.append)
        await bus.publish(ATTACHMENT_FAILED, {"name": "scan.pdf"})
        await bus.publish(TURN_FAILED, {"session_id": "s1"})
        self.assertEqual([event.name for event in seen], [TURN_FAILED])


if __name__ == "__main__":
    unittest.main()
