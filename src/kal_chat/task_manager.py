"""Lifecycle tracking for background asyncio tasks (sends and file reads)."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


async def _drain(tasks: Iterable[asyncio.Task[Any]]) -> None:
    """Wait for each task, treating cancellation as completion."""
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass


class TaskManager:
    """Track named tasks (one per key) and anonymous fire-and-forget tasks.

    Every task leaves the manager on its own once it finishes, so
    ``pending`` is always the number of tasks still running.
    """

    def __init__(self) -> None:
        self._named: dict[str, asyncio.Task[Any]] = {}
        self._anonymous: set[asyncio.Task[Any]] = set()

    def _tracked(self) -> list[asyncio.Task[Any]]:
        return [*self._named.values(), *self._anonymous]

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tracked() if not task.done())

    def add(self, task: asyncio.Task[Any], name: str | None = None) -> None:
        """Track ``task``; a named task replaces (without cancelling) its predecessor."""
        if name is None:
            self._anonymous.add(task)
            task.add_done_callback(self._on_anonymous_done)
            return
        self._named[name] = task
        task.add_done_callback(lambda done: self._forget(name, done))

    def get(self, name: str) -> asyncio.Task[Any] | None:
        return self._named.get(name)

    def _forget(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._named.get(name) is task:
            del self._named[name]

    def _on_anonymous_done(self, task: asyncio.Task[Any]) -> None:
        self._anonymous.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        LOGGER.warning(
            "task.anonymous.exception",
            extra={
                "event": "task.anonymous.exception",
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )

    async def cancel(self, name: str) -> bool:
        """Cancel a running named task and wait for it; False if none was running."""
        task = self._named.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        await _drain([task])
        return True

    async def cancel_all(self) -> None:
        tasks = self._tracked()
        for task in tasks:
            task.cancel()
        await _drain(tasks)
        self._named.clear()
        self._anonymous.clear()

    async def await_all(self) -> None:
        """Wait for every tracked task without cancelling it."""
        await _drain(self._tracked())
