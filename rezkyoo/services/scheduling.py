"""Delayed actions and per-key serialization for async handlers."""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None] | None]


async def run_action(action: Action) -> None:
    """Run a sync or async action, logging instead of raising."""
    try:
        result = action()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Scheduled action failed")


class Scheduler(ABC):
    """Runs an action once after a delay."""

    @abstractmethod
    def schedule(self, delay_seconds: float, action: Action) -> None:
        """Run ``action`` after ``delay_seconds``."""


class AsyncioScheduler(Scheduler):
    """Scheduler backed by asyncio tasks on the running loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def schedule(self, delay_seconds: float, action: Action) -> None:
        task = asyncio.create_task(self._run_later(delay_seconds, action))
        # Keep a reference so the task is not garbage collected mid-sleep
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_later(self, delay_seconds: float, action: Action) -> None:
        await asyncio.sleep(delay_seconds)
        await run_action(action)

    @property
    def pending(self) -> int:
        return len(self._tasks)


class KeyedLocks:
    """One asyncio lock per key (batch id, call id, ...).

    A key's lock lives only while someone holds or waits for it, so the map
    stays as small as the number of calls and batches currently being handled.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
