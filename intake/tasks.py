"""Keyed cancellable tasks: at most one live asyncio task per key."""

import asyncio
import itertools
from typing import Any, Coroutine, Dict, Hashable, List


class TaskSlots:
    """
    Owns one asyncio task per key.

    Arming a key cancels whatever task currently occupies the slot before
    the new one is created, so two tasks never race for the same key. Slots
    free themselves when their task finishes.
    """

    def __init__(self):
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._anonymous = itertools.count()

    def arm(self, key: Hashable, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Cancel the task held by ``key`` and start ``coro`` in its place."""
        self.cancel(key)
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            raise
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._release(k, t))
        return task

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Start a fire-and-forget task that is still cancelled by cancel_all()."""
        return self.arm(("_spawned", next(self._anonymous)), coro)

    def cancel(self, key: Hashable) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._tasks):
            if self.cancel(key):
                cancelled += 1
        return cancelled

    def keys(self) -> List[Hashable]:
        return [k for k, t in self._tasks.items() if not t.done()]

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def __contains__(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return len(self.keys())
