"""
Tracked fire-and-forget tasks.

Background refreshes have no caller to report to. Each one is spawned
through a registry that holds it while it runs and always drops it when it
settles, so "is a refresh for this key in flight?" has a direct answer.
"""
import asyncio
import logging
from typing import Any, Coroutine, Dict, Hashable, Optional

logger = logging.getLogger("cache.tasks")


class TaskRegistry:
    """Registry of detached asyncio tasks keyed by an optional slot."""

    def __init__(self, name: str):
        self.name = name
        self._tasks: Dict[Hashable, asyncio.Task] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, key: Hashable) -> Optional[asyncio.Task]:
        return self._tasks.get(key)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        key: Optional[Hashable] = None,
    ) -> Optional[asyncio.Task]:
        """
        Run a coroutine as a detached task registered under `key`.

        Returns None (and closes the coroutine) when no event loop is
        running, e.g. when called from synchronous code.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug(f"[{self.name}] no running loop, dropped task {key!r}")
            return None

        slot = key if key is not None else object()
        task = loop.create_task(self._run_scoped(slot, coro))
        self._tasks[slot] = task
        return task

    async def _run_scoped(self, slot: Hashable, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        finally:
            # A newer task may have replaced ours under the same slot
            if self._tasks.get(slot) is asyncio.current_task():
                del self._tasks[slot]

    async def wait_idle(self) -> None:
        """Wait until every registered task has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def clear(self) -> None:
        """Cancel and forget all tasks (test isolation)."""
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
