"""Utilities for supervising background asyncio tasks.

Fire-and-forget work (TTS polls, chapter generation) runs through a
TaskSupervisor so exceptions are logged instead of failing silently,
tasks are not garbage collected before completion, and a session
teardown can cancel whatever is still in flight.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    def __init__(self, label: str = "background"):
        self.label = label
        self._tasks: Set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[Any], *, name: Optional[str] = None,
              on_error: Optional[Callable[[BaseException], None]] = None) -> asyncio.Task[Any]:
        """Create and supervise a background task.

        Args:
            coro: Awaitable coroutine to run in the background.
            name: Optional name for the task.
            on_error: Optional callback invoked if the task raises.
        """
        task = asyncio.create_task(coro, name=name)  # type: ignore[arg-type]
        self._tasks.add(task)

        def _finished(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                logger.debug("[%s] task %s cancelled", self.label, name or t)
                return
            exc = t.exception()
            if exc is None:
                return
            if on_error:
                try:
                    on_error(exc)
                except Exception:  # noqa: BLE001
                    logger.exception("[%s] error in on_error callback for task %s", self.label, name or t)
            logger.error("[%s] task %s failed", self.label, name or t, exc_info=exc)

        task.add_done_callback(_finished)
        return task

    async def wait(self) -> None:
        """Wait until every task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> int:
        pending = [t for t in self._tasks if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)


async def run_sync(func: Callable[..., Any], *args: Any, loop: Optional[asyncio.AbstractEventLoop] = None,
                   executor: Optional[Executor] = None, **kwargs: Any) -> Any:
    """Execute blocking code in the default executor and await the result."""
    event_loop = loop or asyncio.get_running_loop()
    bound = partial(func, *args, **kwargs)
    return await event_loop.run_in_executor(executor, bound)


__all__ = ["TaskSupervisor", "run_sync"]
