"""
DETACHED TASK TRACKER
=====================

Runs work that must outlive the request that started it (memory extraction after
the answer stream has closed) while making sure the process does not exit with
that work still pending.

  spawn(coro, name)  - start the coroutine as an asyncio.Task and keep a strong
                       reference to it until it finishes. Failures are logged from
                       a done-callback; they never reach the request that spawned it.
  pending            - number of tasks still running (reported by GET /health).
  drain(timeout)     - wait for outstanding tasks; cancel whatever is left after
                       timeout. Called from the app lifespan on shutdown.

Tasks are created on the running loop rather than inside the request's task group,
so cancelling a request (client disconnect) does not cancel work it spawned.
"""

import asyncio
import logging
from typing import Coroutine, Set


logger = logging.getLogger("IronChat")


class DetachedTaskTracker:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, *, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Detached task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Detached task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def drain(self, timeout: float) -> None:
        """Wait up to timeout seconds for every tracked task, then cancel the rest."""
        if not self._tasks:
            return
        logger.info("Waiting for %s detached task(s) to finish...", len(self._tasks))
        done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            logger.warning("Cancelling %s detached task(s) still running after %.1fs", len(still_running), timeout)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
