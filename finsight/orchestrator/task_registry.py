"""Tracks in-flight pipeline stages, one per prompt."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class StageTaskRegistry:
    """Owns the ``asyncio.Task`` of every running stage.

    At most one stage runs per prompt: a new stage for a prompt whose
    previous task has not finished yet waits for it. Finished tasks remove
    themselves; :meth:`shutdown` cancels whatever is still running.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def start(self, prompt_id: str, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Schedule a stage. A stage still winding down for the same prompt is awaited first."""
        previous = self._tasks.get(prompt_id)
        if previous is not None and not previous.done():
            coro = self._after(previous, coro)
        task = asyncio.create_task(coro, name=name or f"prompt-{prompt_id}")
        self._tasks[prompt_id] = task
        task.add_done_callback(lambda t: self._on_done(prompt_id, t))
        return task

    @staticmethod
    async def _after(previous: asyncio.Task[Any], coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            await asyncio.wait({previous})
        except asyncio.CancelledError:
            coro.close()
            raise
        return await coro

    def _on_done(self, prompt_id: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(prompt_id) is task:
            del self._tasks[prompt_id]
        if task.cancelled():
            logger.info("Stage task for prompt %s cancelled", prompt_id)
            return
        error = task.exception()
        if error is not None:
            logger.error("Stage task for prompt %s crashed: %s", prompt_id, error, exc_info=error)

    def is_running(self, prompt_id: str) -> bool:
        task = self._tasks.get(prompt_id)
        return task is not None and not task.done()

    def get(self, prompt_id: str) -> asyncio.Task[Any] | None:
        return self._tasks.get(prompt_id)

    def cancel(self, prompt_id: str) -> bool:
        task = self._tasks.get(prompt_id)
        if task is None or task.done():
            return False
        return task.cancel()

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel every running stage and wait briefly for them to record failure."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if not tasks:
            return
        logger.info("Cancelling %d running stage task(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)
