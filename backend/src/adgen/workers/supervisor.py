"""Supervised background tasks.

Request handlers hand long-running generation work to a TaskSupervisor
instead of leaving unawaited coroutines behind. The supervisor keeps a
reference to every task, logs crashes, and gives the application lifespan a
way to drain or cancel in-flight work at shutdown.
"""

import asyncio
from typing import Coroutine

import structlog

logger = structlog.get_logger(__name__)


class TaskSupervisor:
    """Tracks fire-and-forget asyncio tasks for their whole lifetime."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, coro: Coroutine) -> asyncio.Task:
        """Start a coroutine in the background without awaiting it.

        Args:
            name: Human-readable task name for logging
            coro: Coroutine to run

        Returns:
            The created task

        Raises:
            RuntimeError: If the supervisor is shutting down
        """
        if self._closed:
            coro.close()
            raise RuntimeError("TaskSupervisor is shut down, not accepting new work")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.debug("task.submitted", task=name, active=len(self._tasks))
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        name = task.get_name()

        if task.cancelled():
            logger.info("task.cancelled", task=name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "task.crashed",
                task=name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )
        else:
            logger.debug("task.finished", task=name)

    async def drain(self) -> None:
        """Wait until every submitted task (including ones submitted meanwhile) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting work, wait up to `timeout` seconds, then cancel stragglers."""
        self._closed = True
        if not self._tasks:
            return

        pending = list(self._tasks)
        logger.info("supervisor.shutdown", in_flight=len(pending), timeout_seconds=timeout)
        _, still_running = await asyncio.wait(pending, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("supervisor.cancelled_tasks", count=len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
