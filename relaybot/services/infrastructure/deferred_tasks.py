"""
Deferred work that must outlive the webhook request that scheduled it.

Tasks run on the server's event loop after the 200 has been returned. The
runner keeps a strong reference to each task until it finishes and the
application lifespan drains the set on shutdown, so a scheduled reaction
upgrade or batch flush is not dropped when the process stops.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from relaybot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DeferredTaskRunner:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        delay_s: float = 0.0,
        name: str | None = None,
    ) -> asyncio.Task:
        """Run func(*args) after delay_s seconds without blocking the caller."""
        task = asyncio.create_task(self._run(func, args, delay_s, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, func, args, delay_s: float, name: str | None) -> None:
        try:
            if delay_s > 0:
                await asyncio.sleep(delay_s)
            await func(*args)
        except Exception as e:
            logger.error(
                "Deferred task failed", task=name, error=str(e), error_type=type(e).__name__
            )

    async def drain(self, timeout_s: float | None = None) -> int:
        """
        Wait for every outstanding task.

        Returns:
            int: number of tasks still running when the timeout expired
        """
        if not self._tasks:
            return 0

        logger.info("Draining deferred tasks", pending=len(self._tasks))
        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout_s)

        if still_pending:
            logger.warning("Deferred tasks still running after drain", pending=len(still_pending))
        return len(still_pending)


# Global instance
deferred_tasks = DeferredTaskRunner()
