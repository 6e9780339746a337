"""Job submitters used for queued sync dispatch."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class JobSubmitter(Protocol):
    async def submit(self, name: str, job: Job) -> None:
        ...


class InlineSubmitter:
    """Runs the job before ``submit`` returns; failures are logged, not raised."""

    async def submit(self, name: str, job: Job) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Job %s failed", name)


class QueueSubmitter:
    """Background asyncio workers draining an in-memory job queue."""

    def __init__(self, *, workers: int = 2, max_attempts: int = 1, retry_delay_s: float = 0.0) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._workers = workers
        self._max_attempts = max_attempts
        self._retry_delay_s = retry_delay_s
        self._queue: Optional[asyncio.Queue[tuple[str, Job]]] = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"sync-worker-{index}") for index in range(self._workers)
        ]
        logger.info("Started %s sync worker(s)", self._workers)

    async def submit(self, name: str, job: Job) -> None:
        if not self._tasks:
            await self.start()
        assert self._queue is not None
        await self._queue.put((name, job))
        logger.debug("Queued job %s (depth=%s)", name, self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._queue = None

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            name, job = await queue.get()
            try:
                await self._run(name, job)
            finally:
                queue.task_done()

    async def _run(self, name: str, job: Job) -> None:
        for attempt in range(1, self._max_attempts + 1):
            try:
                await job()
                return
            except Exception:
                logger.exception("Job %s failed (attempt %s/%s)", name, attempt, self._max_attempts)
                if attempt < self._max_attempts and self._retry_delay_s:
                    await asyncio.sleep(self._retry_delay_s)
