"""
Background Job Queue
====================

Supervised asyncio task pool used for embedding generation.

- Bounded queue: ``submit`` never blocks the caller; a full queue rejects.
- Fixed number of worker tasks, each running one job at a time.
- Tracks which keys are queued or running, so "is this article being
  processed?" can be answered from the queue itself.
- ``stop`` drains the queue for a bounded time and then cancels workers.
  Cancellation propagates into whatever the job is awaiting (for embedding
  jobs: the provider requests), and the job's own cleanup runs.
"""

import asyncio
from collections import Counter
from typing import Awaitable, Callable, List, Optional, Set

from helpdesk_kb.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JobHandler = Callable[[str], Awaitable[object]]


class JobQueue:
    """
    Bounded queue of keyed jobs processed by a pool of worker tasks.

    Usage:
        queue = JobQueue(name="embeddings", max_size=1000, workers=4)
        await queue.start(generator.run)
        queue.submit(article_id)
        ...
        await queue.stop(timeout=10)
    """

    def __init__(self, name: str, max_size: int = 1000, workers: int = 4):
        self.name = name
        self._max_size = max_size
        self._worker_count = workers
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._handler: Optional[JobHandler] = None
        self._pending: Counter = Counter()
        self._running = False

    async def start(self, handler: JobHandler) -> None:
        """Start the worker tasks with the given job handler."""
        if self._running:
            logger.warning("Job queue already running", extra={"queue": self.name})
            return

        self._handler = handler
        self._queue = asyncio.Queue(maxsize=self._max_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self._worker_count)
        ]
        self._running = True

        logger.info(
            "Job queue started",
            extra={"queue": self.name, "workers": self._worker_count, "max_size": self._max_size}
        )

    def submit(self, key: str) -> bool:
        """
        Enqueue a job without waiting.

        Returns:
            True if the job was queued, False if the queue is stopped or full
        """
        if not self._running or self._queue is None:
            logger.warning("Job queue not running, job rejected", extra={"queue": self.name, "key": key})
            return False

        try:
            self._queue.put_nowait(key)
        except asyncio.QueueFull:
            logger.warning("Job queue full, job rejected", extra={"queue": self.name, "key": key})
            return False

        self._pending[key] += 1
        return True

    def is_pending(self, key: str) -> bool:
        """True while a job for ``key`` is queued or running."""
        return self._pending[key] > 0

    @property
    def pending_keys(self) -> Set[str]:
        """Keys with at least one queued or running job."""
        return {key for key, count in self._pending.items() if count > 0}

    @property
    def is_running(self) -> bool:
        return self._running

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, timeout: float = 10.0) -> int:
        """
        Stop accepting jobs, drain for up to ``timeout`` seconds, then cancel.

        Returns:
            Number of jobs that were still queued or running when the
            workers were cancelled
        """
        if not self._running or self._queue is None:
            return 0

        self._running = False
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Job queue drain timed out, cancelling workers",
                extra={"queue": self.name, "timeout": timeout, "pending": len(self.pending_keys)}
            )

        abandoned = sum(self._pending.values())
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        # Jobs that never started hold no state that needs cleaning up
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._pending.clear()

        logger.info("Job queue stopped", extra={"queue": self.name, "abandoned": abandoned})
        return abandoned

    async def _worker(self, index: int) -> None:
        assert self._queue is not None and self._handler is not None
        while True:
            key = await self._queue.get()
            try:
                await self._handler(key)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Background job failed",
                    extra={"queue": self.name, "worker": index, "key": key}
                )
            finally:
                self._pending[key] -= 1
                if self._pending[key] <= 0:
                    del self._pending[key]
                self._queue.task_done()
