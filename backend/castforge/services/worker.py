"""
Background worker pool for pipeline jobs.

Submission enqueues one unit of work and returns at once; a small pool
of asyncio worker tasks dequeues and runs it. A key (e.g. "task:{id}")
identifies the unit, and a key that is already queued or running is
refused, so one Task never has two executions in flight.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class PipelineWorker:
    """
    Fixed-size pool running submitted jobs.

    Example:
        worker = PipelineWorker(concurrency=2)
        await worker.start()
        worker.submit(f"task:{task.id}", lambda: orchestrator.run(task.id))
        ...
        await worker.stop()
    """

    def __init__(self, concurrency: int = 2):
        self.concurrency = max(1, int(concurrency))
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._active: set[str] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def is_active(self, key: str) -> bool:
        """True while the key is queued or running."""
        return key in self._active

    async def start(self) -> None:
        if self._workers:
            return
        for index in range(self.concurrency):
            self._workers.append(asyncio.create_task(self._run(index)))
        logger.info(f"Pipeline worker started (concurrency={self.concurrency})")

    async def stop(self) -> None:
        """Cancel worker tasks; queued jobs that have not started are dropped."""
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        dropped = self._queue.qsize()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._active.clear()
        logger.info(f"Pipeline worker stopped ({dropped} queued jobs dropped)")

    def submit(self, key: str, job: Job) -> bool:
        """
        Enqueue a job unless the same key is already queued or running.

        Args:
            key: Identity of the unit of work
            job: Zero-argument coroutine function

        Returns:
            True if enqueued, False if refused as a duplicate
        """
        if key in self._active:
            logger.warning(f"Job {key} already queued or running, not submitting again")
            return False
        self._active.add(key)
        self._queue.put_nowait((key, job))
        logger.debug(f"Queued job {key} (queue size {self._queue.qsize()})")
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def _run(self, index: int) -> None:
        while True:
            key, job = await self._queue.get()
            try:
                logger.debug(f"Worker {index} running {key}")
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Job {key} raised {type(e).__name__}: {e}")
            finally:
                self._active.discard(key)
                self._queue.task_done()
