"""In-process worker pool for transcode pipelines.

A bounded queue feeds a fixed number of worker tasks. ``dispatch`` never
blocks the request that submits a job: when the queue is saturated the job
is rejected immediately.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from app.core.config import settings
from app.core.logging import log_error, log_info
from app.core.metrics import QUEUE_DEPTH, QUEUE_REJECTIONS_TOTAL
from app.modules.transcoding.exceptions import DuplicateJobError, QueueFullError
from app.modules.transcoding.pipeline import JobDispatcher

logger = logging.getLogger(__name__)

JobHandler = Callable[[str, str], Awaitable[Any]]


class TranscodeWorkerPool(JobDispatcher):
    """Bounded queue plus ``concurrency`` long-running worker tasks."""

    def __init__(self, concurrency: int = 2, maxsize: int = 32):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")

        self.concurrency = concurrency
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._handler: Optional[JobHandler] = None
        self._scheduled: set[str] = set()
        self._active: set[str] = set()

    @classmethod
    def from_settings(cls) -> "TranscodeWorkerPool":
        return cls(
            concurrency=settings.WORKER_CONCURRENCY,
            maxsize=settings.JOB_QUEUE_MAXSIZE,
        )

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def qsize(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def active_jobs(self) -> frozenset[str]:
        return frozenset(self._active)

    def start(self, handler: JobHandler) -> None:
        """Start the worker tasks on the running event loop.

        Args:
            handler: Coroutine function called as ``handler(job_id, source_path)``
        """
        if self.is_running:
            raise RuntimeError("Worker pool already started")

        self._handler = handler
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._work(index), name=f"transcode-worker-{index}")
            for index in range(self.concurrency)
        ]
        log_info(logger, f"Started {self.concurrency} transcode worker(s)")

    async def dispatch(self, job_id: str, source_path: str) -> None:
        """Queue a job without waiting for room.

        Raises:
            DuplicateJobError: If the job is already queued or running
            QueueFullError: If the queue is at capacity
        """
        if self._queue is None:
            raise RuntimeError("Worker pool is not running")
        if job_id in self._scheduled:
            raise DuplicateJobError(f"Job {job_id} is already scheduled")

        try:
            self._queue.put_nowait((job_id, source_path))
        except asyncio.QueueFull as e:
            QUEUE_REJECTIONS_TOTAL.inc()
            raise QueueFullError("Transcode queue is full, try again later") from e

        self._scheduled.add(job_id)
        QUEUE_DEPTH.set(self._queue.qsize())

    async def _work(self, index: int) -> None:
        while True:
            job_id, source_path = await self._queue.get()
            QUEUE_DEPTH.set(self._queue.qsize())
            self._active.add(job_id)
            try:
                await self._handler(job_id, source_path)
            except Exception as e:
                # Keep the worker alive for the next job
                log_error(logger, f"Worker {index} failed on job {job_id}", exception=e, job_id=job_id)
            finally:
                self._active.discard(job_id)
                self._scheduled.discard(job_id)
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = False, timeout: Optional[float] = None) -> None:
        """Stop the workers.

        Args:
            drain: Wait for queued jobs first
            timeout: Upper bound for draining, in seconds
        """
        if not self.is_running:
            return

        if drain:
            try:
                await asyncio.wait_for(self.join(), timeout)
            except asyncio.TimeoutError:
                log_error(logger, f"Worker pool drain timed out with {self.qsize} job(s) queued")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers = []
        self._queue = None
        self._scheduled.clear()
        self._active.clear()
        QUEUE_DEPTH.set(0)
        log_info(logger, "Stopped transcode workers")
