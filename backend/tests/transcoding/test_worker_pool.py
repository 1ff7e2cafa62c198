"""Tests for the in-process transcode worker pool.

**Feature: adaptive-stream, Property 6: Bounded Hand-off**
**Validates: submissions never block and saturation is reported**
"""

import asyncio

import pytest

from app.modules.transcoding.exceptions import DuplicateJobError, QueueFullError
from app.modules.transcoding.worker import TranscodeWorkerPool


class RecordingHandler:
    def __init__(self, gate: asyncio.Event = None, fail_on: str = None):
        self.gate = gate
        self.fail_on = fail_on
        self.handled: list[tuple[str, str]] = []

    async def __call__(self, job_id: str, source_path: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if job_id == self.fail_on:
            raise RuntimeError("handler blew up")
        self.handled.append((job_id, source_path))


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_runs_every_queued_job(self) -> None:
        handler = RecordingHandler()
        pool = TranscodeWorkerPool(concurrency=2, maxsize=8)
        pool.start(handler)

        for n in range(5):
            await pool.dispatch(f"job-{n}", f"/work/job-{n}/video.mp4")
        await pool.join()
        await pool.stop()

        assert sorted(job_id for job_id, _ in handler.handled) == [f"job-{n}" for n in range(5)]

    @pytest.mark.asyncio
    async def test_full_queue_rejects_immediately(self) -> None:
        """**Feature: adaptive-stream, Property 6: Bounded Hand-off**

        When the queue is at capacity, dispatch SHALL fail at once instead
        of waiting for room.
        """
        gate = asyncio.Event()
        pool = TranscodeWorkerPool(concurrency=1, maxsize=1)
        pool.start(RecordingHandler(gate=gate))

        await pool.dispatch("job-a", "/work/a")
        with pytest.raises(QueueFullError):
            await pool.dispatch("job-b", "/work/b")

        gate.set()
        await pool.join()
        await pool.stop()

    @pytest.mark.asyncio
    async def test_duplicate_job_is_rejected(self) -> None:
        gate = asyncio.Event()
        pool = TranscodeWorkerPool(concurrency=1, maxsize=4)
        pool.start(RecordingHandler(gate=gate))

        await pool.dispatch("job-a", "/work/a")
        with pytest.raises(DuplicateJobError):
            await pool.dispatch("job-a", "/work/a")

        gate.set()
        await pool.join()
        await pool.stop()

    @pytest.mark.asyncio
    async def test_job_can_be_dispatched_again_after_it_ran(self) -> None:
        handler = RecordingHandler()
        pool = TranscodeWorkerPool(concurrency=1, maxsize=4)
        pool.start(handler)

        await pool.dispatch("job-a", "/work/a")
        await pool.join()
        await pool.dispatch("job-a", "/work/a")
        await pool.join()
        await pool.stop()

        assert len(handler.handled) == 2

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_worker(self) -> None:
        handler = RecordingHandler(fail_on="job-a")
        pool = TranscodeWorkerPool(concurrency=1, maxsize=4)
        pool.start(handler)

        await pool.dispatch("job-a", "/work/a")
        await pool.dispatch("job-b", "/work/b")
        await pool.join()
        await pool.stop()

        assert handler.handled == [("job-b", "/work/b")]

    @pytest.mark.asyncio
    async def test_active_jobs_are_tracked(self) -> None:
        gate = asyncio.Event()
        pool = TranscodeWorkerPool(concurrency=1, maxsize=4)
        pool.start(RecordingHandler(gate=gate))

        await pool.dispatch("job-a", "/work/a")
        await asyncio.sleep(0.01)
        assert pool.active_jobs == frozenset({"job-a"})
        assert pool.qsize == 0

        gate.set()
        await pool.join()
        assert pool.active_jobs == frozenset()
        await pool.stop()

    @pytest.mark.asyncio
    async def test_stop(self) -> None:
        pool = TranscodeWorkerPool(concurrency=2, maxsize=4)
        pool.start(RecordingHandler())
        assert pool.is_running

        await pool.stop()

        assert not pool.is_running
        with pytest.raises(RuntimeError):
            await pool.dispatch("job-a", "/work/a")

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self) -> None:
        pool = TranscodeWorkerPool(concurrency=1, maxsize=1)
        pool.start(RecordingHandler())
        with pytest.raises(RuntimeError):
            pool.start(RecordingHandler())
        await pool.stop()

    def test_rejects_invalid_sizes(self) -> None:
        with pytest.raises(ValueError):
            TranscodeWorkerPool(concurrency=0)
        with pytest.raises(ValueError):
            TranscodeWorkerPool(maxsize=0)
