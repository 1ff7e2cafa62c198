"""Durable job state with enforced lifecycle transitions.

Writes for a given job id are serialised through a per-job lock; reads are
lock free. A lock entry only exists while writes for that job are in flight or
waiting. Terminal states are final: a completed job only accepts an
identical ``completed`` write, a failed job accepts nothing.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from app.core.database import Database
from app.modules.transcoding.exceptions import InvalidJobTransitionError, JobNotFoundError
from app.modules.transcoding.models import JobStatus, TranscodeJob
from app.modules.transcoding.repository import TranscodeJobRepository
from app.modules.transcoding.schemas import JobCreate, JobPatch, JobView

logger = logging.getLogger(__name__)


class JobStateTracker:
    """Create, read, update and delete transcode job records."""

    def __init__(self, database: Database):
        self.database = database
        # job id -> (lock, number of holders and waiters)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _job_lock(self, job_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(job_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[job_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[job_id]
            if users == 1:
                del self._locks[job_id]
            else:
                self._locks[job_id] = (lock, users - 1)

    @property
    def locked_jobs(self) -> int:
        """Number of job ids with a write in flight or waiting."""
        return len(self._locks)

    async def create(self, meta: JobCreate) -> str:
        """Persist a new job in the processing state and return its id."""
        async with self.database.session() as session:
            job = await TranscodeJobRepository(session).create(
                title=meta.title,
                description=meta.description,
            )
            await session.commit()
            job_id = job.id

        logger.info(f"Created job {job_id}")
        return job_id

    async def find(self, job_id: str) -> Optional[JobView]:
        """Get a job snapshot, or None if the id is unknown."""
        async with self.database.session() as session:
            job = await TranscodeJobRepository(session).get_by_id(job_id)
            return JobView.from_model(job) if job else None

    async def get(self, job_id: str) -> JobView:
        """Get a job snapshot.

        Raises:
            JobNotFoundError: If the id is unknown or was deleted
        """
        view = await self.find(job_id)
        if view is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return view

    async def list_completed(self, limit: Optional[int] = None) -> list[JobView]:
        """Completed jobs, newest first."""
        async with self.database.session() as session:
            jobs = await TranscodeJobRepository(session).list_by_status(JobStatus.COMPLETED, limit=limit)
            return [JobView.from_model(job) for job in jobs]

    async def update(self, job_id: str, patch: JobPatch) -> JobView:
        """Apply ``patch`` to a job.

        Raises:
            JobNotFoundError: If the id is unknown
            InvalidJobTransitionError: If the patch breaks a lifecycle rule
        """
        async with self._job_lock(job_id):
            async with self.database.session() as session:
                repo = TranscodeJobRepository(session)
                job = await repo.get_by_id(job_id)
                if job is None:
                    raise JobNotFoundError(f"Job {job_id} not found")

                changed = await self._apply(repo, job, patch)
                if changed:
                    await session.commit()
                return JobView.from_model(job)

    async def _apply(self, repo: TranscodeJobRepository, job: TranscodeJob, patch: JobPatch) -> bool:
        current = JobStatus(job.status)
        target = patch.status or current

        if current == JobStatus.FAILED:
            raise InvalidJobTransitionError(f"Job {job.id} has failed and can no longer change")

        if patch.error_message is not None and target != JobStatus.FAILED:
            raise InvalidJobTransitionError("error_message can only accompany a failed status")

        if (
            patch.thumbnail_path is not None
            and job.thumbnail_path is not None
            and patch.thumbnail_path != job.thumbnail_path
        ):
            raise InvalidJobTransitionError(f"Thumbnail of job {job.id} is already set")

        if current == JobStatus.COMPLETED:
            if target != JobStatus.COMPLETED:
                raise InvalidJobTransitionError(f"Job {job.id} is completed and can no longer change")
            if patch.duration is not None and (
                patch.duration.seconds != job.duration_seconds
                or patch.duration.minutes != job.duration_minutes
            ):
                raise InvalidJobTransitionError(f"Duration of job {job.id} is already set")
            return False

        if patch.thumbnail_path is not None and job.thumbnail_path is None:
            await repo.set_thumbnail(job, patch.thumbnail_path)

        if target == JobStatus.COMPLETED:
            if patch.duration is None:
                raise InvalidJobTransitionError("A completed job requires a duration")
            if job.thumbnail_path is None:
                raise InvalidJobTransitionError("A completed job requires a thumbnail")
            await repo.complete_job(job, patch.duration.seconds, patch.duration.minutes)
        elif target == JobStatus.FAILED:
            await repo.fail_job(job, patch.error_message)
        elif patch.duration is not None:
            raise InvalidJobTransitionError("Duration is only set when a job completes")

        return True

    async def delete(self, job_id: str, status: Optional[JobStatus] = None) -> bool:
        """Remove a job record.

        Args:
            job_id: Job to remove
            status: Only remove the record while it is in this state

        Returns:
            True if a record was deleted, False if none existed or its state
            did not match ``status``
        """
        async with self._job_lock(job_id):
            async with self.database.session() as session:
                repo = TranscodeJobRepository(session)
                job = await repo.get_by_id(job_id)
                if job is None:
                    return False
                if status is not None and JobStatus(job.status) != status:
                    return False

                await repo.delete(job)
                await session.commit()
                return True
