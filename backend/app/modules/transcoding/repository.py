"""Repository for transcode job database operations."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.transcoding.models import JobStatus, TranscodeJob


class TranscodeJobRepository:
    """Repository for TranscodeJob operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, title: str, description: str = "") -> TranscodeJob:
        """Create a new job in the processing state.

        Args:
            title: User supplied title
            description: User supplied description

        Returns:
            Created TranscodeJob
        """
        job = TranscodeJob(
            title=title,
            description=description,
            status=JobStatus.PROCESSING.value,
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> Optional[TranscodeJob]:
        """Get a job by ID."""
        result = await self.session.execute(
            select(TranscodeJob).where(TranscodeJob.id == job_id)
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: JobStatus, limit: Optional[int] = None) -> list[TranscodeJob]:
        """Get jobs with the given status, newest first."""
        query = (
            select(TranscodeJob)
            .where(TranscodeJob.status == status.value)
            .order_by(TranscodeJob.created_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def set_thumbnail(self, job: TranscodeJob, thumbnail_path: str) -> None:
        job.thumbnail_path = thumbnail_path

    async def complete_job(
        self,
        job: TranscodeJob,
        duration_seconds: float,
        duration_minutes: float,
    ) -> None:
        """Mark a job as completed.

        Args:
            job: The job to complete
            duration_seconds: Source duration in seconds
            duration_minutes: Source duration in minutes
        """
        job.status = JobStatus.COMPLETED.value
        job.duration_seconds = duration_seconds
        job.duration_minutes = duration_minutes
        job.completed_at = datetime.now(timezone.utc)

    async def fail_job(self, job: TranscodeJob, error_message: Optional[str]) -> None:
        """Mark a job as failed.

        Its published output is removed, so the thumbnail path is cleared.

        Args:
            job: The job to fail
            error_message: Error description
        """
        job.status = JobStatus.FAILED.value
        job.error_message = error_message
        job.thumbnail_path = None
        job.completed_at = datetime.now(timezone.utc)

    async def delete(self, job: TranscodeJob) -> None:
        await self.session.delete(job)
        await self.session.flush()
