"""Celery tasks for the transcoding service.

Used when ``DISPATCH_BACKEND=celery``: the upload request stages the files
and queues ``transcode_job_task``; a Celery worker runs the same pipeline
with its own database handle.
"""

import asyncio
import logging

from celery import Task
from kombu.exceptions import OperationalError

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import Database
from app.core.logging import log_error
from app.modules.transcoding.exceptions import QueueFullError
from app.modules.transcoding.ffmpeg import FFmpegBackend
from app.modules.transcoding.models import JobStatus
from app.modules.transcoding.pipeline import JobDispatcher, PipelineOrchestrator
from app.modules.transcoding.storage import OutputLayout
from app.modules.transcoding.tracker import JobStateTracker

logger = logging.getLogger(__name__)


class TranscodeTask(Task):
    """Base task for transcode pipelines.

    Stages are not retried; a failed run is recorded by the pipeline itself.
    """
    abstract = True
    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Log tasks that died outside the pipeline (e.g. time limit)."""
        job_id = args[0] if args else kwargs.get("job_id")
        log_error(logger, f"Transcode task {task_id} for job {job_id} failed", exception=exc, job_id=job_id)


@celery_app.task(bind=True, base=TranscodeTask, name="transcoding.transcode_job")
def transcode_job_task(self: TranscodeTask, job_id: str, source_path: str) -> dict:
    """Run the pipeline for one job.

    Args:
        job_id: Id of a job in the processing state
        source_path: Staged source file

    Returns:
        dict: Job id and terminal status
    """
    status = asyncio.run(_run_job(job_id, source_path))
    return {"job_id": job_id, "status": status.value}


async def _run_job(job_id: str, source_path: str) -> JobStatus:
    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    await database.open()
    try:
        orchestrator = PipelineOrchestrator.from_settings(
            tracker=JobStateTracker(database),
            backend=FFmpegBackend.from_settings(),
            layout=OutputLayout.from_settings(),
        )
        return await orchestrator.run(job_id, source_path)
    finally:
        await database.close()


class CeleryDispatcher(JobDispatcher):
    """Hands jobs to Celery workers through the broker."""

    async def dispatch(self, job_id: str, source_path: str) -> None:
        """Queue ``transcode_job_task``.

        Raises:
            QueueFullError: If the broker cannot be reached
        """
        try:
            transcode_job_task.delay(job_id, source_path)
        except OperationalError as e:
            raise QueueFullError(f"Task broker unavailable: {e}") from e
