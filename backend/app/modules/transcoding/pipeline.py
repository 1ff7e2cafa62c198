"""Pipeline orchestration for uploaded videos.

``start_job`` is the synchronous part run inside the upload request: it
persists the job, stages files and hands the job to a dispatcher.
``run`` is the background part: probe, ladder, encode every variant, write
the master playlist, capture a thumbnail and mark the job completed. The
orchestrator is the only writer of terminal job states.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from app.core.config import settings
from app.core.logging import clear_correlation_id, log_error, log_info, log_warning, set_correlation_id
from app.core.metrics import (
    ACTIVE_PIPELINES,
    TRANSCODE_JOB_DURATION_SECONDS,
    TRANSCODE_JOBS_TOTAL,
    VARIANT_ENCODE_DURATION_SECONDS,
)
from app.modules.transcoding.abr import Variant, build_ladder
from app.modules.transcoding.exceptions import (
    InvalidJobTransitionError,
    JobNotFoundError,
    ManifestError,
    ProbeError,
)
from app.modules.transcoding.ffmpeg import EncodeResult, MediaBackend
from app.modules.transcoding.models import JobStatus
from app.modules.transcoding.playlist import (
    build_master_manifest,
    parse_master_manifest,
    write_master_manifest,
)
from app.modules.transcoding.schemas import Duration, JobCreate, JobPatch
from app.modules.transcoding.storage import OutputLayout
from app.modules.transcoding.tracker import JobStateTracker

logger = logging.getLogger(__name__)

FAILED_JOB_POLICIES = ("delete", "retain")


@dataclass
class UploadSubmission:
    """A received upload, already spooled to temporary files."""
    title: str
    video_path: str
    video_filename: Optional[str] = None
    description: str = ""
    thumbnail_path: Optional[str] = None
    thumbnail_filename: Optional[str] = None


class JobDispatcher(ABC):
    """Hands a persisted job over to background execution."""

    @abstractmethod
    async def dispatch(self, job_id: str, source_path: str) -> None:
        """Schedule ``run(job_id, source_path)``.

        Raises:
            QueueFullError: If the job cannot be accepted right now
            DuplicateJobError: If the job is already scheduled
        """
        pass


class PipelineOrchestrator:
    """Drives one job from raw upload to a published HLS package."""

    def __init__(
        self,
        tracker: JobStateTracker,
        backend: MediaBackend,
        layout: OutputLayout,
        dispatcher: Optional[JobDispatcher] = None,
        max_parallel_encodes: int = 2,
        failed_job_policy: str = "delete",
        thumbnail_at_seconds: float = 5.0,
        manifest_base_url: Optional[str] = None,
    ):
        """Initialize orchestrator.

        Args:
            tracker: Job state tracker
            backend: Media backend used for probe, encode and thumbnail
            layout: Output layout on disk
            dispatcher: Background hand-off used by ``start_job``
            max_parallel_encodes: Upper bound on concurrent variant encodes
            failed_job_policy: ``delete`` removes failed records, ``retain``
                keeps them with status failed
            thumbnail_at_seconds: Preferred thumbnail capture offset
            manifest_base_url: Optional prefix for variant references
        """
        if failed_job_policy not in FAILED_JOB_POLICIES:
            raise ValueError(f"Unknown failed job policy: {failed_job_policy}")
        if max_parallel_encodes < 1:
            raise ValueError("max_parallel_encodes must be at least 1")

        self.tracker = tracker
        self.backend = backend
        self.layout = layout
        self.dispatcher = dispatcher
        self.max_parallel_encodes = max_parallel_encodes
        self.failed_job_policy = failed_job_policy
        self.thumbnail_at_seconds = thumbnail_at_seconds
        self.manifest_base_url = manifest_base_url

    @classmethod
    def from_settings(
        cls,
        tracker: JobStateTracker,
        backend: MediaBackend,
        layout: OutputLayout,
        dispatcher: Optional[JobDispatcher] = None,
    ) -> "PipelineOrchestrator":
        return cls(
            tracker=tracker,
            backend=backend,
            layout=layout,
            dispatcher=dispatcher,
            max_parallel_encodes=settings.MAX_PARALLEL_ENCODES,
            failed_job_policy=settings.FAILED_JOB_POLICY,
            thumbnail_at_seconds=settings.THUMBNAIL_AT_SECONDS,
        )

    # ==================== Creation ====================

    async def start_job(self, submission: UploadSubmission) -> str:
        """Persist a job, stage its files and dispatch it.

        Returns as soon as the job is handed off; processing continues in the
        background.

        Args:
            submission: Spooled upload

        Returns:
            New job id

        Raises:
            QueueFullError: If the dispatcher is saturated
            DuplicateJobError: If the dispatcher already holds this job
            OSError: If the upload cannot be staged
        """
        if self.dispatcher is None:
            raise RuntimeError("No dispatcher configured")

        job_id = await self.tracker.create(
            JobCreate(title=submission.title, description=submission.description)
        )

        try:
            self.layout.prepare(job_id)
            source_path = self.layout.stage_source(
                job_id, submission.video_path, submission.video_filename
            )

            if submission.thumbnail_path:
                public_path = self.layout.stage_thumbnail(
                    job_id, submission.thumbnail_path, submission.thumbnail_filename
                )
                await self.tracker.update(job_id, JobPatch(thumbnail_path=public_path))

            await self.dispatcher.dispatch(job_id, str(source_path))
        except Exception:
            await self.tracker.delete(job_id)
            self._cleanup_files(job_id)
            raise

        log_info(logger, f"Accepted upload as job {job_id}", job_id=job_id)
        return job_id

    # ==================== Background run ====================

    async def run(self, job_id: str, source_path: str) -> JobStatus:
        """Process a job to a terminal state.

        Never raises for pipeline failures; the outcome is recorded through
        the tracker and returned.

        A job that is no longer processing is left untouched, so a
        redelivered run cannot disturb its record or its published output.

        Returns:
            Terminal status reached by the job
        """
        view = await self.tracker.find(job_id)
        if view is None or view.status != JobStatus.PROCESSING:
            status = view.status if view else JobStatus.FAILED
            log_warning(
                logger,
                f"Skipping run of job {job_id}: it is no longer processing",
                job_id=job_id,
                status=status.value,
            )
            return status

        set_correlation_id(job_id)
        ACTIVE_PIPELINES.inc()
        started = time.monotonic()

        try:
            duration = await self._process(job_id, Path(source_path))
        except Exception as e:
            log_error(logger, f"Pipeline failed for job {job_id}: {e}", exception=e, job_id=job_id)
            await self._record_failure(job_id, e)
            status = JobStatus.FAILED
        else:
            log_info(
                logger,
                f"Job {job_id} completed",
                job_id=job_id,
                duration_seconds=duration.seconds,
            )
            status = JobStatus.COMPLETED
        finally:
            self._remove_work_dir(job_id)
            ACTIVE_PIPELINES.dec()
            TRANSCODE_JOB_DURATION_SECONDS.observe(time.monotonic() - started)
            clear_correlation_id()

        TRANSCODE_JOBS_TOTAL.labels(status=status.value).inc()
        return status

    async def _process(self, job_id: str, source_path: Path) -> Duration:
        probe = await asyncio.to_thread(self.backend.probe, str(source_path))
        if probe.duration_seconds is None:
            raise ProbeError("Source duration is unknown")

        ladder = build_ladder(probe.streams)
        log_info(
            logger,
            f"Ladder for job {job_id}: {', '.join(v.name for v in ladder)}",
            job_id=job_id,
            source_height=probe.max_height,
        )

        job_dir = self.layout.job_dir(job_id)
        job_dir.mkdir(parents=True, exist_ok=True)

        await self.encode_ladder(str(source_path), ladder, job_dir)

        manifest = build_master_manifest(ladder, base_url=self.manifest_base_url)
        write_master_manifest(job_dir, manifest)
        if len(parse_master_manifest(manifest)) != len(ladder):
            raise ManifestError("Master playlist does not list every variant")

        view = await self.tracker.get(job_id)
        thumbnail_path = view.thumbnail_path
        if thumbnail_path is None:
            thumbnail_path = await self._capture_thumbnail(job_id, source_path, probe.duration_seconds)

        duration = Duration.from_seconds(probe.duration_seconds)
        await self.tracker.update(
            job_id,
            JobPatch(
                status=JobStatus.COMPLETED,
                thumbnail_path=thumbnail_path,
                duration=duration,
            ),
        )
        return duration

    async def encode_ladder(
        self,
        source_path: str,
        ladder: Sequence[Variant],
        job_dir: Path,
    ) -> list[EncodeResult]:
        """Encode every variant, at most ``max_parallel_encodes`` at once.

        Returns only after every started encode has finished. After the first
        failure, encodes that have not started yet are skipped and the first
        error is raised once the running ones are done.

        Returns:
            Results in ladder order
        """
        semaphore = asyncio.Semaphore(self.max_parallel_encodes)
        abort = asyncio.Event()
        errors: list[Exception] = []

        async def encode_one(variant: Variant) -> Optional[EncodeResult]:
            async with semaphore:
                if abort.is_set():
                    return None
                try:
                    result = await asyncio.to_thread(
                        self.backend.encode_variant, source_path, variant, str(job_dir)
                    )
                except Exception as e:
                    errors.append(e)
                    abort.set()
                    return None
                VARIANT_ENCODE_DURATION_SECONDS.labels(variant=variant.name).observe(
                    result.elapsed_seconds
                )
                return result

        results = await asyncio.gather(*(encode_one(variant) for variant in ladder))

        if errors:
            raise errors[0]

        return list(results)

    async def _capture_thumbnail(self, job_id: str, source_path: Path, duration_seconds: float) -> str:
        at_seconds = min(self.thumbnail_at_seconds, duration_seconds / 2)
        target = self.layout.thumbnail_target(job_id)
        await asyncio.to_thread(
            self.backend.capture_thumbnail, str(source_path), str(target), at_seconds
        )
        return self.layout.public_path(job_id, target.name)

    # ==================== Failure handling ====================

    async def _record_failure(self, job_id: str, error: Exception) -> None:
        # Only a job still in the processing state owns its output directory.
        try:
            if self.failed_job_policy == "delete":
                owned = await self.tracker.delete(job_id, status=JobStatus.PROCESSING)
            else:
                await self.tracker.update(
                    job_id,
                    JobPatch(status=JobStatus.FAILED, error_message=str(error) or type(error).__name__),
                )
                owned = True
        except (InvalidJobTransitionError, JobNotFoundError):
            owned = False
        except Exception as e:
            log_error(logger, f"Could not record failure of job {job_id}", exception=e, job_id=job_id)
            owned = True

        if not owned:
            log_warning(
                logger,
                f"Job {job_id} is no longer processing, leaving its output in place",
                job_id=job_id,
            )
            return

        try:
            self.layout.remove_job_output(job_id)
        except OSError as e:
            log_warning(logger, f"Could not remove output of job {job_id}: {e}", job_id=job_id)

    def _remove_work_dir(self, job_id: str) -> None:
        try:
            self.layout.remove_work_dir(job_id)
        except OSError as e:
            log_warning(logger, f"Could not remove staged source of job {job_id}: {e}", job_id=job_id)

    def _cleanup_files(self, job_id: str) -> None:
        try:
            self.layout.remove_job_output(job_id)
        except OSError as e:
            log_warning(logger, f"Could not remove output of job {job_id}: {e}", job_id=job_id)
        self._remove_work_dir(job_id)
