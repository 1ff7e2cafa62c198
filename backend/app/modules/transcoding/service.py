"""Service layer for the upload and polling boundaries."""

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from app.modules.transcoding.exceptions import InvalidUploadError
from app.modules.transcoding.pipeline import PipelineOrchestrator, UploadSubmission
from app.modules.transcoding.schemas import JobStatusResponse, UploadAcceptedResponse, VideoSummary
from app.modules.transcoding.storage import OutputLayout
from app.modules.transcoding.tracker import JobStateTracker

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "Upload received. Processing will continue in background."

MAX_TITLE_LENGTH = 500


def _default_title(filename: str) -> str:
    stem = Path(filename.replace("\\", "/")).stem.strip()
    return stem or "Untitled"


def _discard(path: Optional[str]) -> None:
    if path and os.path.exists(path):
        os.remove(path)


class TranscodingService:
    """Accepts uploads and answers status queries."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        tracker: JobStateTracker,
        layout: OutputLayout,
        max_upload_size_mb: Optional[int] = None,
    ):
        self.orchestrator = orchestrator
        self.tracker = tracker
        self.layout = layout
        self.max_upload_bytes = max_upload_size_mb * 1024 * 1024 if max_upload_size_mb else None

    async def _spool(self, upload: UploadFile) -> str:
        """Copy an uploaded file to a temporary file under the work root."""
        self.layout.work_root.mkdir(parents=True, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="upload-", dir=self.layout.work_root)

        def copy() -> None:
            with os.fdopen(fd, "wb") as out:
                upload.file.seek(0)
                shutil.copyfileobj(upload.file, out)

        try:
            await asyncio.to_thread(copy)
        except Exception:
            _discard(path)
            raise
        return path

    async def submit_upload(
        self,
        video: Optional[UploadFile],
        title: str = "",
        description: str = "",
        thumbnail: Optional[UploadFile] = None,
    ) -> UploadAcceptedResponse:
        """Create a job for an uploaded video.

        Args:
            video: Uploaded source file
            title: Video title; the file name is used when blank
            description: Video description
            thumbnail: Optional preview image supplied by the user

        Returns:
            Acceptance message with the new job id

        Raises:
            InvalidUploadError: If the video is missing, empty or too large
            QueueFullError: If no background capacity is available
        """
        if video is None or not video.filename:
            raise InvalidUploadError("No video provided")

        title = title.strip() or _default_title(video.filename)
        if len(title) > MAX_TITLE_LENGTH:
            raise InvalidUploadError(f"Title must be at most {MAX_TITLE_LENGTH} characters")

        video_path = await self._spool(video)
        thumbnail_path = None
        try:
            size = os.path.getsize(video_path)
            if size == 0:
                raise InvalidUploadError("Uploaded video is empty")
            if self.max_upload_bytes and size > self.max_upload_bytes:
                raise InvalidUploadError("Uploaded video exceeds the size limit")

            if thumbnail is not None and thumbnail.filename:
                thumbnail_path = await self._spool(thumbnail)

            job_id = await self.orchestrator.start_job(
                UploadSubmission(
                    title=title,
                    description=description,
                    video_path=video_path,
                    video_filename=video.filename,
                    thumbnail_path=thumbnail_path,
                    thumbnail_filename=thumbnail.filename if thumbnail_path else None,
                )
            )
        except Exception:
            _discard(video_path)
            _discard(thumbnail_path)
            raise

        return UploadAcceptedResponse(message=ACCEPTED_MESSAGE, upload_id=job_id)

    async def get_status(self, job_id: str) -> JobStatusResponse:
        """Coarse status of a job.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        view = await self.tracker.get(job_id)
        return JobStatusResponse.from_view(view)

    async def list_videos(self, limit: Optional[int] = None) -> list[VideoSummary]:
        """Completed videos, newest first."""
        views = await self.tracker.list_completed(limit=limit)
        return [VideoSummary.from_view(view) for view in views]
