"""Video API router.

Upload, status polling and listing of packaged videos.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status

from app.modules.transcoding.exceptions import (
    DuplicateJobError,
    InvalidUploadError,
    JobNotFoundError,
    QueueFullError,
)
from app.modules.transcoding.schemas import JobStatusResponse, UploadAcceptedResponse, VideoSummary
from app.modules.transcoding.service import TranscodingService

router = APIRouter(prefix="/videos", tags=["videos"])


def get_transcoding_service(request: Request) -> TranscodingService:
    """FastAPI dependency returning the service built at startup."""
    return request.app.state.transcoding_service


@router.post(
    "/upload",
    response_model=UploadAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_video(
    video: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    title: str = Form(""),
    description: str = Form(""),
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Upload a video for HLS packaging.

    Responds as soon as the job is queued; poll the status endpoint for the
    outcome.
    """
    try:
        return await service.submit_upload(
            video=video,
            title=title,
            description=description,
            thumbnail=thumbnail,
        )
    except InvalidUploadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateJobError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except QueueFullError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
            headers={"Retry-After": "30"},
        )


@router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
async def get_video_status(
    job_id: str,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Get the processing status of an upload."""
    try:
        return await service.get_status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")


@router.get("", response_model=list[VideoSummary])
async def list_videos(
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: TranscodingService = Depends(get_transcoding_service),
):
    """List videos whose packaging has completed."""
    return await service.list_videos(limit=limit)
