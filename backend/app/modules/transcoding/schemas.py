"""Pydantic schemas for the transcoding service."""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.modules.transcoding.models import JobStatus, TranscodeJob


class Duration(BaseModel):
    """Source duration, both units rounded to two decimals."""
    model_config = ConfigDict(frozen=True)

    seconds: float
    minutes: float

    @classmethod
    def from_seconds(cls, total_seconds: float) -> "Duration":
        return cls(
            seconds=round(total_seconds, 2),
            minutes=round(total_seconds / 60, 2),
        )


class JobCreate(BaseModel):
    """Metadata supplied when a job is created."""
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", description="Free-form description")


class JobPatch(BaseModel):
    """Partial update applied to a job by the orchestrator."""
    status: Optional[JobStatus] = None
    thumbnail_path: Optional[str] = None
    duration: Optional[Duration] = None
    error_message: Optional[str] = None


# ==================== Tagged job state ====================

class ProcessingState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["processing"] = "processing"


class CompletedState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["completed"] = "completed"
    duration: Duration
    thumbnail_path: str


class FailedState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failed"] = "failed"


JobState = Annotated[
    Union[ProcessingState, CompletedState, FailedState],
    Field(discriminator="status"),
]


class JobView(BaseModel):
    """Read-only snapshot of a job, detached from any session."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    created_at: Optional[datetime] = None
    thumbnail_path: Optional[str] = None
    state: JobState

    @property
    def status(self) -> JobStatus:
        return JobStatus(self.state.status)

    @property
    def duration(self) -> Optional[Duration]:
        return self.state.duration if isinstance(self.state, CompletedState) else None

    @classmethod
    def from_model(cls, job: TranscodeJob) -> "JobView":
        status = JobStatus(job.status)
        if status == JobStatus.COMPLETED:
            state = CompletedState(
                duration=Duration(seconds=job.duration_seconds, minutes=job.duration_minutes),
                thumbnail_path=job.thumbnail_path,
            )
        elif status == JobStatus.FAILED:
            state = FailedState()
        else:
            state = ProcessingState()

        return cls(
            id=job.id,
            title=job.title,
            description=job.description,
            created_at=job.created_at,
            thumbnail_path=job.thumbnail_path,
            state=state,
        )


# ==================== API responses ====================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadAcceptedResponse(CamelModel):
    """Returned as soon as the job is persisted and queued."""
    message: str
    upload_id: str


class JobStatusResponse(CamelModel):
    """Coarse job status for polling clients."""
    id: str
    status: JobStatus
    duration: Optional[Duration] = None
    thumbnail_path: Optional[str] = None

    @classmethod
    def from_view(cls, view: JobView) -> "JobStatusResponse":
        return cls(
            id=view.id,
            status=view.status,
            duration=view.duration,
            thumbnail_path=view.thumbnail_path,
        )


class VideoSummary(CamelModel):
    """Completed video as shown in listings."""
    id: str
    title: str
    description: str
    thumbnail_path: str
    duration: Duration
    created_at: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: JobView) -> "VideoSummary":
        return cls(
            id=view.id,
            title=view.title,
            description=view.description,
            thumbnail_path=view.state.thumbnail_path,
            duration=view.state.duration,
            created_at=view.created_at,
        )
