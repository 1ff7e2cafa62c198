"""Database models for transcoding jobs."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Float, String, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class JobStatus(str, Enum):
    """Lifecycle status of a transcode job."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _new_job_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscodeJob(Base):
    """One uploaded source and the HLS package produced from it."""

    __tablename__ = "transcode_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_job_id)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PROCESSING.value, nullable=False, index=True
    )

    # Public path of the preview image, set once
    thumbnail_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Set once, on completion
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Internal diagnostics, never exposed by the status endpoint
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_transcode_jobs_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TranscodeJob {self.id} - {self.status}>"
