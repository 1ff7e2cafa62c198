"""Local output layout for HLS packages.

    <OUTPUT_ROOT>/<jobId>/master.m3u8
    <OUTPUT_ROOT>/<jobId>/<variant>/index.m3u8
    <OUTPUT_ROOT>/<jobId>/<variant>/segment<N>.ts
    <OUTPUT_ROOT>/<jobId>/thumbnail.jpg | <original thumbnail name>

Uploaded sources are staged under <WORK_DIR>/<jobId>/ and never become
part of the published package.
"""

import os
import shutil
from pathlib import Path
from typing import Optional

from app.core.config import settings

THUMBNAIL_NAME = "thumbnail.jpg"


def safe_filename(name: Optional[str], default: str) -> str:
    """Strip directory components from a client supplied file name."""
    base = os.path.basename((name or "").replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        return default
    return base


class OutputLayout:
    """Filesystem locations owned by transcode jobs."""

    def __init__(self, output_root: str, work_dir: str, public_base_path: str = "/uploads"):
        self.output_root = Path(output_root)
        self.work_root = Path(work_dir)
        self.public_base_path = public_base_path.rstrip("/")

    @classmethod
    def from_settings(cls) -> "OutputLayout":
        return cls(
            output_root=settings.OUTPUT_ROOT,
            work_dir=settings.WORK_DIR,
            public_base_path=settings.PUBLIC_BASE_PATH,
        )

    def job_dir(self, job_id: str) -> Path:
        return self.output_root / job_id

    def work_dir(self, job_id: str) -> Path:
        return self.work_root / job_id

    def public_path(self, job_id: str, filename: str) -> str:
        """Public URL path of a file inside the job package."""
        return f"{self.public_base_path}/{job_id}/{filename}"

    def resolve_public_path(self, public_path: str) -> Path:
        """Map a public URL path back to the file on disk.

        Raises:
            ValueError: If the path is outside the public base path
        """
        prefix = f"{self.public_base_path}/"
        if not public_path.startswith(prefix):
            raise ValueError(f"Not a package path: {public_path}")
        return self.output_root / public_path[len(prefix):]

    def prepare(self, job_id: str) -> None:
        self.job_dir(job_id).mkdir(parents=True, exist_ok=True)
        self.work_dir(job_id).mkdir(parents=True, exist_ok=True)

    def stage_source(self, job_id: str, upload_path: str, original_name: Optional[str]) -> Path:
        """Move an uploaded source into the job's work directory."""
        dest = self.work_dir(job_id) / safe_filename(original_name, "video")
        shutil.move(upload_path, dest)
        return dest

    def stage_thumbnail(self, job_id: str, upload_path: str, original_name: Optional[str]) -> str:
        """Move a user supplied thumbnail into the package; returns its public path."""
        filename = safe_filename(original_name, "thumb.jpg")
        shutil.move(upload_path, self.job_dir(job_id) / filename)
        return self.public_path(job_id, filename)

    def thumbnail_target(self, job_id: str) -> Path:
        return self.job_dir(job_id) / THUMBNAIL_NAME

    def remove_job_output(self, job_id: str) -> None:
        """Recursively delete the job's output package.

        Raises:
            OSError: If the directory exists but cannot be removed
        """
        path = self.job_dir(job_id)
        if path.exists():
            shutil.rmtree(path)

    def remove_work_dir(self, job_id: str) -> None:
        path = self.work_dir(job_id)
        if path.exists():
            shutil.rmtree(path)
