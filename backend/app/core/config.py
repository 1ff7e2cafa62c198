"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Defaults are suitable for a single-node local deployment.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Adaptive Stream Packager API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./transcode.db"
    DATABASE_ECHO: bool = False

    # Redis / Celery (only used when DISPATCH_BACKEND=celery)
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    CELERY_TASK_TIME_LIMIT: int = 3600 * 4
    # Redelivery window for unacknowledged tasks, beyond the time limit
    CELERY_VISIBILITY_TIMEOUT_MARGIN: int = 600

    # Output layout
    OUTPUT_ROOT: str = "./public/uploads"
    WORK_DIR: str = "./temp_uploads"
    PUBLIC_BASE_PATH: str = "/uploads"

    # External media tools
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    PROBE_TIMEOUT_SECONDS: float = 30.0
    ENCODE_TIMEOUT_SECONDS: float = 3600.0

    # HLS packaging
    HLS_SEGMENT_SECONDS: int = 6
    THUMBNAIL_AT_SECONDS: float = 5.0
    THUMBNAIL_SIZE: str = "320x240"

    # Worker pool
    DISPATCH_BACKEND: str = "local"  # local, celery
    WORKER_CONCURRENCY: int = 2
    JOB_QUEUE_MAXSIZE: int = 32
    MAX_PARALLEL_ENCODES: int = 2

    # delete: failed jobs are removed, retain: kept with status=failed
    FAILED_JOB_POLICY: str = "delete"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # CORS
    CORS_ORIGINS: list[str] = []

    # Upload limits
    MAX_UPLOAD_SIZE_MB: Optional[int] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
