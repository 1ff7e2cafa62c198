"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import Database, get_session
from app.core.logging import setup_logging
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import CorrelationIdMiddleware, MetricsMiddleware, RequestLoggingMiddleware
from app.modules.transcoding import transcoding_router
from app.modules.transcoding.ffmpeg import FFmpegBackend, MediaBackend
from app.modules.transcoding.pipeline import JobDispatcher, PipelineOrchestrator
from app.modules.transcoding.service import TranscodingService
from app.modules.transcoding.storage import OutputLayout
from app.modules.transcoding.tracker import JobStateTracker
from app.modules.transcoding.worker import TranscodeWorkerPool


def _build_dispatcher() -> tuple[JobDispatcher, Optional[TranscodeWorkerPool]]:
    if settings.DISPATCH_BACKEND == "celery":
        from app.modules.transcoding.tasks import CeleryDispatcher

        return CeleryDispatcher(), None

    pool = TranscodeWorkerPool.from_settings()
    return pool, pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database and start the worker pool for the app's lifetime."""
    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    await database.open()

    backend: MediaBackend = FFmpegBackend.from_settings()
    layout = OutputLayout.from_settings()
    tracker = JobStateTracker(database)
    dispatcher, pool = _build_dispatcher()
    orchestrator = PipelineOrchestrator.from_settings(tracker, backend, layout, dispatcher)

    if pool is not None:
        pool.start(orchestrator.run)

    app.state.database = database
    app.state.worker_pool = pool
    app.state.transcoding_service = TranscodingService(
        orchestrator,
        tracker,
        layout,
        max_upload_size_mb=settings.MAX_UPLOAD_SIZE_MB,
    )

    try:
        yield
    finally:
        if pool is not None:
            await pool.stop()
        await database.close()


def create_app() -> FastAPI:
    """Build the application with middleware and routes."""
    setup_logging(
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        include_stack_trace=True,
    )
    set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Upload videos and package them as HLS adaptive-bitrate streams.",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health check endpoints"},
            {"name": "videos", "description": "Video upload, status polling and listing"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    @app.get("/health", tags=["health"])
    async def health_check(session: AsyncSession = Depends(get_session)) -> dict[str, str]:
        """Health check endpoint.

        Returns:
            dict: Health status with "healthy" or "unhealthy" value.
        """
        try:
            await session.execute(text("SELECT 1"))
        except Exception:
            return {"status": "unhealthy"}
        return {"status": "healthy"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(content=get_metrics(), media_type=get_content_type())

    app.include_router(transcoding_router, prefix=settings.API_V1_PREFIX)
    return app


app = create_app()
