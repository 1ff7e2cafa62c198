"""Tests for the video HTTP endpoints."""

import httpx
import pytest
import pytest_asyncio

from app.main import create_app
from app.modules.transcoding.exceptions import QueueFullError
from app.modules.transcoding.pipeline import PipelineOrchestrator
from app.modules.transcoding.schemas import JobCreate
from app.modules.transcoding.service import TranscodingService
from app.modules.transcoding.worker import TranscodeWorkerPool

VIDEO = ("clip.mp4", b"not really a video", "video/mp4")


def make_client(database, tracker, layout, orchestrator) -> httpx.AsyncClient:
    app = create_app()
    app.state.database = database
    app.state.transcoding_service = TranscodingService(orchestrator, tracker, layout)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def pool():
    pool = TranscodeWorkerPool(concurrency=1, maxsize=4)
    yield pool
    await pool.stop()


@pytest.fixture
def build_client(database, tracker, layout, pool):
    def _build(backend, dispatcher=None, **kwargs) -> httpx.AsyncClient:
        orchestrator = PipelineOrchestrator(
            tracker=tracker,
            backend=backend,
            layout=layout,
            dispatcher=dispatcher or pool,
            **kwargs,
        )
        if dispatcher is None:
            pool.start(orchestrator.run)
        return make_client(database, tracker, layout, orchestrator)

    return _build


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_then_poll_until_completed(self, build_client, fake_backend, pool) -> None:
        async with build_client(fake_backend) as client:
            response = await client.post(
                "/api/v1/videos/upload",
                files={"video": VIDEO},
                data={"title": "Clip", "description": "A clip"},
            )
            assert response.status_code == 202
            body = response.json()
            assert body["message"] == "Upload received. Processing will continue in background."
            upload_id = body["uploadId"]

            await pool.join()

            response = await client.get(f"/api/v1/videos/{upload_id}/status")
            assert response.status_code == 200
            assert response.json() == {
                "id": upload_id,
                "status": "completed",
                "duration": {"seconds": 125.46, "minutes": 2.09},
                "thumbnailPath": f"/uploads/{upload_id}/thumbnail.jpg",
            }

            response = await client.get("/api/v1/videos")
            videos = response.json()
            assert [v["id"] for v in videos] == [upload_id]
            assert videos[0]["title"] == "Clip"
            assert videos[0]["thumbnailPath"] == f"/uploads/{upload_id}/thumbnail.jpg"

    @pytest.mark.asyncio
    async def test_upload_with_thumbnail(self, build_client, fake_backend, pool) -> None:
        async with build_client(fake_backend) as client:
            response = await client.post(
                "/api/v1/videos/upload",
                files={"video": VIDEO, "thumbnail": ("cover.png", b"png", "image/png")},
                data={"title": "Clip"},
            )
            upload_id = response.json()["uploadId"]
            await pool.join()

            status = (await client.get(f"/api/v1/videos/{upload_id}/status")).json()
            assert status["thumbnailPath"] == f"/uploads/{upload_id}/cover.png"
            assert fake_backend.thumbnail_calls == []

    @pytest.mark.asyncio
    async def test_missing_video(self, build_client, fake_backend) -> None:
        async with build_client(fake_backend) as client:
            response = await client.post("/api/v1/videos/upload", data={"title": "Clip"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_video(self, build_client, fake_backend, layout) -> None:
        async with build_client(fake_backend) as client:
            response = await client.post(
                "/api/v1/videos/upload",
                files={"video": ("clip.mp4", b"", "video/mp4")},
            )
        assert response.status_code == 400
        assert list(layout.work_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_queue_full(self, build_client, fake_backend, dispatcher_factory) -> None:
        dispatcher = dispatcher_factory(error=QueueFullError("Transcode queue is full, try again later"))
        async with build_client(fake_backend, dispatcher=dispatcher) as client:
            response = await client.post("/api/v1/videos/upload", files={"video": VIDEO})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"

    @pytest.mark.asyncio
    async def test_title_defaults_to_file_name(self, build_client, fake_backend, dispatcher_factory, tracker) -> None:
        dispatcher = dispatcher_factory()
        async with build_client(fake_backend, dispatcher=dispatcher) as client:
            response = await client.post("/api/v1/videos/upload", files={"video": VIDEO})

        view = await tracker.get(response.json()["uploadId"])
        assert view.title == "clip"


class TestStatus:
    @pytest.mark.asyncio
    async def test_processing_job(self, build_client, fake_backend, dispatcher_factory, tracker) -> None:
        job_id = await tracker.create(JobCreate(title="Clip"))
        async with build_client(fake_backend, dispatcher=dispatcher_factory()) as client:
            response = await client.get(f"/api/v1/videos/{job_id}/status")

        assert response.status_code == 200
        assert response.json() == {"id": job_id, "status": "processing"}

    @pytest.mark.asyncio
    async def test_completed_status_is_stable(self, build_client, fake_backend, pool, layout, tracker) -> None:
        """**Feature: adaptive-stream, Property 4: Terminal States Are Final**

        Repeated status reads of a completed job SHALL return identical
        data, even after the job is handed to the pool again.
        """
        async with build_client(fake_backend) as client:
            response = await client.post("/api/v1/videos/upload", files={"video": VIDEO})
            upload_id = response.json()["uploadId"]
            await pool.join()

            first = (await client.get(f"/api/v1/videos/{upload_id}/status")).json()
            second = (await client.get(f"/api/v1/videos/{upload_id}/status")).json()
            assert first == second
            before = await tracker.get(upload_id)

            await pool.dispatch(upload_id, str(layout.work_dir(upload_id) / "clip.mp4"))
            await pool.join()

            third = (await client.get(f"/api/v1/videos/{upload_id}/status")).json()

        assert third == first
        assert await tracker.get(upload_id) == before
        assert (layout.job_dir(upload_id) / "master.m3u8").is_file()

    @pytest.mark.asyncio
    async def test_unknown_job(self, build_client, fake_backend, dispatcher_factory) -> None:
        async with build_client(fake_backend, dispatcher=dispatcher_factory()) as client:
            response = await client.get("/api/v1/videos/does-not-exist/status")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_failed_job_disappears(self, build_client, backend_factory, pool) -> None:
        async with build_client(backend_factory(fail_variants={"360p"})) as client:
            response = await client.post("/api/v1/videos/upload", files={"video": VIDEO})
            upload_id = response.json()["uploadId"]
            await pool.join()

            assert (await client.get(f"/api/v1/videos/{upload_id}/status")).status_code == 404
            assert (await client.get("/api/v1/videos")).json() == []

    @pytest.mark.asyncio
    async def test_retained_failure_hides_error_detail(self, build_client, backend_factory, pool) -> None:
        backend = backend_factory(fail_variants={"360p"})
        async with build_client(backend, failed_job_policy="retain") as client:
            response = await client.post("/api/v1/videos/upload", files={"video": VIDEO})
            upload_id = response.json()["uploadId"]
            await pool.join()

            response = await client.get(f"/api/v1/videos/{upload_id}/status")

        assert response.json() == {"id": upload_id, "status": "failed"}

    @pytest.mark.asyncio
    async def test_retained_failure_hides_thumbnail(self, build_client, backend_factory, pool) -> None:
        backend = backend_factory(fail_variants={"360p"})
        async with build_client(backend, failed_job_policy="retain") as client:
            response = await client.post(
                "/api/v1/videos/upload",
                files={"video": VIDEO, "thumbnail": ("cover.png", b"png", "image/png")},
            )
            upload_id = response.json()["uploadId"]
            await pool.join()

            response = await client.get(f"/api/v1/videos/{upload_id}/status")

        assert response.json() == {"id": upload_id, "status": "failed"}


class TestOperationalEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, build_client, fake_backend, dispatcher_factory) -> None:
        async with build_client(fake_backend, dispatcher=dispatcher_factory()) as client:
            response = await client.get("/health")
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_metrics(self, build_client, fake_backend, dispatcher_factory) -> None:
        async with build_client(fake_backend, dispatcher=dispatcher_factory()) as client:
            await client.get("/health")
            response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "transcode_queue_depth" in response.text

    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, build_client, fake_backend, dispatcher_factory) -> None:
        async with build_client(fake_backend, dispatcher=dispatcher_factory()) as client:
            response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"
