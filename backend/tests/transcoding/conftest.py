"""Shared fixtures for transcoding tests.

Pipelines run against a real SQLite database and a fake media backend that
writes the files FFmpeg would produce.
"""

import threading
import time
from pathlib import Path
from typing import Iterable, Optional

import pytest
import pytest_asyncio

from app.core.database import Database
from app.modules.transcoding.abr import Variant
from app.modules.transcoding.exceptions import EncodeError, ProbeError
from app.modules.transcoding.ffmpeg import PLAYLIST_NAME, EncodeResult, MediaBackend
from app.modules.transcoding.pipeline import JobDispatcher
from app.modules.transcoding.probe import ProbeResult, StreamInfo
from app.modules.transcoding.storage import OutputLayout
from app.modules.transcoding.tracker import JobStateTracker


class FakeMediaBackend(MediaBackend):
    """In-memory stand-in for FFmpeg that writes plausible HLS output."""

    def __init__(
        self,
        probe_result: Optional[ProbeResult] = None,
        probe_error: Optional[Exception] = None,
        fail_variants: Iterable[str] = (),
        encode_delay: float = 0.0,
        thumbnail_error: Optional[Exception] = None,
    ):
        self.probe_result = probe_result or ProbeResult(
            streams=[StreamInfo(width=1280, height=720)],
            duration_seconds=125.456,
        )
        self.probe_error = probe_error
        self.fail_variants = set(fail_variants)
        self.encode_delay = encode_delay
        self.thumbnail_error = thumbnail_error

        self.encoded: list[str] = []
        self.attempted: list[str] = []
        self.thumbnail_calls: list[tuple[str, float]] = []
        self.max_running = 0
        self._running = 0
        self._lock = threading.Lock()

    def probe(self, path: str) -> ProbeResult:
        if self.probe_error is not None:
            raise self.probe_error
        if not Path(path).is_file():
            raise ProbeError(f"Source file not found: {path}")
        return self.probe_result

    def encode_variant(self, source_path: str, variant: Variant, output_dir: str) -> EncodeResult:
        with self._lock:
            self.attempted.append(variant.name)
            self._running += 1
            self.max_running = max(self.max_running, self._running)
        try:
            if variant.name in self.fail_variants:
                raise EncodeError(f"FFmpeg encode of {variant.name} failed with code 1", variant_name=variant.name)
            if self.encode_delay:
                time.sleep(self.encode_delay)

            variant_dir = Path(output_dir) / variant.name
            variant_dir.mkdir(parents=True, exist_ok=True)
            playlist = variant_dir / PLAYLIST_NAME
            playlist.write_text("#EXTM3U\n#EXT-X-ENDLIST\n")
            segment = variant_dir / "segment0.ts"
            segment.write_bytes(b"\x47" * 188)

            with self._lock:
                self.encoded.append(variant.name)
            return EncodeResult(variant=variant, playlist_path=playlist, segment_paths=[segment], elapsed_seconds=0.01)
        finally:
            with self._lock:
                self._running -= 1

    def capture_thumbnail(self, source_path: str, output_path: str, at_seconds: float) -> Path:
        self.thumbnail_calls.append((output_path, at_seconds))
        if self.thumbnail_error is not None:
            raise self.thumbnail_error
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\xff\xd8\xff\xd9")
        return path


class RecordingDispatcher(JobDispatcher):
    """Collects dispatched jobs without running them."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.dispatched: list[tuple[str, str]] = []

    async def dispatch(self, job_id: str, source_path: str) -> None:
        if self.error is not None:
            raise self.error
        self.dispatched.append((job_id, source_path))


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.open()
    yield db
    await db.close()


@pytest.fixture
def tracker(database) -> JobStateTracker:
    return JobStateTracker(database)


@pytest.fixture
def layout(tmp_path) -> OutputLayout:
    return OutputLayout(
        output_root=str(tmp_path / "public" / "uploads"),
        work_dir=str(tmp_path / "work"),
        public_base_path="/uploads",
    )


@pytest.fixture
def fake_backend() -> FakeMediaBackend:
    return FakeMediaBackend()


@pytest.fixture
def make_upload(tmp_path):
    """Write a temporary upload file and return its path."""
    counter = {"n": 0}

    def _make(content: bytes = b"fake video bytes", suffix: str = ".mp4") -> str:
        counter["n"] += 1
        path = tmp_path / "incoming" / f"upload-{counter['n']}{suffix}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return str(path)

    return _make


@pytest.fixture
def backend_factory():
    """Build a FakeMediaBackend with custom behaviour."""
    return FakeMediaBackend


@pytest.fixture
def dispatcher_factory():
    """Build a RecordingDispatcher, optionally failing every dispatch."""
    return RecordingDispatcher
