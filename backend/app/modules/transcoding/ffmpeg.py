"""FFmpeg transcoding utilities.

Drives the external encoder: one segmented HLS encode per ladder variant,
plus a single-frame thumbnail capture.
"""

import logging
import re
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from app.core.config import settings
from app.modules.transcoding.abr import Variant
from app.modules.transcoding.exceptions import EncodeError
from app.modules.transcoding.probe import MediaProber, ProbeResult

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "index.m3u8"
SEGMENT_PATTERN = "segment%d.ts"

_SEGMENT_RE = re.compile(r"^segment(\d+)\.ts$")

# Keep the tail of stderr only; ffmpeg is verbose
_STDERR_TAIL = 4000


@dataclass
class EncodeResult:
    """Artifacts produced by one variant encode."""
    variant: Variant
    playlist_path: Path
    segment_paths: list[Path] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class MediaBackend(ABC):
    """Media-processing capability consumed by the pipeline."""

    @abstractmethod
    def probe(self, path: str) -> ProbeResult:
        """Inspect a source file."""
        pass

    @abstractmethod
    def encode_variant(self, source_path: str, variant: Variant, output_dir: str) -> EncodeResult:
        """Encode one variant into ``output_dir/variant.name/``."""
        pass

    @abstractmethod
    def capture_thumbnail(self, source_path: str, output_path: str, at_seconds: float) -> Path:
        """Write a single preview frame to ``output_path``."""
        pass


def even(value: int) -> int:
    """Round up to the next even number (yuv420p needs even dimensions)."""
    return value + (value % 2)


def list_segments(variant_dir: Path) -> list[Path]:
    """Segments in a variant directory, in playback order."""
    numbered = []
    for path in variant_dir.iterdir():
        match = _SEGMENT_RE.match(path.name)
        if match:
            numbered.append((int(match.group(1)), path))
    return [path for _, path in sorted(numbered)]


class FFmpegBackend(MediaBackend):
    """FFmpeg/FFprobe implementation of :class:`MediaBackend`."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        segment_seconds: int = 6,
        encode_timeout: Optional[float] = 3600.0,
        probe_timeout: float = 30.0,
        thumbnail_size: str = "320x240",
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        """Initialize backend.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            segment_seconds: HLS segment duration
            encode_timeout: Upper bound for one ffmpeg invocation
            probe_timeout: Upper bound for one ffprobe invocation
            thumbnail_size: Thumbnail size as ``WxH``
            runner: ``subprocess.run`` compatible callable
        """
        self.ffmpeg_path = ffmpeg_path
        self.segment_seconds = segment_seconds
        self.encode_timeout = encode_timeout
        self.thumbnail_size = thumbnail_size
        self._run = runner or subprocess.run
        self.prober = MediaProber(ffprobe_path, timeout=probe_timeout, runner=self._run)

    @classmethod
    def from_settings(cls) -> "FFmpegBackend":
        return cls(
            ffmpeg_path=settings.FFMPEG_PATH,
            ffprobe_path=settings.FFPROBE_PATH,
            segment_seconds=settings.HLS_SEGMENT_SECONDS,
            encode_timeout=settings.ENCODE_TIMEOUT_SECONDS,
            probe_timeout=settings.PROBE_TIMEOUT_SECONDS,
            thumbnail_size=settings.THUMBNAIL_SIZE,
        )

    def probe(self, path: str) -> ProbeResult:
        return self.prober.probe(path)

    def build_hls_command(self, source_path: str, variant: Variant, variant_dir: Path) -> list[str]:
        """Build the FFmpeg command for one HLS variant.

        Args:
            source_path: Input video
            variant: Rendition to produce
            variant_dir: Directory receiving the playlist and segments

        Returns:
            FFmpeg command as list of arguments
        """
        width, height = even(variant.width), even(variant.height)
        return [
            self.ffmpeg_path,
            "-y",
            "-i", source_path,
            # Video settings
            "-c:v", "libx264",
            "-b:v", variant.video_bitrate,
            "-vf", f"scale={width}:{height}",
            # Audio settings
            "-c:a", "aac",
            "-b:a", variant.audio_bitrate,
            # HLS output
            "-f", "hls",
            "-hls_time", str(self.segment_seconds),
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(variant_dir / SEGMENT_PATTERN),
            str(variant_dir / PLAYLIST_NAME),
        ]

    def build_thumbnail_command(self, source_path: str, output_path: str, at_seconds: float) -> list[str]:
        width, height = self.thumbnail_size.lower().split("x")
        return [
            self.ffmpeg_path,
            "-y",
            "-ss", f"{at_seconds:.3f}",
            "-i", source_path,
            "-frames:v", "1",
            "-vf", f"scale={width}:{height}",
            output_path,
        ]

    def _execute(self, cmd: list[str], what: str, variant_name: Optional[str] = None) -> None:
        try:
            result = self._run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.encode_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise EncodeError(
                f"FFmpeg {what} timed out after {self.encode_timeout}s",
                variant_name=variant_name,
            ) from e
        except OSError as e:
            raise EncodeError(f"Could not run ffmpeg for {what}: {e}", variant_name=variant_name) from e

        if result.returncode != 0:
            stderr = (result.stderr or "")[-_STDERR_TAIL:]
            raise EncodeError(
                f"FFmpeg {what} failed with code {result.returncode}",
                variant_name=variant_name,
                stderr=stderr,
            ) from subprocess.CalledProcessError(result.returncode, cmd, stderr=stderr)

    def encode_variant(self, source_path: str, variant: Variant, output_dir: str) -> EncodeResult:
        """Encode one variant to segmented HLS.

        Raises:
            EncodeError: If ffmpeg fails or leaves no playlist/segments
        """
        variant_dir = Path(output_dir) / variant.name
        variant_dir.mkdir(parents=True, exist_ok=True)

        cmd = self.build_hls_command(source_path, variant, variant_dir)
        logger.info(f"Starting encode: {source_path} -> {variant_dir} @ {variant.name}")

        started = time.monotonic()
        self._execute(cmd, f"encode of {variant.name}", variant_name=variant.name)
        elapsed = time.monotonic() - started

        playlist_path = variant_dir / PLAYLIST_NAME
        segments = list_segments(variant_dir)
        if not playlist_path.is_file() or not segments:
            raise EncodeError(
                f"Encode of {variant.name} produced no playlist or segments",
                variant_name=variant.name,
            )

        logger.info(f"Finished encode of {variant.name}: {len(segments)} segment(s) in {elapsed:.1f}s")
        return EncodeResult(
            variant=variant,
            playlist_path=playlist_path,
            segment_paths=segments,
            elapsed_seconds=elapsed,
        )

    def capture_thumbnail(self, source_path: str, output_path: str, at_seconds: float) -> Path:
        """Capture one frame as a JPEG thumbnail.

        Raises:
            EncodeError: If ffmpeg fails or writes nothing
        """
        cmd = self.build_thumbnail_command(source_path, output_path, at_seconds)
        self._execute(cmd, "thumbnail capture")

        path = Path(output_path)
        if not path.is_file():
            raise EncodeError("Thumbnail capture produced no image")
        return path
