"""Source media inspection with ffprobe."""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.modules.transcoding.exceptions import ProbeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamInfo:
    """Geometry of one video stream."""
    width: int
    height: int
    bitrate: Optional[int] = None  # bps; None when the container omits it


@dataclass
class ProbeResult:
    """What the prober learned about a source file."""
    streams: list[StreamInfo] = field(default_factory=list)
    duration_seconds: Optional[float] = None

    @property
    def max_height(self) -> int:
        return max((s.height for s in self.streams), default=0)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def parse_probe_output(data: dict) -> ProbeResult:
    """Build a ProbeResult from ffprobe's JSON document.

    Raises:
        ProbeError: If the document contains no video stream
    """
    video_streams = [
        s for s in data.get("streams", [])
        if s.get("codec_type") == "video"
    ]
    if not video_streams:
        raise ProbeError("No video stream found in file")

    streams = [
        StreamInfo(
            width=_to_int(s.get("width")) or 0,
            height=_to_int(s.get("height")) or 0,
            bitrate=_to_int(s.get("bit_rate")) or None,
        )
        for s in video_streams
    ]

    duration = _to_float(data.get("format", {}).get("duration"))
    if duration is None:
        stream_durations = [_to_float(s.get("duration")) for s in video_streams]
        duration = max((d for d in stream_durations if d), default=None)

    return ProbeResult(streams=streams, duration_seconds=duration)


class MediaProber:
    """Runs ffprobe against a file and parses its report."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        timeout: float = 30.0,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self._run = runner or subprocess.run

    def build_command(self, path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            path,
        ]

    def probe(self, path: str) -> ProbeResult:
        """Inspect ``path`` and report its video streams and duration.

        Raises:
            ProbeError: If the file is unreadable or has no video stream
        """
        if not os.path.isfile(path):
            raise ProbeError(f"Source file not found: {path}")

        try:
            result = self._run(
                self.build_command(path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeError("FFprobe timed out") from e
        except OSError as e:
            raise ProbeError(f"Could not run ffprobe: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"FFprobe failed: {result.stderr}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse FFprobe output: {e}") from e

        probed = parse_probe_output(data)
        logger.debug(
            "Probed %s: %d video stream(s), duration=%s",
            path, len(probed.streams), probed.duration_seconds,
        )
        return probed
