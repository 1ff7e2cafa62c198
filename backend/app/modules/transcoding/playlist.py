"""HLS master playlist assembly."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from app.modules.transcoding.abr import Variant, parse_kbps
from app.modules.transcoding.exceptions import ManifestError

MASTER_PLAYLIST_NAME = "master.m3u8"

_STREAM_INF_RE = re.compile(r"^#EXT-X-STREAM-INF:BANDWIDTH=(\d+),RESOLUTION=(\d+)x(\d+)$")


@dataclass(frozen=True)
class StreamEntry:
    """One variant reference read back from a master playlist."""
    bandwidth: int
    width: int
    height: int
    uri: str


def variant_bandwidth(variant: Variant) -> int:
    """Bandwidth advertised for a variant, in bits per second."""
    try:
        return parse_kbps(variant.video_bitrate) * 1000 + parse_kbps(variant.audio_bitrate) * 1000
    except ValueError as e:
        raise ManifestError(f"Invalid bitrate for variant {variant.name}: {e}") from e


def build_master_manifest(variants: Sequence[Variant], base_url: Optional[str] = None) -> str:
    """Build the master playlist text.

    Variants are written in the order given; players use the first entry as
    the default rendition.

    Args:
        variants: Ladder, highest resolution first
        base_url: Optional prefix for variant playlist references. Without it
            references are relative to the master playlist.

    Returns:
        Playlist text
    """
    if not variants:
        raise ManifestError("Cannot build a master playlist without variants")

    prefix = f"{base_url.rstrip('/')}/" if base_url else ""

    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for variant in variants:
        bandwidth = variant_bandwidth(variant)
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},RESOLUTION={variant.width}x{variant.height}"
        )
        lines.append(f"{prefix}{variant.name}/index.m3u8")

    return "\n".join(lines) + "\n"


def write_master_manifest(job_dir: Path, text: str) -> Path:
    """Write ``master.m3u8`` into the job directory."""
    path = Path(job_dir) / MASTER_PLAYLIST_NAME
    path.write_text(text, encoding="utf-8")
    return path


def parse_master_manifest(text: str) -> list[StreamEntry]:
    """Read the variant entries of a master playlist.

    Raises:
        ManifestError: If the header is missing or an entry has no URI
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or lines[0] != "#EXTM3U":
        raise ManifestError("Missing #EXTM3U header")

    entries = []
    pending = None
    for line in lines[1:]:
        match = _STREAM_INF_RE.match(line)
        if match:
            pending = tuple(int(g) for g in match.groups())
            continue
        if pending and not line.startswith("#"):
            bandwidth, width, height = pending
            entries.append(StreamEntry(bandwidth=bandwidth, width=width, height=height, uri=line))
            pending = None

    if pending:
        raise ManifestError("Stream entry without a playlist reference")

    return entries
