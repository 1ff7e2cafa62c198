"""Adaptive Bitrate (ABR) ladder derivation.

Turns probed source geometry into the ordered set of HLS variants to encode.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from app.modules.transcoding.probe import StreamInfo


# Candidate rungs, highest first
STANDARD_HEIGHTS = (15360, 7680, 4320, 2160, 1440, 1080, 720, 480, 360, 240, 144)

MIN_HEIGHT = 144

FALLBACK_HEIGHTS = (1080, 720, 480)


@dataclass(frozen=True)
class Variant:
    """A single rendition in an ABR ladder."""
    name: str
    width: int
    height: int
    video_bitrate: str  # e.g. "2800k"
    audio_bitrate: str  # e.g. "128k"


def parse_kbps(bitrate: Union[str, int]) -> int:
    """Parse a bitrate string such as ``"2800k"`` into kbps.

    Bare integers are taken to already be in kbps.

    Raises:
        ValueError: If the value is not a non-negative integer with an
            optional ``k`` suffix.
    """
    if isinstance(bitrate, int):
        value = bitrate
    else:
        text = bitrate.strip().lower()
        if text.endswith("k"):
            text = text[:-1]
        value = int(text)

    if value < 0:
        raise ValueError(f"Bitrate must be non-negative: {bitrate!r}")
    return value


def default_video_bitrate(height: int) -> str:
    """Default video bitrate for a rendition height."""
    if height >= 1080:
        return "5000k"
    if height >= 720:
        return "2800k"
    if height >= 480:
        return "1400k"
    if height >= 360:
        return "800k"
    return "400k"


def default_audio_bitrate(height: int) -> str:
    """Default audio bitrate for a rendition height."""
    if height >= 720:
        return "192k"
    if height >= 480:
        return "128k"
    return "96k"


def width_for_height(height: int) -> int:
    """16:9 width for a height."""
    return round(height * 16 / 9)


def make_variant(height: int, source_bitrate: Optional[int] = None) -> Variant:
    """Build a variant for ``height``.

    Args:
        height: Rendition height in pixels
        source_bitrate: Probed bitrate in bits per second, if known

    Returns:
        Variant with defaults filled in
    """
    if source_bitrate:
        video_bitrate = f"{round(source_bitrate / 1000)}k"
    else:
        video_bitrate = default_video_bitrate(height)

    return Variant(
        name=f"{height}p",
        width=width_for_height(height),
        height=height,
        video_bitrate=video_bitrate,
        audio_bitrate=default_audio_bitrate(height),
    )


def fallback_ladder() -> list[Variant]:
    """Fixed ladder used when the source geometry could not be read."""
    return [make_variant(height) for height in FALLBACK_HEIGHTS]


def target_heights(max_height: int) -> list[int]:
    """Rung heights for a source whose tallest stream is ``max_height``.

    Standard rungs between MIN_HEIGHT and the source height are kept in
    descending order; a non-standard source height is placed first.
    """
    heights = [h for h in STANDARD_HEIGHTS if MIN_HEIGHT <= h <= max_height]

    if max_height not in heights and max_height >= MIN_HEIGHT:
        heights.insert(0, max_height)

    return heights


def build_ladder(streams: Iterable[StreamInfo]) -> list[Variant]:
    """Derive the ABR ladder from probed video streams.

    Args:
        streams: Probed video streams of the source

    Returns:
        Variants ordered by descending height, unique per height. Falls back
        to :func:`fallback_ladder` when no usable height is available.
    """
    usable = [s for s in streams if s.height and s.height > 0]
    if not usable:
        return fallback_ladder()

    max_height = max(s.height for s in usable)

    bitrate_by_height: dict[int, int] = {}
    for stream in usable:
        if stream.bitrate and stream.height not in bitrate_by_height:
            bitrate_by_height[stream.height] = stream.bitrate

    ladder: list[Variant] = []
    seen: set[int] = set()
    for height in target_heights(max_height):
        if height in seen:
            continue
        seen.add(height)
        ladder.append(make_variant(height, bitrate_by_height.get(height)))

    if not ladder:
        return fallback_ladder()

    return ladder


def validate_ladder(ladder: list[Variant]) -> tuple[bool, list[str]]:
    """Validate ladder invariants.

    Args:
        ladder: Ladder to validate

    Returns:
        Tuple of (is_valid, error_messages)
    """
    errors = []

    if not ladder:
        errors.append("ABR ladder must have at least one variant")

    heights = [v.height for v in ladder]
    if len(heights) != len(set(heights)):
        errors.append("Variant heights must be unique")

    if heights != sorted(heights, reverse=True):
        errors.append("Variants must be ordered by decreasing height")

    for variant in ladder:
        try:
            parse_kbps(variant.video_bitrate)
            parse_kbps(variant.audio_bitrate)
        except ValueError:
            errors.append(f"Invalid bitrate for {variant.name}")

    return len(errors) == 0, errors
