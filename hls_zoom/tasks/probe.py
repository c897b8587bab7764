"""
Media Probe

Queries ffprobe for a clip's duration, resolution and frame rate. The
compositor calls this whenever it needs ground truth instead of declared
playlist metadata.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .compositor.errors import TransformError
from .ffmpeg_runner import EngineConfig

logger = logging.getLogger(__name__)

# Timeout for a single ffprobe call in seconds
PROBE_TIMEOUT = 30

# Used when the stream does not report a usable rate
DEFAULT_FRAME_RATE = "30/1"


@dataclass(frozen=True)
class MediaInfo:
    """Measured properties of a media file."""

    duration: float
    width: int
    height: int
    frame_rate: str
    has_audio: bool = False

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)


def probe_media(path: Union[str, Path], engine: EngineConfig) -> MediaInfo:
    """
    Extract duration, dimensions and frame rate from a media file.

    Duration prefers the container (format) value and falls back to the
    video stream. The frame rate is kept as ffprobe's rational string so
    filter graphs can use it without rounding.

    Args:
        path: Path to the media file
        engine: Engine configuration naming the ffprobe binary

    Returns:
        MediaInfo for the first video stream

    Raises:
        TransformError: If ffprobe fails, its output cannot be parsed, or
            the file has no video stream
    """
    cmd = [
        engine.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise TransformError(f"ffprobe timed out for {path}") from e
    except OSError as e:
        raise TransformError(f"ffprobe could not start: {e}") from e

    if result.returncode != 0:
        raise TransformError(f"ffprobe failed for {path}: {result.stderr.strip()}")

    try:
        probe_data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise TransformError(f"Failed to parse ffprobe output for {path}: {e}") from e

    streams = probe_data.get("streams", [])
    video_stream = next(
        (s for s in streams if s.get("codec_type") == "video"),
        None,
    )
    if not video_stream:
        raise TransformError(f"No video stream found in {path}")

    has_audio = any(s.get("codec_type") == "audio" for s in streams)

    duration = None
    format_info = probe_data.get("format", {})
    for source in (format_info, video_stream):
        try:
            duration = float(source["duration"])
            break
        except (KeyError, TypeError, ValueError):
            continue
    if duration is None:
        raise TransformError(f"ffprobe reported no duration for {path}")

    info = MediaInfo(
        duration=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        frame_rate=_normalize_frame_rate(video_stream.get("r_frame_rate")),
        has_audio=has_audio,
    )
    if info.width <= 0 or info.height <= 0:
        raise TransformError(f"ffprobe reported invalid dimensions for {path}")

    logger.debug(
        f"Probed {path}: {info.duration:.3f}s {info.width}x{info.height} @ {info.frame_rate}"
    )
    return info


def _normalize_frame_rate(value) -> str:
    """Return a usable "num/den" rate, falling back to 30/1."""
    if not value:
        return DEFAULT_FRAME_RATE
    num, _, den = str(value).partition("/")
    try:
        numerator = float(num)
        denominator = float(den) if den else 1.0
    except ValueError:
        return DEFAULT_FRAME_RATE
    if numerator <= 0 or denominator <= 0:
        return DEFAULT_FRAME_RATE
    return str(value) if den else f"{num}/1"
