"""
Single-File Export

Remuxes a rebuilt playlist into one MP4 with stream copy, with the index
moved to the front for progressive playback.
"""

import logging
from pathlib import Path
from typing import List

from ..ffmpeg_runner import EngineConfig, run_ffmpeg
from .errors import TransformError

logger = logging.getLogger(__name__)


def build_export_command(playlist_path: Path, output_path: Path, engine: EngineConfig) -> List[str]:
    return [
        engine.ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-allowed_extensions", "ALL",
        "-i", str(playlist_path),
        "-c", "copy",
        "-movflags", "+faststart",
        str(output_path),
    ]


def export_single_file(playlist_path: Path, output_path: Path, engine: EngineConfig) -> Path:
    """
    Export a playlist to one MP4 file.

    Must be given the rebuilt playlist, whose references sit next to it.

    Raises:
        TransformError: If the playlist is missing or the remux fails
    """
    if not playlist_path.exists():
        raise TransformError(f"Playlist not found: {playlist_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Exporting {playlist_path.name} to {output_path.name}")
    run_ffmpeg(build_export_command(playlist_path, output_path, engine), "export")

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise TransformError(f"Exported file missing or empty: {output_path}")

    return output_path
