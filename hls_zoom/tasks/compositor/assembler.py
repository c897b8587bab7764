"""
Clip Assembler

Concatenates a contiguous run of segments into one gapless clip with
stream copy, then rewrites its timestamps so the clip starts at zero with
a monotonic presentation timeline.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..ffmpeg_runner import CancelScope, EngineConfig, run_ffmpeg
from .errors import TransformError
from .timeline import Segment

logger = logging.getLogger(__name__)


def build_concat_list(paths: Sequence[Path]) -> str:
    """
    Build the concat demuxer list file content.

    Single quotes inside paths are escaped the way the concat demuxer
    expects ('\\'').
    """
    lines = []
    for path in paths:
        escaped = str(Path(path).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


def build_concat_command(list_path: Path, output_path: Path, engine: EngineConfig) -> List[str]:
    """Concat demuxer pass, stream copy."""
    return [
        engine.ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
        "-c", "copy",
        str(output_path),
    ]


def build_timestamp_repair_command(
    input_path: Path,
    output_path: Path,
    engine: EngineConfig,
) -> List[str]:
    """
    Regenerate timestamps anchored at zero, stream copy.

    +genpts regenerates missing presentation timestamps, make_zero shifts
    the first timestamp to zero, and zero muxdelay/muxpreload stop the
    MPEG-TS muxer from adding its default offset.
    """
    return [
        engine.ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-fflags", "+genpts",
        "-i", str(input_path),
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        "-muxdelay", "0",
        "-muxpreload", "0",
        str(output_path),
    ]


def assemble_clip(
    segments: Sequence[Segment],
    path_resolver: Callable[[str], Path],
    work_dir: Path,
    engine: EngineConfig,
    name: str = "merged",
    cancel_scope: Optional[CancelScope] = None,
) -> Path:
    """
    Merge a contiguous segment run into one zero-based clip.

    Args:
        segments: Segments in index order
        path_resolver: Resolves a segment reference to a local file
        work_dir: Invocation scratch directory
        engine: Transform engine configuration
        name: Basename for the intermediate files
        cancel_scope: Stops the passes once the invocation is cancelled

    Returns:
        Path to the repaired clip

    Raises:
        TransformError: If a segment file is missing or either pass fails
    """
    if not segments:
        raise TransformError("Cannot assemble an empty segment run")

    indices = [seg.index for seg in segments]
    if indices != list(range(indices[0], indices[0] + len(indices))):
        raise TransformError(f"Segment run is not contiguous: {indices}")

    paths = []
    for seg in segments:
        path = Path(path_resolver(seg.reference))
        if not path.exists():
            raise TransformError(f"Segment file not found: {path}")
        paths.append(path)

    work_dir.mkdir(parents=True, exist_ok=True)
    list_path = work_dir / f"{name}_concat.txt"
    merged_path = work_dir / f"{name}.ts"
    fixed_path = work_dir / f"{name}_fixed.ts"

    list_path.write_text(build_concat_list(paths), encoding="utf-8")

    logger.info(f"Assembling segments {indices[0]}-{indices[-1]} into {fixed_path.name}")
    run_ffmpeg(
        build_concat_command(list_path, merged_path, engine),
        f"concat {name}",
        cancel_scope=cancel_scope,
    )
    run_ffmpeg(
        build_timestamp_repair_command(merged_path, fixed_path, engine),
        f"timestamp repair {name}",
        cancel_scope=cancel_scope,
    )

    if not fixed_path.exists() or fixed_path.stat().st_size == 0:
        raise TransformError(f"Assembled clip missing or empty: {fixed_path}")

    merged_path.unlink(missing_ok=True)
    return fixed_path
