"""
Zoom Clip Renderer

Renders the animated zoom over a merged clip and measures the result.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..ffmpeg_runner import CancelScope, EngineConfig, run_ffmpeg_with_progress
from ..probe import probe_media
from .errors import DegenerateRegionError, TransformError
from .zoom_curve import (
    ZOOM_IN_SECONDS,
    ZOOM_OUT_SECONDS,
    QualityTier,
    build_render_command,
    build_zoom_filter_graph,
    clip_window,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedClip:
    """
    A rendered zoom clip.

    measured_duration comes from probing the output, not from the
    requested window; filter-graph rounding can shift frame counts.
    """

    path: Path
    measured_duration: float
    width: int
    height: int


def render_zoom_clip(
    merged_clip: Path,
    output_path: Path,
    rel_start: float,
    rel_end: float,
    center_x: float,
    center_y: float,
    magnification: float,
    quality: QualityTier,
    engine: EngineConfig,
    zoom_in_seconds: float = ZOOM_IN_SECONDS,
    zoom_out_seconds: float = ZOOM_OUT_SECONDS,
    progress_callback: Optional[Callable[[int, str], None]] = None,
    cancel_scope: Optional[CancelScope] = None,
) -> RenderedClip:
    """
    Render one zoom clip covering the whole merged clip.

    This function:
    1. Probes the merged clip for frame rate, width, height and duration
    2. Clamps [rel_start, rel_end] to the clip and checks it is not empty
    3. Builds the prefix/zoom/suffix filter graph for the quality tier
    4. Runs FFmpeg (video re-encoded, audio copied)
    5. Re-probes the output for its real duration

    Args:
        merged_clip: Zero-based clip from the assembler
        output_path: Destination MPEG-TS file
        rel_start: Window start relative to the clip
        rel_end: Window end relative to the clip
        center_x: Focus point, 0.0-1.0 of frame width
        center_y: Focus point, 0.0-1.0 of frame height
        magnification: Peak zoom factor
        quality: Working/output resolution tier
        engine: Transform engine configuration
        zoom_in_seconds: Ease-in ramp length
        zoom_out_seconds: Ease-out ramp length
        progress_callback: Optional (percent, message) reporter
        cancel_scope: Lets another thread kill the render

    Returns:
        RenderedClip with the measured output duration

    Raises:
        DegenerateRegionError: If the window has no positive duration
        TransformError: If probing or rendering fails
    """
    if rel_end - rel_start <= 0:
        raise DegenerateRegionError(
            f"Zoom window {rel_start:.3f}s - {rel_end:.3f}s has non-positive duration"
        )

    source = probe_media(merged_clip, engine)
    window = clip_window(rel_start, rel_end, source.duration)
    if window.duration <= 0:
        raise DegenerateRegionError(
            f"Zoom window {rel_start:.3f}s - {rel_end:.3f}s falls outside "
            f"the {source.duration:.3f}s merged clip"
        )

    work_size = quality.work_size(source.width, source.height)
    output_size = quality.output_size(source.width, source.height)

    filter_graph = build_zoom_filter_graph(
        window=window,
        center_x=center_x,
        center_y=center_y,
        magnification=magnification,
        frame_rate=source.frame_rate,
        work_size=work_size,
        output_size=output_size,
        zoom_in_seconds=zoom_in_seconds,
        zoom_out_seconds=zoom_out_seconds,
    )
    cmd = build_render_command(
        input_path=str(merged_clip),
        output_path=str(output_path),
        filter_graph=filter_graph,
        frame_rate=source.frame_rate,
        engine=engine,
        has_audio=source.has_audio,
    )

    logger.info(
        f"Rendering {output_path.name}: window {window.start:.3f}s - {window.end:.3f}s "
        f"of {source.duration:.3f}s, x{magnification} at ({center_x}, {center_y}), "
        f"{quality.name} {output_size[0]}x{output_size[1]}"
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    run_ffmpeg_with_progress(
        cmd=cmd,
        total_duration_ms=source.duration_ms,
        progress_callback=progress_callback,
        description=f"render {output_path.name}",
        cancel_scope=cancel_scope,
    )

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise TransformError(f"Rendered clip missing or empty: {output_path}")

    rendered = probe_media(output_path, engine)
    logger.info(
        f"Rendered {output_path.name}: {rendered.duration:.3f}s "
        f"(merged clip {source.duration:.3f}s)"
    )

    return RenderedClip(
        path=output_path,
        measured_duration=rendered.duration,
        width=rendered.width,
        height=rendered.height,
    )
