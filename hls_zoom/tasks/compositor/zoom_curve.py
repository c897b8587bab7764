"""
Zoom Curve and Filter Templates

Computes the magnification/position animation of a zoom window and builds
the FFmpeg filter graph that splits a merged clip into three phases
(prefix, zoomed window, suffix), scales them to a common output size and
concatenates them back in order.

Curve, for a window of duration d:
    zoom(t) = min(1 + (M-1)*t/lead, M, 1 + (M-1)*(d-t)/trail)

with lead = min(ZOOM_IN_SECONDS, d) and trail = min(ZOOM_OUT_SECONDS, d).
The visible top-left corner keeps the focus point fixed:
    x = cx*W - W/zoom/2,  y = cy*H - H/zoom/2
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..ffmpeg_runner import EngineConfig

logger = logging.getLogger(__name__)

# Ease-in ramp length and ease-out ramp length in seconds
ZOOM_IN_SECONDS = 2.0
ZOOM_OUT_SECONDS = 2.0

# Phases shorter than this are dropped from the graph
MIN_PHASE_SECONDS = 0.001


@dataclass(frozen=True)
class QualityTier:
    """
    Working and output resolution policy.

    Attributes:
        name: Tier identifier
        work_width: Width the clip is upscaled to before zoompan
        output_width: Final output width, or None to keep the source size
    """

    name: str
    work_width: int
    output_width: Optional[int] = None

    def output_size(self, width: int, height: int) -> Tuple[int, int]:
        if self.output_width is None:
            return _even(width), _even(height)
        return _even(self.output_width), _even(round(height * self.output_width / width))

    def work_size(self, width: int, height: int) -> Tuple[int, int]:
        return _even(self.work_width), _even(math.floor(self.work_width * height / width))


QUALITY_TIERS: Dict[str, QualityTier] = {
    "reduced": QualityTier(name="reduced", work_width=2000, output_width=540),
    "native": QualityTier(name="native", work_width=4000, output_width=None),
}


@dataclass(frozen=True)
class ZoomWindow:
    """The part of a merged clip that gets magnified, in clip-relative seconds."""

    start: float
    end: float
    clip_duration: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def has_prefix(self) -> bool:
        return self.start > MIN_PHASE_SECONDS

    @property
    def has_suffix(self) -> bool:
        return self.clip_duration - self.end > MIN_PHASE_SECONDS


def get_quality_tier(name: str) -> QualityTier:
    """
    Get a quality tier by name.

    Raises:
        KeyError: If the tier does not exist
    """
    return QUALITY_TIERS[name]


def _even(value: float) -> int:
    """Round down to an even pixel count (yuv420p needs even dimensions)."""
    return max(2, int(value) - int(value) % 2)


def _num(value: float) -> str:
    """Format a number for filter expressions without float noise."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def clip_window(rel_start: float, rel_end: float, clip_duration: float) -> ZoomWindow:
    """Clamp a region's relative bounds to the merged clip."""
    return ZoomWindow(
        start=max(0.0, rel_start),
        end=min(rel_end, clip_duration),
        clip_duration=clip_duration,
    )


# =============================================================================
# Curve Math
# =============================================================================


def ramp_lengths(
    duration: float,
    zoom_in_seconds: float = ZOOM_IN_SECONDS,
    zoom_out_seconds: float = ZOOM_OUT_SECONDS,
) -> Tuple[float, float]:
    """Lead and trail ramp lengths clamped to the window duration."""
    return min(zoom_in_seconds, duration), min(zoom_out_seconds, duration)


def zoom_factor_at(
    t: float,
    duration: float,
    magnification: float,
    zoom_in_seconds: float = ZOOM_IN_SECONDS,
    zoom_out_seconds: float = ZOOM_OUT_SECONDS,
) -> float:
    """
    Instantaneous zoom factor at elapsed time t within the window.

    Piecewise linear and continuous: 1 at both ends, the requested
    magnification during the hold. Windows shorter than lead + trail
    peak below the magnification where the ramps meet.
    """
    if duration <= 0:
        raise ValueError(f"Zoom window duration must be positive, got {duration}")
    lead, trail = ramp_lengths(duration, zoom_in_seconds, zoom_out_seconds)
    t = min(max(t, 0.0), duration)
    rise = magnification - 1

    ramp_in = 1 + rise * t / lead
    ramp_out = 1 + rise * (duration - t) / trail
    return round(max(1.0, min(ramp_in, magnification, ramp_out)), 9)


def pan_offset(
    center_x: float,
    center_y: float,
    width: float,
    height: float,
    zoom: float,
) -> Tuple[float, float]:
    """Top-left corner of the visible area that keeps the focus point fixed."""
    return (
        center_x * width - width / zoom / 2,
        center_y * height - height / zoom / 2,
    )


# =============================================================================
# Filter Expression Builders
# =============================================================================


def build_zoom_expression(
    duration: float,
    magnification: float,
    zoom_in_seconds: float = ZOOM_IN_SECONDS,
    zoom_out_seconds: float = ZOOM_OUT_SECONDS,
) -> str:
    """
    Build the zoompan z expression equivalent to zoom_factor_at().

    Uses `it` (input timestamp in seconds) so the curve follows the
    trimmed window's clock.
    """
    lead, trail = ramp_lengths(duration, zoom_in_seconds, zoom_out_seconds)
    rise = magnification - 1
    m = _num(magnification)

    ramp_in = f"1+{_num(rise / lead)}*it"
    ramp_out = f"1+{_num(rise / trail)}*({_num(duration)}-it)"
    return f"max(1,min(min({ramp_in},{m}),{ramp_out}))"


def build_pan_x_expression(center_x: float) -> str:
    return f"{_num(center_x)}*iw-iw/zoom/2"


def build_pan_y_expression(center_y: float) -> str:
    return f"{_num(center_y)}*ih-ih/zoom/2"


def build_zoom_filter_graph(
    window: ZoomWindow,
    center_x: float,
    center_y: float,
    magnification: float,
    frame_rate: str,
    work_size: Tuple[int, int],
    output_size: Tuple[int, int],
    zoom_in_seconds: float = ZOOM_IN_SECONDS,
    zoom_out_seconds: float = ZOOM_OUT_SECONDS,
) -> str:
    """
    Build the three-phase filter graph for one zoom clip.

    The input video is resampled to the source rate, upscaled to the
    working size and split. The window runs through zoompan; the prefix
    [0, start) and suffix [end, clip end] pass through unmagnified. Each
    phase is scaled to the output size and the phases are concatenated
    in temporal order into [outv]. Empty prefix/suffix phases are left out.

    Args:
        window: Clamped zoom window within the merged clip
        center_x: Focus point, 0.0-1.0 of frame width
        center_y: Focus point, 0.0-1.0 of frame height
        magnification: Peak zoom factor
        frame_rate: Source frame rate ("num/den")
        work_size: (width, height) of the upscaled working frames
        output_size: (width, height) of the output frames
        zoom_in_seconds: Ease-in ramp length
        zoom_out_seconds: Ease-out ramp length

    Returns:
        filter_complex string
    """
    work_w, work_h = work_size
    out_w, out_h = output_size
    scale_out = f"scale={out_w}:{out_h}:flags=lanczos,setsar=1:1"

    zoom_expr = build_zoom_expression(
        window.duration, magnification, zoom_in_seconds, zoom_out_seconds
    )
    x_expr = build_pan_x_expression(center_x)
    y_expr = build_pan_y_expression(center_y)

    branches = ["[zoom]"]
    if window.has_prefix:
        branches.append("[pre]")
    if window.has_suffix:
        branches.append("[post]")

    filters = [
        f"[0:v]fps={frame_rate},scale={work_w}:{work_h},"
        f"split={len(branches)}{''.join(branches)}",
        f"[zoom]trim=start={_num(window.start)}:end={_num(window.end)},setpts=PTS-STARTPTS,"
        f"zoompan=z='{zoom_expr}':"
        f"x='{x_expr}':"
        f"y='{y_expr}':"
        f"d=1:fps={frame_rate}:s={work_w}x{work_h},"
        f"{scale_out}[zoomed]",
    ]

    phase_labels = ["[zoomed]"]
    if window.has_prefix:
        filters.append(
            f"[pre]trim=end={_num(window.start)},setpts=PTS-STARTPTS,{scale_out}[first]"
        )
        phase_labels.insert(0, "[first]")
    if window.has_suffix:
        filters.append(
            f"[post]trim=start={_num(window.end)},setpts=PTS-STARTPTS,{scale_out}[last]"
        )
        phase_labels.append("[last]")

    if len(phase_labels) > 1:
        filters.append(f"{''.join(phase_labels)}concat=n={len(phase_labels)}:v=1:a=0[outv]")
    else:
        filters.append("[zoomed]copy[outv]")

    return ";".join(filters)


# =============================================================================
# Full Command Builder
# =============================================================================


def build_render_command(
    input_path: str,
    output_path: str,
    filter_graph: str,
    frame_rate: str,
    engine: EngineConfig,
    has_audio: bool = True,
) -> List[str]:
    """
    Build the FFmpeg command that renders one zoom clip.

    Video is re-encoded with libx264; audio is copied through untouched.
    The output is an MPEG-TS chunk so it can sit in the rebuilt playlist.
    """
    cmd = [
        engine.ffmpeg_path,
        "-y",
        "-hide_banner",
        "-nostats",
        "-loglevel", "error",
        "-i", input_path,
        "-filter_complex", filter_graph,
        "-map", "[outv]",
    ]
    if has_audio:
        cmd.extend(["-map", "0:a", "-c:a", "copy"])
    cmd.extend([
        "-c:v", "libx264",
        "-preset", engine.x264_preset,
        "-crf", str(engine.x264_crf),
        "-pix_fmt", "yuv420p",
        "-r", frame_rate,
        "-f", "mpegts",
        output_path,
    ])
    return cmd
