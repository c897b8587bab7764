"""
Zoom Region Compositor

Replaces selected time windows of a segmented playlist with an animated
pan/zoom rendition and splices the result back into a rebuilt playlist.

Usage:
    from hls_zoom.tasks.compositor import (
        QUALITY_TIERS,
        ZoomRegion,
        compose_zoom_timeline,
    )

    result = compose_zoom_timeline(
        playlist_path=Path("segments/playlist.m3u8"),
        regions=[ZoomRegion(start=6.0, end=14.0, center_x=0.3, center_y=0.6)],
        output_dir=Path("zoomed"),
        work_dir=Path("scratch"),
        quality=QUALITY_TIERS["reduced"],
        engine=EngineConfig(),
    )
"""

from .errors import (
    ConflictError,
    DegenerateRegionError,
    FormatError,
    NoOverlapError,
    TransformError,
    ValidationError,
    ZoomCompositorError,
)

from .timeline import (
    Segment,
    Timeline,
    parse_playlist,
)

from .resolver import (
    ZoomJob,
    ZoomRegion,
    resolve_zoom_jobs,
    resolve_zoom_region,
)

from .zoom_curve import (
    QUALITY_TIERS,
    ZOOM_IN_SECONDS,
    ZOOM_OUT_SECONDS,
    QualityTier,
    build_zoom_filter_graph,
    get_quality_tier,
    pan_offset,
    zoom_factor_at,
)

from .assembler import assemble_clip
from .renderer import RenderedClip, render_zoom_clip
from .rebuilder import rebuild_timeline
from .export import export_single_file
from .pipeline import CompositionResult, compose_zoom_timeline

__all__ = [
    # Errors
    "ZoomCompositorError",
    "ValidationError",
    "FormatError",
    "NoOverlapError",
    "ConflictError",
    "DegenerateRegionError",
    "TransformError",
    # Timeline
    "Segment",
    "Timeline",
    "parse_playlist",
    # Resolution
    "ZoomRegion",
    "ZoomJob",
    "resolve_zoom_region",
    "resolve_zoom_jobs",
    # Curve
    "QUALITY_TIERS",
    "ZOOM_IN_SECONDS",
    "ZOOM_OUT_SECONDS",
    "QualityTier",
    "get_quality_tier",
    "zoom_factor_at",
    "pan_offset",
    "build_zoom_filter_graph",
    # Processing
    "assemble_clip",
    "RenderedClip",
    "render_zoom_clip",
    "rebuild_timeline",
    "export_single_file",
    "CompositionResult",
    "compose_zoom_timeline",
]
