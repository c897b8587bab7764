"""
Zoom Compositor Pipeline

Runs one invocation end to end on local files:
parse -> resolve -> (assemble + render per job, concurrently) -> rebuild.
"""

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from ..ffmpeg_runner import CancelScope, EngineConfig
from .assembler import assemble_clip
from .rebuilder import rebuild_timeline
from .renderer import RenderedClip, render_zoom_clip
from .resolver import ZoomJob, ZoomRegion, resolve_zoom_jobs
from .timeline import Timeline, parse_playlist
from .zoom_curve import ZOOM_IN_SECONDS, ZOOM_OUT_SECONDS, QualityTier

logger = logging.getLogger(__name__)

OUTPUT_PLAYLIST_NAME = "playlist.m3u8"


@dataclass(frozen=True)
class CompositionResult:
    """Outcome of one successful invocation."""

    source: Timeline
    timeline: Timeline
    jobs: List[ZoomJob]
    outputs: List[RenderedClip]
    playlist_path: Path


def compose_zoom_timeline(
    playlist_path: Path,
    regions: Sequence[ZoomRegion],
    output_dir: Path,
    work_dir: Path,
    quality: QualityTier,
    engine: EngineConfig,
    max_workers: int = 1,
    zoom_in_seconds: float = ZOOM_IN_SECONDS,
    zoom_out_seconds: float = ZOOM_OUT_SECONDS,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> CompositionResult:
    """
    Replace every requested zoom region of a local playlist.

    Segment references are resolved relative to the playlist's directory.
    The output directory receives the rebuilt playlist, every pass-through
    segment and one zoom-<n>.ts per region.

    Jobs are resolved and checked for conflicts before any transform work
    starts. Assembly and rendering then run on up to max_workers threads;
    all jobs finish before the first failure (in region order) is
    re-raised, and the timeline is only rebuilt when every job succeeded.
    If the calling thread is interrupted while waiting (an RQ job timeout,
    a failing progress callback), queued jobs are dropped and running
    renders are killed before the exception propagates.

    The playlist is read and written as bytes so CRLF line endings survive.

    Args:
        playlist_path: Local playlist with local segment references
        regions: Zoom regions in request order (may be empty)
        output_dir: Directory for the rebuilt playlist and its media
        work_dir: Scratch directory for intermediate clips
        quality: Working/output resolution tier
        engine: Transform engine configuration
        max_workers: Concurrent assemble+render slots
        zoom_in_seconds: Ease-in ramp length
        zoom_out_seconds: Ease-out ramp length
        progress_callback: Called with (completed_jobs, total_jobs)

    Returns:
        CompositionResult

    Raises:
        FormatError, NoOverlapError, ConflictError, DegenerateRegionError,
        TransformError: See errors module; no partial output is valid
    """
    source_dir = playlist_path.parent
    source = parse_playlist(playlist_path.read_bytes().decode("utf-8"))
    logger.info(
        f"Parsed {playlist_path.name}: {len(source)} segments, {source.total_duration:.3f}s"
    )

    jobs = resolve_zoom_jobs(source, regions)

    def resolve_path(reference: str) -> Path:
        return source_dir / reference.strip()

    scope = CancelScope()

    def process(job: ZoomJob) -> RenderedClip:
        scope.check(f"zoom job {job.index}")
        job_dir = work_dir / f"zoom-{job.index}"
        try:
            merged = assemble_clip(
                job.segments,
                resolve_path,
                job_dir,
                engine,
                name=f"merged_{job.index}",
                cancel_scope=scope,
            )
            return render_zoom_clip(
                merged_clip=merged,
                output_path=output_dir / job.output_name,
                rel_start=job.rel_start,
                rel_end=job.rel_end,
                center_x=job.region.center_x,
                center_y=job.region.center_y,
                magnification=job.region.magnification,
                quality=quality,
                engine=engine,
                zoom_in_seconds=zoom_in_seconds,
                zoom_out_seconds=zoom_out_seconds,
                cancel_scope=scope,
            )
        finally:
            shutil.rmtree(job_dir, ignore_errors=True)

    output_dir.mkdir(parents=True, exist_ok=True)
    work_dir.mkdir(parents=True, exist_ok=True)

    results: Dict[int, RenderedClip] = {}
    errors: Dict[int, BaseException] = {}

    if jobs:
        workers = max(1, min(max_workers, len(jobs)))
        logger.info(f"Processing {len(jobs)} zoom jobs on {workers} workers")
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="zoom")
        futures = {executor.submit(process, job): job for job in jobs}
        try:
            for future in as_completed(futures):
                job = futures[future]
                error = future.exception()
                if error is None:
                    clip = results[job.index] = future.result()
                    logger.info(
                        f"Zoom job {job.index} rendered {clip.measured_duration:.3f}s "
                        f"in place of {job.declared_duration:.3f}s"
                    )
                else:
                    logger.error(f"Zoom job {job.index} failed: {error}")
                    errors[job.index] = error
                if progress_callback:
                    progress_callback(len(results) + len(errors), len(jobs))
        except BaseException:
            logger.warning("Composition interrupted, cancelling outstanding zoom jobs")
            scope.cancel()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

    if errors:
        raise errors[min(errors)]

    outputs = [results[job.index] for job in jobs]
    timeline = rebuild_timeline(source, jobs, outputs)

    _copy_pass_through(timeline, source_dir, output_dir)

    output_playlist = output_dir / OUTPUT_PLAYLIST_NAME
    output_playlist.write_bytes(timeline.to_m3u8().encode("utf-8"))
    logger.info(f"Wrote {output_playlist} with {len(timeline)} entries")

    return CompositionResult(
        source=source,
        timeline=timeline,
        jobs=jobs,
        outputs=outputs,
        playlist_path=output_playlist,
    )


def _copy_pass_through(timeline: Timeline, source_dir: Path, output_dir: Path) -> None:
    """Place every untouched segment next to the rebuilt playlist."""
    if source_dir.resolve() == output_dir.resolve():
        return
    for seg in timeline.segments:
        if seg.rendered:
            continue
        reference = seg.reference.strip()
        target = output_dir / reference
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source_dir / reference, target)
