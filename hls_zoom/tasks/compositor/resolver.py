"""
Zoom Region Resolver

Maps each requested zoom interval onto the contiguous run of segments it
overlaps and expresses the interval relative to that run.
"""

import logging
from dataclasses import dataclass
from itertools import combinations
from typing import List, Sequence, Tuple

from .errors import ConflictError, DegenerateRegionError, NoOverlapError
from .timeline import Segment, Timeline

logger = logging.getLogger(__name__)

DEFAULT_MAGNIFICATION = 2.0


@dataclass(frozen=True)
class ZoomRegion:
    """
    One requested edit.

    Attributes:
        start: Window start, seconds on the original timeline
        end: Window end, seconds on the original timeline
        center_x: Focus point, 0.0-1.0 of frame width
        center_y: Focus point, 0.0-1.0 of frame height
        magnification: Peak zoom factor
    """

    start: float
    end: float
    center_x: float = 0.5
    center_y: float = 0.5
    magnification: float = DEFAULT_MAGNIFICATION

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class ZoomJob:
    """A ZoomRegion resolved against concrete overlapping segments."""

    index: int
    region: ZoomRegion
    segments: Tuple[Segment, ...]

    @property
    def seg_start(self) -> int:
        return self.segments[0].index

    @property
    def seg_end(self) -> int:
        return self.segments[-1].index

    @property
    def rel_start(self) -> float:
        return self.region.start - self.segments[0].start_time

    @property
    def rel_end(self) -> float:
        return self.region.end - self.segments[0].start_time

    @property
    def replaced_count(self) -> int:
        return self.seg_end - self.seg_start + 1

    @property
    def declared_duration(self) -> float:
        """Sum of the declared durations of the replaced segments."""
        return sum(seg.duration for seg in self.segments)

    def overlaps(self, other: "ZoomJob") -> bool:
        return self.seg_start <= other.seg_end and other.seg_start <= self.seg_end

    @property
    def output_name(self) -> str:
        return f"zoom-{self.index}.ts"


def resolve_zoom_region(timeline: Timeline, region: ZoomRegion, index: int = 0) -> ZoomJob:
    """
    Resolve one region to the segments it overlaps.

    A segment overlaps when seg.end_time > region.start and
    seg.start_time < region.end. Segments are ordered and contiguous, so
    the matches always form a single run.

    Args:
        timeline: Parsed source timeline
        region: Requested zoom region
        index: Position of the region in the request (names its output)

    Returns:
        ZoomJob for the region

    Raises:
        DegenerateRegionError: If region.end <= region.start
        NoOverlapError: If no segment overlaps the region
    """
    if region.duration <= 0:
        raise DegenerateRegionError(
            f"Zoom region {index} has non-positive duration "
            f"({region.start}s - {region.end}s)"
        )

    overlapping = tuple(
        seg for seg in timeline.segments
        if seg.end_time > region.start and seg.start_time < region.end
    )
    if not overlapping:
        raise NoOverlapError(
            f"Zoom region {index} ({region.start}s - {region.end}s) overlaps no segment "
            f"of a {timeline.total_duration:.3f}s timeline"
        )

    job = ZoomJob(index=index, region=region, segments=overlapping)
    logger.info(
        f"Zoom region {index}: {region.start}s - {region.end}s -> segments "
        f"{job.seg_start}-{job.seg_end} (rel {job.rel_start:.3f}s - {job.rel_end:.3f}s)"
    )
    return job


def find_conflicts(jobs: Sequence[ZoomJob]) -> List[Tuple[ZoomJob, ZoomJob]]:
    """Return every pair of jobs whose segment ranges share an index."""
    return [(a, b) for a, b in combinations(jobs, 2) if a.overlaps(b)]


def resolve_zoom_jobs(timeline: Timeline, regions: Sequence[ZoomRegion]) -> List[ZoomJob]:
    """
    Resolve all regions in input order and reject overlapping ranges.

    Adjacent ranges (one job ending on the segment before another starts)
    are allowed. Ranges that share a segment are rejected as a whole.

    Returns:
        Jobs in input order

    Raises:
        DegenerateRegionError, NoOverlapError: From resolve_zoom_region
        ConflictError: If two jobs share a segment
    """
    jobs = [resolve_zoom_region(timeline, region, index) for index, region in enumerate(regions)]

    conflicts = find_conflicts(jobs)
    if conflicts:
        details = "; ".join(
            f"region {a.index} (segments {a.seg_start}-{a.seg_end}) and "
            f"region {b.index} (segments {b.seg_start}-{b.seg_end})"
            for a, b in conflicts
        )
        raise ConflictError(f"Zoom regions overlap the same segments: {details}")

    return jobs
