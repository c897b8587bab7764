"""
Timeline Rebuilder

Walks the original segments and splices one rendered entry in place of
each zoom job's segment run. Untouched segments are emitted unchanged.
"""

import logging
from typing import List, Sequence

from .errors import ConflictError
from .renderer import RenderedClip
from .resolver import ZoomJob, find_conflicts
from .timeline import Segment, Timeline, format_duration_tag

logger = logging.getLogger(__name__)


def rendered_entry(job: ZoomJob, output: RenderedClip) -> Segment:
    """
    Playlist entry for a rendered zoom clip.

    Lines that led into the first replaced segment (discontinuity tags,
    comments) lead into the rendered entry instead.
    """
    first = job.segments[0]
    return Segment(
        index=first.index,
        reference=job.output_name,
        duration=output.measured_duration,
        start_time=first.start_time,
        tag_line=format_duration_tag(output.measured_duration),
        leading_lines=first.leading_lines,
        rendered=True,
    )


def rebuild_timeline(
    timeline: Timeline,
    jobs: Sequence[ZoomJob],
    outputs: Sequence[RenderedClip],
) -> Timeline:
    """
    Build the output timeline.

    Entry count is len(timeline) - sum(replaced per job) + len(jobs).
    Header and trailing lines are kept verbatim.

    Args:
        timeline: Original timeline
        jobs: Resolved zoom jobs, any order, disjoint ranges
        outputs: Rendered clip for each job, same order as jobs

    Returns:
        New Timeline; the original is not modified

    Raises:
        ValueError: If jobs and outputs differ in length or a job lies
            outside the timeline
        ConflictError: If two jobs share a segment
    """
    if len(jobs) != len(outputs):
        raise ValueError(f"Got {len(jobs)} zoom jobs but {len(outputs)} rendered clips")

    if find_conflicts(jobs):
        raise ConflictError("Cannot rebuild timeline from overlapping zoom jobs")

    for job in jobs:
        if job.seg_end >= len(timeline.segments):
            raise ValueError(
                f"Zoom job {job.index} ends at segment {job.seg_end}, "
                f"timeline has {len(timeline.segments)} segments"
            )

    by_start = {job.seg_start: (job, output) for job, output in zip(jobs, outputs)}

    entries: List[Segment] = []
    position = 0
    while position < len(timeline.segments):
        if position in by_start:
            job, output = by_start[position]
            entries.append(rendered_entry(job, output))
            position = job.seg_end + 1
        else:
            entries.append(timeline.segments[position])
            position += 1

    rebuilt = timeline.with_segments(entries)
    logger.info(
        f"Rebuilt timeline: {len(timeline)} -> {len(rebuilt)} entries, "
        f"{timeline.total_duration:.3f}s -> {rebuilt.total_duration:.3f}s"
    )
    return rebuilt
