"""
Timeline Model

Parses media playlist text into an ordered, timestamped segment sequence
and writes it back out. Everything that is not a duration tag or a
reference line is carried verbatim so untouched parts of a playlist
round-trip byte for byte.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Tuple

from .errors import FormatError

PLAYLIST_HEADER = "#EXTM3U"
DURATION_TAG = "#EXTINF:"
END_MARKER = "#EXT-X-ENDLIST"


@dataclass(frozen=True)
class Segment:
    """
    One media chunk of a timeline.

    Attributes:
        index: 0-based position in the timeline
        reference: Opaque locator of the media chunk
        duration: Seconds, from the duration tag (or measured, when rendered)
        start_time: Sum of the durations of all preceding segments
        tag_line: The duration tag line exactly as written
        leading_lines: Comment/metadata/blank lines between the previous
            segment and this segment's duration tag
        inner_lines: Tag/blank lines between the duration tag and the reference
        rendered: True for entries produced by the zoom renderer
    """

    index: int
    reference: str
    duration: float
    start_time: float
    tag_line: str
    leading_lines: Tuple[str, ...] = ()
    inner_lines: Tuple[str, ...] = ()
    rendered: bool = False

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def lines(self) -> List[str]:
        return [*self.leading_lines, self.tag_line, *self.inner_lines, self.reference]


@dataclass(frozen=True)
class Timeline:
    """
    A parsed playlist: header lines, segments and trailing lines.

    The terminal end marker is not stored; to_m3u8() always writes it
    exactly once, last.
    """

    header_lines: Tuple[str, ...]
    segments: Tuple[Segment, ...]
    trailing_lines: Tuple[str, ...] = ()
    newline: str = "\n"
    final_newline: bool = False

    @property
    def total_duration(self) -> float:
        return self.segments[-1].end_time if self.segments else 0.0

    def __len__(self) -> int:
        return len(self.segments)

    def references(self) -> List[str]:
        return [seg.reference for seg in self.segments]

    def to_m3u8(self) -> str:
        """Serialise back to playlist text."""
        lines = list(self.header_lines)
        for seg in self.segments:
            lines.extend(seg.lines())
        lines.extend(self.trailing_lines)
        lines.append(END_MARKER)
        text = self.newline.join(lines)
        if self.final_newline:
            text += self.newline
        return text

    def with_segments(self, entries: Iterable[Segment]) -> "Timeline":
        """
        Build a new timeline with the same header/trailer and the given
        entries, re-indexed and re-timed in order.
        """
        return replace(self, segments=tuple(sequence_segments(entries)))


def sequence_segments(entries: Iterable[Segment]) -> List[Segment]:
    """Assign consecutive indices and cumulative start times."""
    result = []
    current_time = 0.0
    for index, seg in enumerate(entries):
        result.append(replace(seg, index=index, start_time=current_time))
        current_time += seg.duration
    return result


def format_duration_tag(duration: float) -> str:
    return f"{DURATION_TAG}{duration:.6f},"


def parse_duration(tag_line: str) -> float:
    """
    Parse the seconds value of a duration tag.

    Raises:
        FormatError: If the value is not a finite, non-negative number
    """
    value = tag_line[len(DURATION_TAG):].split(",", 1)[0].strip()
    try:
        duration = float(value)
    except ValueError:
        raise FormatError(f"Malformed duration tag: {tag_line!r}")
    if not math.isfinite(duration) or duration < 0:
        raise FormatError(f"Invalid segment duration in tag: {tag_line!r}")
    return duration


def parse_playlist(text: str) -> Timeline:
    """
    Parse playlist text into a Timeline.

    Lines before the first duration tag become header lines. Each
    duration tag must be followed by a reference line; tag and blank
    lines in between stay attached to the segment. Lines after the last
    reference are kept as trailing lines, except the end marker.

    Args:
        text: Playlist text

    Returns:
        Timeline with segments timed from zero in declaration order

    Raises:
        FormatError: On a missing playlist header, a malformed duration,
            or a duration tag without a reference line
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    final_newline = text.endswith(("\n", "\r"))
    lines = text.splitlines()

    first = next((line.strip() for line in lines if line.strip()), None)
    if first != PLAYLIST_HEADER:
        raise FormatError(f"Playlist does not start with {PLAYLIST_HEADER}")

    header_lines: Optional[List[str]] = None
    pending: List[str] = []
    segments: List[Segment] = []
    current_time = 0.0
    line_no = 0

    while line_no < len(lines):
        line = lines[line_no]
        stripped = line.strip()

        if not stripped.startswith(DURATION_TAG):
            if stripped and not stripped.startswith("#"):
                raise FormatError(
                    f"Line {line_no + 1}: reference {stripped!r} has no duration tag"
                )
            pending.append(line)
            line_no += 1
            continue

        if header_lines is None:
            header_lines = pending
            pending = []

        tag_line = line
        duration = parse_duration(stripped)
        inner: List[str] = []
        line_no += 1
        reference = None

        while line_no < len(lines):
            candidate = lines[line_no].strip()
            line_no += 1
            if candidate.startswith(DURATION_TAG) or candidate == END_MARKER:
                break
            if candidate and not candidate.startswith("#"):
                reference = lines[line_no - 1]
                break
            inner.append(lines[line_no - 1])

        if reference is None:
            raise FormatError(f"Duration tag {tag_line.strip()!r} is not followed by a reference")

        segments.append(
            Segment(
                index=len(segments),
                reference=reference,
                duration=duration,
                start_time=current_time,
                tag_line=tag_line,
                leading_lines=tuple(pending),
                inner_lines=tuple(inner),
            )
        )
        pending = []
        current_time += duration

    if header_lines is None:
        header_lines = pending
        pending = []

    # to_m3u8() writes the end marker itself
    header_lines = [line for line in header_lines if line.strip() != END_MARKER]
    trailing = [line for line in pending if line.strip() != END_MARKER]

    return Timeline(
        header_lines=tuple(header_lines),
        segments=tuple(segments),
        trailing_lines=tuple(trailing),
        newline=newline,
        final_newline=final_newline,
    )
