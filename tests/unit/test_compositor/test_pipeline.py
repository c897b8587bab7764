"""
Unit tests for compositor.pipeline module.

Assembly and rendering are mocked; the fakes write small files so the
pipeline's file handling runs for real.
"""

import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from hls_zoom.tasks.compositor.errors import (
    ConflictError,
    FormatError,
    NoOverlapError,
    TransformError,
)
from hls_zoom.tasks.compositor.pipeline import compose_zoom_timeline
from hls_zoom.tasks.compositor.renderer import RenderedClip
from hls_zoom.tasks.compositor.resolver import ZoomRegion
from hls_zoom.tasks.compositor.timeline import parse_playlist
from hls_zoom.tasks.compositor.zoom_curve import get_quality_tier


def fake_assemble(segments, path_resolver, work_dir, engine, name="merged", **kwargs):
    work_dir.mkdir(parents=True, exist_ok=True)
    merged = work_dir / f"{name}_fixed.ts"
    merged.write_bytes(b"".join(Path(path_resolver(seg.reference)).read_bytes() for seg in segments))
    return merged


def fake_render(merged_clip, output_path, rel_start, rel_end, **kwargs):
    output_path.write_bytes(b"zoomed " + merged_clip.read_bytes())
    return RenderedClip(
        path=output_path,
        measured_duration=round(rel_end - rel_start + 4.0, 3),
        width=540,
        height=304,
    )


def compose(source_dir, tmp_path, engine, regions, **kwargs):
    return compose_zoom_timeline(
        playlist_path=source_dir / "playlist.m3u8",
        regions=regions,
        output_dir=tmp_path / "output",
        work_dir=tmp_path / "work",
        quality=get_quality_tier("reduced"),
        engine=engine,
        **kwargs,
    )


class TestComposeZoomTimeline:
    """Tests for one full invocation on local files."""

    def test_single_region(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=fake_render) as mock_render:
            result = compose(source_dir, tmp_path, engine, [ZoomRegion(start=6.0, end=14.0)])

        assert result.timeline.references() == ["seg0.ts", "zoom-0.ts", "seg4.ts"]
        assert result.playlist_path == tmp_path / "output" / "playlist.m3u8"

        render_kwargs = mock_render.call_args.kwargs
        assert render_kwargs["rel_start"] == 2.0
        assert render_kwargs["rel_end"] == 10.0
        assert render_kwargs["quality"].name == "reduced"

        written = parse_playlist(result.playlist_path.read_text())
        assert written.references() == ["seg0.ts", "zoom-0.ts", "seg4.ts"]
        assert written.segments[1].duration == 12.0

    def test_output_directory_is_self_contained(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=fake_render):
            result = compose(source_dir, tmp_path, engine, [ZoomRegion(start=6.0, end=14.0)])

        output_dir = result.playlist_path.parent
        for reference in result.timeline.references():
            assert (output_dir / reference).exists()
        assert (output_dir / "zoom-0.ts").read_bytes() == b"zoomed segment 1segment 2segment 3"
        assert not (output_dir / "seg2.ts").exists()

    def test_scratch_released(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=fake_render):
            compose(
                source_dir, tmp_path, engine,
                [ZoomRegion(start=1.0, end=2.0), ZoomRegion(start=9.0, end=10.0)],
            )

        assert list((tmp_path / "work").iterdir()) == []

    def test_no_regions_passes_through(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 3)
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip") as mock_assemble:
            result = compose(source_dir, tmp_path, engine, [])

        mock_assemble.assert_not_called()
        assert result.playlist_path.read_text() == (source_dir / "playlist.m3u8").read_text()

    def test_progress_reported_per_job(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        progress = []
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=fake_render):
            compose(
                source_dir, tmp_path, engine,
                [ZoomRegion(start=1.0, end=2.0), ZoomRegion(start=9.0, end=10.0)],
                progress_callback=lambda done, total: progress.append((done, total)),
            )

        assert progress == [(1, 2), (2, 2)]

    def test_jobs_run_concurrently(self, segment_dir_factory, tmp_path, engine):
        """With two slots both jobs are in flight at the same time."""
        source_dir = segment_dir_factory("source", [4.0] * 5)
        barrier = threading.Barrier(2, timeout=5)

        def waiting_render(merged_clip, output_path, rel_start, rel_end, **kwargs):
            barrier.wait()
            return fake_render(merged_clip, output_path, rel_start, rel_end)

        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=waiting_render):
            result = compose(
                source_dir, tmp_path, engine,
                [ZoomRegion(start=1.0, end=2.0), ZoomRegion(start=9.0, end=10.0)],
                max_workers=2,
            )

        assert result.timeline.references() == ["zoom-0.ts", "seg1.ts", "zoom-1.ts", "seg3.ts", "seg4.ts"]


class TestComposeFailures:
    """Tests for aborted invocations."""

    def test_conflict_rejected_before_work(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 3)
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip") as mock_assemble:
            with pytest.raises(ConflictError):
                compose(
                    source_dir, tmp_path, engine,
                    [ZoomRegion(start=2.0, end=5.0), ZoomRegion(start=6.0, end=9.0)],
                )

        mock_assemble.assert_not_called()
        assert not (tmp_path / "output" / "playlist.m3u8").exists()

    def test_no_overlap(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        with pytest.raises(NoOverlapError):
            compose(source_dir, tmp_path, engine, [ZoomRegion(start=21.0, end=25.0)])

    def test_malformed_playlist(self, tmp_path, engine):
        source_dir = tmp_path / "source"
        source_dir.mkdir()
        (source_dir / "playlist.m3u8").write_text("#EXTM3U\n#EXTINF:x,\nseg0.ts\n")
        with pytest.raises(FormatError):
            compose(source_dir, tmp_path, engine, [ZoomRegion(start=0.0, end=1.0)])

    def test_failure_waits_for_siblings(self, segment_dir_factory, tmp_path, engine):
        """One failing job aborts the invocation after the other job finished."""
        source_dir = segment_dir_factory("source", [4.0] * 5)
        finished = []

        def flaky_render(merged_clip, output_path, rel_start, rel_end, **kwargs):
            if output_path.name == "zoom-0.ts":
                raise TransformError("render failed")
            time.sleep(0.05)
            finished.append(output_path.name)
            return fake_render(merged_clip, output_path, rel_start, rel_end)

        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=flaky_render):
            with pytest.raises(TransformError, match="render failed"):
                compose(
                    source_dir, tmp_path, engine,
                    [ZoomRegion(start=1.0, end=2.0), ZoomRegion(start=9.0, end=10.0)],
                    max_workers=2,
                )

        assert finished == ["zoom-1.ts"]
        assert not (tmp_path / "output" / "playlist.m3u8").exists()
        assert list((tmp_path / "work").iterdir()) == []

    def test_first_failure_in_job_order_is_raised(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)

        def failing_render(merged_clip, output_path, rel_start, rel_end, **kwargs):
            if output_path.name == "zoom-0.ts":
                time.sleep(0.05)
            raise TransformError(f"{output_path.name} failed")

        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=failing_render):
            with pytest.raises(TransformError, match="zoom-0.ts failed"):
                compose(
                    source_dir, tmp_path, engine,
                    [ZoomRegion(start=1.0, end=2.0), ZoomRegion(start=9.0, end=10.0)],
                    max_workers=2,
                )


class TestComposeLineEndings:
    """Tests for playlists written with CRLF line endings."""

    def test_crlf_playlist_written_with_crlf(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        playlist = source_dir / "playlist.m3u8"
        playlist.write_bytes(playlist.read_bytes().replace(b"\n", b"\r\n"))

        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=fake_render):
            result = compose(source_dir, tmp_path, engine, [ZoomRegion(start=6.0, end=14.0)])

        written = result.playlist_path.read_bytes()
        assert written.startswith(b"#EXTM3U\r\n")
        assert b"\r\nzoom-0.ts\r\n" in written
        assert written.endswith(b"#EXT-X-ENDLIST\r\n")
        assert written.count(b"\n") == written.count(b"\r\n")

    def test_crlf_pass_through_is_byte_identical(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 3)
        playlist = source_dir / "playlist.m3u8"
        playlist.write_bytes(playlist.read_bytes().replace(b"\n", b"\r\n"))

        result = compose(source_dir, tmp_path, engine, [])

        assert result.playlist_path.read_bytes() == playlist.read_bytes()


class Interrupted(Exception):
    """Stands in for an RQ job timeout raised in the waiting thread."""


class TestComposeCancellation:
    """Tests for interrupting an invocation while jobs are outstanding."""

    REGIONS = [
        ZoomRegion(start=1.0, end=2.0),
        ZoomRegion(start=5.0, end=6.0),
        ZoomRegion(start=9.0, end=10.0),
        ZoomRegion(start=13.0, end=14.0),
        ZoomRegion(start=17.0, end=18.0),
    ]

    def test_queued_jobs_dropped_and_running_render_stopped(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        started = []
        scopes = []

        def cancellable_render(merged_clip, output_path, rel_start, rel_end, cancel_scope=None, **kwargs):
            started.append(output_path.name)
            scopes.append(cancel_scope)
            if output_path.name != "zoom-0.ts":
                # Behaves like a long render that only ends when killed
                deadline = time.time() + 10
                while time.time() < deadline:
                    cancel_scope.check(f"render {output_path.name}")
                    time.sleep(0.01)
            return fake_render(merged_clip, output_path, rel_start, rel_end)

        def interrupting_progress(done, total):
            raise Interrupted("job timeout")

        began = time.time()
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble), \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=cancellable_render):
            with pytest.raises(Interrupted):
                compose(
                    source_dir, tmp_path, engine, self.REGIONS,
                    max_workers=1,
                    progress_callback=interrupting_progress,
                )

            work_dir = tmp_path / "work"
            deadline = time.time() + 5
            while list(work_dir.iterdir()) and time.time() < deadline:
                time.sleep(0.01)

        assert time.time() - began < 5
        assert set(started) <= {"zoom-0.ts", "zoom-1.ts"}
        assert scopes[0].cancelled
        assert list(work_dir.iterdir()) == []
        assert not (tmp_path / "output" / "playlist.m3u8").exists()

    def test_cancel_scope_shared_by_assembly_and_render(self, segment_dir_factory, tmp_path, engine):
        source_dir = segment_dir_factory("source", [4.0] * 5)
        with patch("hls_zoom.tasks.compositor.pipeline.assemble_clip", side_effect=fake_assemble) as mock_assemble, \
             patch("hls_zoom.tasks.compositor.pipeline.render_zoom_clip", side_effect=fake_render) as mock_render:
            compose(source_dir, tmp_path, engine, self.REGIONS[:2], max_workers=2)

        scopes = {id(call.kwargs["cancel_scope"]) for call in mock_assemble.call_args_list}
        scopes |= {id(call.kwargs["cancel_scope"]) for call in mock_render.call_args_list}
        assert len(scopes) == 1
        assert not mock_render.call_args.kwargs["cancel_scope"].cancelled
