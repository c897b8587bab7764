"""
Unit tests for the zoom request RQ tasks.

Storage runs for real against an isolated root; composition and export
are replaced by fakes that copy files instead of invoking FFmpeg.
"""

import json
import shutil
from unittest.mock import MagicMock, patch

import pytest

from hls_zoom.tasks.callback import STATUS_COMPLETED, STATUS_FAILED
from hls_zoom.tasks.compositor.errors import ConflictError, TransformError, ValidationError
from hls_zoom.tasks.compositor.pipeline import CompositionResult
from hls_zoom.tasks.compositor.resolver import resolve_zoom_jobs
from hls_zoom.tasks.compositor.timeline import parse_playlist
from hls_zoom.tasks.zoom import (
    _peek_callback_url,
    enqueue_export_request,
    enqueue_zoom_request,
    process_export_request,
    process_zoom_request,
)

CALLBACK_URL = "http://hooks.local/zoom-done"


def fake_compose(playlist_path, regions, output_dir, work_dir, progress_callback=None, **kwargs):
    shutil.copytree(playlist_path.parent, output_dir)
    timeline = parse_playlist((output_dir / "playlist.m3u8").read_text())
    jobs = resolve_zoom_jobs(timeline, regions)
    if progress_callback and jobs:
        progress_callback(len(jobs), len(jobs))
    return CompositionResult(
        source=timeline,
        timeline=timeline,
        jobs=jobs,
        outputs=[],
        playlist_path=output_dir / "playlist.m3u8",
    )


def fake_export(playlist_path, output_path, engine):
    output_path.write_bytes(b"mp4 of " + playlist_path.name.encode())
    return output_path


def make_payload(**overrides):
    payload = {
        "recordingId": "rec-1",
        "manifestReference": "recordings/rec-1/playlist.m3u8",
        "outputLocation": "zoomed/rec-1",
        "callbackUrl": CALLBACK_URL,
        "zooms": [{"start": 1.0, "end": 3.0}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def worker_env(monkeypatch, isolated_storage, segment_dir_factory, tmp_path):
    """Storage root holding a 3x4s recording plus an empty scratch root."""
    source = segment_dir_factory("upload", [4.0] * 3)
    shutil.copytree(source, isolated_storage / "recordings" / "rec-1")

    scratch_root = tmp_path / "scratch"
    scratch_root.mkdir()
    monkeypatch.setenv("STORAGE_PATH", str(isolated_storage))
    monkeypatch.setenv("SCRATCH_ROOT", str(scratch_root))
    return isolated_storage, scratch_root


@pytest.fixture
def mock_job():
    job = MagicMock()
    job.meta = {}
    with patch("hls_zoom.tasks.zoom.get_current_job", return_value=job):
        yield job


@pytest.fixture
def mock_notify():
    with patch("hls_zoom.tasks.zoom.notify", return_value=True) as mock:
        yield mock


class TestProcessZoomRequest:
    """Tests for the zoom task."""

    def test_success_summary(self, worker_env, mock_job, mock_notify):
        storage_root, _ = worker_env
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose):
            summary = process_zoom_request(make_payload())

        assert summary == {
            "status": STATUS_COMPLETED,
            "recording_id": "rec-1",
            "playlist_key": "zoomed/rec-1/playlist.m3u8",
            "export_key": None,
            "zoom_count": 1,
            "segment_count": 3,
            "total_duration": 12.0,
        }
        published = storage_root / "zoomed" / "rec-1"
        assert (published / "playlist.m3u8").exists()
        assert (published / "00002.ts").read_bytes() == b"segment 2"

    def test_compose_arguments(self, worker_env, mock_job, mock_notify, monkeypatch):
        monkeypatch.setenv("MAX_PARALLEL_ZOOMS", "4")
        monkeypatch.setenv("ZOOM_IN_SECONDS", "1.5")
        payload = make_payload(lowQuality=True, zooms=[{"start": 1, "end": 3, "x": 0.2}])
        with patch(
            "hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose
        ) as mock_compose:
            process_zoom_request(payload)

        kwargs = mock_compose.call_args.kwargs
        assert kwargs["max_workers"] == 4
        assert kwargs["zoom_in_seconds"] == 1.5
        assert kwargs["quality"].name == "reduced"
        assert kwargs["regions"][0].center_x == 0.2
        assert kwargs["playlist_path"].name == "playlist.m3u8"

    def test_completed_callback(self, worker_env, mock_job, mock_notify):
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose):
            process_zoom_request(make_payload())

        mock_notify.assert_called_once_with(CALLBACK_URL, STATUS_COMPLETED, timeout=10.0)

    def test_progress_metadata(self, worker_env, mock_job, mock_notify):
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose):
            process_zoom_request(make_payload())

        assert mock_job.meta["progress_percent"] == 100
        assert mock_job.meta["progress_message"] == "Zoom request complete"
        assert mock_job.save_meta.called

    def test_scratch_removed(self, worker_env, mock_job, mock_notify):
        _, scratch_root = worker_env
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose):
            process_zoom_request(make_payload())

        assert list(scratch_root.iterdir()) == []

    def test_json_body_envelope(self, worker_env, mock_job, mock_notify):
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose):
            summary = process_zoom_request({"body": json.dumps(make_payload())})

        assert summary["recording_id"] == "rec-1"

    def test_export_key(self, worker_env, mock_job, mock_notify):
        storage_root, _ = worker_env
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose), \
             patch("hls_zoom.tasks.zoom.export_single_file", side_effect=fake_export) as mock_export:
            summary = process_zoom_request(make_payload(exportKey="exports/rec-1.mp4"))

        assert summary["export_key"] == "exports/rec-1.mp4"
        assert (storage_root / "exports" / "rec-1.mp4").read_bytes() == b"mp4 of playlist.m3u8"
        assert mock_export.call_args[0][1].name == "export.mp4"

    def test_no_export_without_key(self, worker_env, mock_job, mock_notify):
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose), \
             patch("hls_zoom.tasks.zoom.export_single_file") as mock_export:
            process_zoom_request(make_payload())

        mock_export.assert_not_called()


class TestProcessZoomRequestFailures:
    """Tests for failed requests."""

    def test_failure_callback_and_reraise(self, worker_env, mock_job, mock_notify):
        _, scratch_root = worker_env
        with patch(
            "hls_zoom.tasks.zoom.compose_zoom_timeline",
            side_effect=ConflictError("Zoom regions 0 and 1 both cover segment 1"),
        ):
            with pytest.raises(ConflictError):
                process_zoom_request(make_payload())

        mock_notify.assert_called_once_with(
            CALLBACK_URL,
            STATUS_FAILED,
            reason="Zoom regions 0 and 1 both cover segment 1",
            timeout=10.0,
        )
        assert list(scratch_root.iterdir()) == []

    def test_nothing_published_on_failure(self, worker_env, mock_job, mock_notify):
        storage_root, _ = worker_env
        with patch(
            "hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=TransformError("render failed")
        ):
            with pytest.raises(TransformError):
                process_zoom_request(make_payload())

        assert not (storage_root / "zoomed").exists()

    def test_invalid_request_still_calls_back(self, worker_env, mock_job, mock_notify):
        payload = make_payload()
        del payload["recordingId"]
        with pytest.raises(ValidationError):
            process_zoom_request(payload)

        assert mock_notify.call_args[0][:2] == (CALLBACK_URL, STATUS_FAILED)
        assert "recordingId" in mock_notify.call_args.kwargs["reason"]

    def test_zoom_regions_required(self, worker_env, mock_job, mock_notify):
        with pytest.raises(ValidationError, match="no zoom regions"):
            process_zoom_request(make_payload(zooms=[]))

    def test_missing_manifest(self, worker_env, mock_job, mock_notify):
        with pytest.raises(TransformError, match="Manifest not found"):
            process_zoom_request(make_payload(manifestReference="recordings/none/playlist.m3u8"))

        assert mock_notify.call_args[0][1] == STATUS_FAILED

    def test_long_reason_truncated(self, worker_env, mock_job, mock_notify):
        with patch(
            "hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=TransformError("x" * 5000)
        ):
            with pytest.raises(TransformError):
                process_zoom_request(make_payload())

        assert len(mock_notify.call_args.kwargs["reason"]) == 1000


class TestProcessExportRequest:
    """Tests for the export-only task."""

    def test_default_export_key(self, worker_env, mock_job, mock_notify):
        storage_root, _ = worker_env
        payload = make_payload()
        del payload["zooms"]
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose), \
             patch("hls_zoom.tasks.zoom.export_single_file", side_effect=fake_export):
            summary = process_export_request(payload)

        assert summary["export_key"] == "zoomed/rec-1/rec-1.mp4"
        assert summary["zoom_count"] == 0
        assert (storage_root / "zoomed" / "rec-1" / "rec-1.mp4").exists()

    def test_explicit_export_key(self, worker_env, mock_job, mock_notify):
        with patch("hls_zoom.tasks.zoom.compose_zoom_timeline", side_effect=fake_compose), \
             patch("hls_zoom.tasks.zoom.export_single_file", side_effect=fake_export):
            summary = process_export_request(make_payload(exportKey="exports/final.mp4"))

        assert summary["export_key"] == "exports/final.mp4"
        assert summary["zoom_count"] == 1


class TestEnqueue:
    """Tests for the enqueue helpers."""

    def test_enqueue_zoom_request(self):
        with patch("hls_zoom.queues.zoom_queue") as mock_queue:
            enqueue_zoom_request({"recordingId": "rec-1"})

        args, kwargs = mock_queue.enqueue.call_args
        assert args[0] is process_zoom_request
        assert args[1] == {"recordingId": "rec-1"}
        assert kwargs["job_timeout"] == 1800

    def test_enqueue_export_request(self, monkeypatch):
        monkeypatch.setenv("EXPORT_JOB_TIMEOUT", "60")
        with patch("hls_zoom.queues.export_queue") as mock_queue:
            enqueue_export_request("{}")

        args, kwargs = mock_queue.enqueue.call_args
        assert args[0] is process_export_request
        assert kwargs["job_timeout"] == 60


class TestPeekCallbackUrl:

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"callbackUrl": CALLBACK_URL}, CALLBACK_URL),
            ({"callbackLocation": CALLBACK_URL}, CALLBACK_URL),
            (json.dumps({"callback_url": CALLBACK_URL}), CALLBACK_URL),
            ({"body": json.dumps({"callbackUrl": CALLBACK_URL})}, CALLBACK_URL),
            ({"callbackUrl": ""}, None),
            ("{broken", None),
            ("[]", None),
        ],
    )
    def test_peek(self, payload, expected):
        assert _peek_callback_url(payload) == expected
