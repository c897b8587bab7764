"""
Zoom Request Task

RQ tasks that run one zoom (or export-only) request end to end:
validate -> fetch -> compose -> export -> publish -> callback.

Scratch space is private to one request and removed on every exit path.
Any failure sends a best-effort FAILED callback and is re-raised so RQ
records the job as failed.

Job timeout: settings.zoom_job_timeout (zoom) / settings.export_job_timeout
(export-only)
"""

import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from rq import get_current_job

from ..config import get_settings
from ..schemas.zoom_request import ZoomRequest, parse_zoom_request
from .callback import STATUS_COMPLETED, STATUS_FAILED, notify
from .compositor.export import export_single_file
from .compositor.pipeline import compose_zoom_timeline
from .compositor.zoom_curve import get_quality_tier
from .ffmpeg_runner import EngineConfig
from .storage import storage_from_settings

logger = logging.getLogger(__name__)

EXPORT_FILE_NAME = "export.mp4"

CALLBACK_KEYS = ("callbackLocation", "callbackUrl", "callback_url")


def update_job_progress(percent: int, message: str) -> None:
    """
    Update RQ job progress metadata.

    Args:
        percent: Progress percentage (0-100)
        message: Progress message
    """
    job = get_current_job()
    if job:
        job.meta["progress_percent"] = percent
        job.meta["progress_message"] = message
        job.save_meta()


def enqueue_zoom_request(payload: Union[dict, str]):
    """
    Enqueue a zoom request with the configured timeout.

    Use this instead of directly enqueueing the task.

    Args:
        payload: Request dict or JSON text

    Returns:
        RQ Job instance
    """
    from ..queues import zoom_queue

    return zoom_queue.enqueue(
        process_zoom_request,
        payload,
        job_timeout=get_settings().zoom_job_timeout,
    )


def enqueue_export_request(payload: Union[dict, str]):
    """Enqueue an export-only request with the configured timeout."""
    from ..queues import export_queue

    return export_queue.enqueue(
        process_export_request,
        payload,
        job_timeout=get_settings().export_job_timeout,
    )


def process_zoom_request(payload: Union[dict, str]) -> dict:
    """
    RQ task to apply every zoom region of a request to its playlist.

    This task:
    1. Validates the request (at least one zoom region)
    2. Fetches the playlist and its segments into scratch space
    3. Resolves, assembles, renders and splices every zoom region
    4. Exports a single file when an export key was given
    5. Publishes the results and sends the COMPLETED callback

    Args:
        payload: Request dict, JSON text, or an envelope with a JSON body

    Returns:
        dict: Summary with status, published keys and timeline figures

    Raises:
        ZoomCompositorError: Any validation, playlist, region or engine
            failure (after the FAILED callback)
    """
    return _run_request(payload, require_zooms=True, force_export=False)


def process_export_request(payload: Union[dict, str]) -> dict:
    """
    RQ task to export a request's playlist to one file.

    Zoom regions are optional; without them the rebuilt playlist is the
    source playlist and the export is a plain remux. Without an export
    key the file is published as <outputLocation>/<recordingId>.mp4.
    """
    return _run_request(payload, require_zooms=False, force_export=True)


def _run_request(payload: Union[dict, str], require_zooms: bool, force_export: bool) -> dict:
    settings = get_settings()
    callback_url = _peek_callback_url(payload)
    scratch_dir: Optional[Path] = None

    update_job_progress(0, "Validating request")

    try:
        request = parse_zoom_request(payload, require_zooms=require_zooms)
        callback_url = request.callback_url
        logger.info(
            f"Starting zoom request for recording={request.recording_id}, "
            f"zooms={len(request.zooms)}, quality={request.quality}"
        )

        scratch_root = Path(settings.scratch_root)
        scratch_root.mkdir(parents=True, exist_ok=True)
        scratch_dir = Path(
            tempfile.mkdtemp(prefix=f"hls-zoom-{request.recording_id}-", dir=scratch_root)
        )

        summary = _process(request, scratch_dir, settings, force_export)

    except Exception as e:
        logger.error(f"Zoom request failed: {e}", exc_info=True)
        notify(
            callback_url,
            STATUS_FAILED,
            reason=str(e)[:1000],
            timeout=settings.callback_timeout,
        )
        raise

    finally:
        if scratch_dir is not None:
            shutil.rmtree(scratch_dir, ignore_errors=True)
            logger.debug(f"Removed scratch directory {scratch_dir}")

    notify(callback_url, STATUS_COMPLETED, timeout=settings.callback_timeout)
    update_job_progress(100, "Zoom request complete")
    logger.info(f"Zoom request complete: {summary}")
    return summary


def _process(request: ZoomRequest, scratch_dir: Path, settings, force_export: bool) -> dict:
    engine = EngineConfig.from_settings(settings)
    quality = get_quality_tier(request.quality)
    storage = storage_from_settings(settings)

    update_job_progress(5, "Fetching playlist")
    source_playlist = storage.fetch_playlist(request.manifest_reference, scratch_dir / "source")

    def on_job_done(completed: int, total: int) -> None:
        # Zoom jobs cover 15-80%
        update_job_progress(
            15 + int(65 * completed / total),
            f"Rendered {completed}/{total} zoom regions",
        )

    update_job_progress(15, "Rendering zoom regions")
    result = compose_zoom_timeline(
        playlist_path=source_playlist,
        regions=request.regions(),
        output_dir=scratch_dir / "output",
        work_dir=scratch_dir / "work",
        quality=quality,
        engine=engine,
        max_workers=settings.max_parallel_zooms,
        zoom_in_seconds=settings.zoom_in_seconds,
        zoom_out_seconds=settings.zoom_out_seconds,
        progress_callback=on_job_done,
    )

    export_key = request.export_key
    if force_export and not export_key:
        export_key = f"{request.output_location.rstrip('/')}/{request.recording_id}.mp4"

    published_export = None
    if export_key:
        update_job_progress(85, "Exporting single file")
        exported = export_single_file(
            result.playlist_path, scratch_dir / EXPORT_FILE_NAME, engine
        )
        published_export = storage.publish_file(exported, export_key)

    update_job_progress(95, "Publishing results")
    playlist_key = storage.publish_directory(result.playlist_path.parent, request.output_location)

    return {
        "status": STATUS_COMPLETED,
        "recording_id": request.recording_id,
        "playlist_key": playlist_key,
        "export_key": published_export,
        "zoom_count": len(result.jobs),
        "segment_count": len(result.timeline),
        "total_duration": round(result.timeline.total_duration, 6),
    }


def _peek_callback_url(payload) -> Optional[str]:
    """Callback URL of a payload that may still fail validation."""
    raw = payload
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        if isinstance(raw, dict) and isinstance(raw.get("body"), (str, bytes)):
            raw = json.loads(raw["body"])
    except ValueError:
        return None

    if not isinstance(raw, dict):
        return None
    for key in CALLBACK_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value:
            return value
    return None
