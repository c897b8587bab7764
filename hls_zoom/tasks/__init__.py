"""
HLS Zoom Worker Tasks

This module exports all background task functions for the RQ worker.

Tasks:
- process_zoom_request: Replace every zoom region of a playlist with a
  rendered pan/zoom clip and publish the rebuilt playlist
- process_export_request: Publish a playlist as one MP4 (zoom regions optional)

Enqueue helpers (use these for proper timeout handling):
- enqueue_zoom_request: Enqueue a zoom request with settings.zoom_job_timeout
- enqueue_export_request: Enqueue an export request with settings.export_job_timeout
"""

from .zoom import (
    process_zoom_request,
    process_export_request,
    enqueue_zoom_request,
    enqueue_export_request,
)

__all__ = [
    # Task functions
    "process_zoom_request",
    "process_export_request",
    # Enqueue helpers
    "enqueue_zoom_request",
    "enqueue_export_request",
]
