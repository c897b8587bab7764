"""
HLS Zoom Worker Package

RQ-based worker that edits segmented (HLS) recordings:
- Zoom regions: animated pan/zoom renditions spliced into a rebuilt playlist
- Single-file export of a rebuilt playlist
"""

from .queues import (
    get_redis_connection,
    zoom_queue,
    export_queue,
    ALL_QUEUES,
)

# Import tasks for convenient access
from .tasks import (
    process_zoom_request,
    process_export_request,
    enqueue_zoom_request,
    enqueue_export_request,
)

__all__ = [
    # Queues
    "get_redis_connection",
    "zoom_queue",
    "export_queue",
    "ALL_QUEUES",
    # Tasks
    "process_zoom_request",
    "process_export_request",
    # Enqueue helpers
    "enqueue_zoom_request",
    "enqueue_export_request",
]
