"""
Redis queues for zoom compositing work.

Zoom requests re-encode every region and can hold a worker for minutes,
export-only requests are a single stream-copy remux. Both share one Redis
connection built from Settings.redis_url; workers drain ZOOM_QUEUE before
EXPORT_QUEUE (see ALL_QUEUES).

Queue objects are only bound to Redis when first used, so importing task
modules (or the CLI's plan command) never opens a connection.
"""

from typing import Optional

from redis import Redis
from rq import Queue

from .config import get_settings

ZOOM_QUEUE = "hls_zoom:zoom"
EXPORT_QUEUE = "hls_zoom:export"

ALL_QUEUES = [ZOOM_QUEUE, EXPORT_QUEUE]

_redis_connection: Optional[Redis] = None


def get_redis_connection() -> Redis:
    """Shared Redis connection for enqueueing and for the worker."""
    global _redis_connection

    if _redis_connection is None:
        _redis_connection = Redis.from_url(get_settings().redis_url, decode_responses=False)

    return _redis_connection


class _LazyQueue:
    """RQ queue that connects on first enqueue or attribute access."""

    def __init__(self, name: str):
        self._name = name
        self._queue: Optional[Queue] = None

    def _bind(self) -> Queue:
        if self._queue is None:
            self._queue = Queue(self._name, connection=get_redis_connection())
        return self._queue

    def __getattr__(self, name):
        return getattr(self._bind(), name)

    def enqueue(self, *args, **kwargs):
        return self._bind().enqueue(*args, **kwargs)


zoom_queue = _LazyQueue(ZOOM_QUEUE)
export_queue = _LazyQueue(EXPORT_QUEUE)
