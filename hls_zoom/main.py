"""
HLS Zoom Worker Entry Point

Starts the RQ worker that processes zoom and export-only requests.
Refuses to start when Redis is unreachable or the configured ffmpeg/ffprobe
binaries do not run, since every job would fail.

Usage:
    python -m hls_zoom.main [--burst] [--queue hls_zoom:export]

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
    STORAGE_PATH: Root of manifests and published results (default: /data)
    FFMPEG_PATH / FFPROBE_PATH: Engine binaries (default: from PATH)
"""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Worker

from .config import get_settings
from .queues import ALL_QUEUES, get_redis_connection
from .tasks.ffmpeg_runner import EngineConfig, validate_ffmpeg_available

logger = logging.getLogger("hls_zoom.worker")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_worker(connection: Redis, queue_names: Sequence[str] = ALL_QUEUES) -> Worker:
    """
    Create an RQ worker for the given queues.

    Queues are consumed in the order given; by default zoom requests
    (hls_zoom:zoom) are taken before export-only requests (hls_zoom:export).
    """
    queues = [Queue(name, connection=connection) for name in queue_names]
    return Worker(queues=queues, connection=connection, name="hls_zoom-worker")


def start_worker(queue_names: Sequence[str] = ALL_QUEUES, burst: bool = False) -> int:
    """
    Check Redis and the transform engine, then run the worker.

    Blocks until the worker stops (or the queues are drained in burst mode).

    Returns:
        Process exit code
    """
    logger.info("Starting HLS zoom worker...")

    try:
        connection = get_redis_connection()
        connection.ping()
    except RedisError as e:
        logger.error(f"Failed to connect to Redis: {e}")
        return 1
    logger.info("Successfully connected to Redis")

    engine = EngineConfig.from_settings(get_settings())
    if not validate_ffmpeg_available(engine):
        logger.error(f"FFmpeg not usable (ffmpeg={engine.ffmpeg_path}, ffprobe={engine.ffprobe_path})")
        return 1

    logger.info(f"Listening on queues: {', '.join(queue_names)}")
    worker = create_worker(connection, queue_names)

    try:
        worker.work(burst=burst, with_scheduler=False)
    except KeyboardInterrupt:
        logger.info("Worker shutdown requested")

    logger.info("Worker stopped")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the worker module."""
    parser = argparse.ArgumentParser(description="HLS zoom RQ worker")
    parser.add_argument(
        "--queue", action="append", choices=ALL_QUEUES, dest="queues",
        help="Queue to listen on (repeatable; default: all, zoom first)",
    )
    parser.add_argument("--burst", action="store_true", help="Exit once the queues are empty")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    sys.exit(start_worker(args.queues or ALL_QUEUES, burst=args.burst))


if __name__ == "__main__":
    main()
