"""
hls-zoom: command-line access to the zoom worker.

Usage:
    hls-zoom run request.json [--export-only]
    hls-zoom enqueue request.json [--export-only]
    hls-zoom plan playlist.m3u8 --zoom 6:14 --zoom 30:38:0.25:0.4:3
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .tasks.compositor.errors import ValidationError, ZoomCompositorError
from .tasks.compositor.resolver import DEFAULT_MAGNIFICATION, ZoomRegion, resolve_zoom_jobs
from .tasks.compositor.timeline import parse_playlist


def parse_zoom_argument(value: str) -> ZoomRegion:
    """
    Parse start:end[:x:y[:zoom]] into a ZoomRegion.

    Raises:
        ValidationError: If the value is not 2, 4 or 5 numbers
    """
    parts = value.split(":")
    if len(parts) not in (2, 4, 5):
        raise ValidationError(f"Zoom must be start:end[:x:y[:zoom]], got {value!r}")
    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        raise ValidationError(f"Zoom values must be numbers, got {value!r}")

    start, end = numbers[0], numbers[1]
    center_x, center_y = (numbers[2], numbers[3]) if len(numbers) >= 4 else (0.5, 0.5)
    magnification = numbers[4] if len(numbers) == 5 else DEFAULT_MAGNIFICATION
    return ZoomRegion(
        start=start,
        end=end,
        center_x=center_x,
        center_y=center_y,
        magnification=magnification,
    )


def cmd_plan(playlist: Path, zooms: List[str]) -> int:
    """
    Dry run: resolve zoom regions against a playlist without rendering.
    Prints the segment range each region would replace.
    """
    try:
        timeline = parse_playlist(playlist.read_bytes().decode("utf-8"))
        regions = [parse_zoom_argument(value) for value in zooms]
        jobs = resolve_zoom_jobs(timeline, regions)
    except (OSError, ZoomCompositorError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    plan = {
        "segment_count": len(timeline),
        "total_duration": round(timeline.total_duration, 6),
        "output_entry_count": len(timeline) - sum(job.replaced_count for job in jobs) + len(jobs),
        "jobs": [
            {
                "index": job.index,
                "start": job.region.start,
                "end": job.region.end,
                "seg_start": job.seg_start,
                "seg_end": job.seg_end,
                "rel_start": round(job.rel_start, 6),
                "rel_end": round(job.rel_end, 6),
                "replaced_duration": round(job.declared_duration, 6),
                "output": job.output_name,
            }
            for job in jobs
        ],
    }
    print(json.dumps(plan, indent=2))
    return 0


def cmd_run(request_file: Path, export_only: bool = False) -> int:
    """Process a request in this process and print its summary."""
    from .tasks.zoom import process_export_request, process_zoom_request

    task = process_export_request if export_only else process_zoom_request
    try:
        summary = task(request_file.read_text(encoding="utf-8"))
    except (OSError, ZoomCompositorError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))
    return 0


def cmd_enqueue(request_file: Path, export_only: bool = False) -> int:
    """Validate a request and put it on the worker queue."""
    from .schemas.zoom_request import parse_zoom_request
    from .tasks.zoom import enqueue_export_request, enqueue_zoom_request

    try:
        payload = request_file.read_text(encoding="utf-8")
        parse_zoom_request(payload, require_zooms=not export_only)
    except (OSError, ZoomCompositorError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    enqueue = enqueue_export_request if export_only else enqueue_zoom_request
    job = enqueue(payload)
    print(f"OK: enqueued job {job.id}")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="hls-zoom zoom region compositor CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Process a request synchronously")
    run_parser.add_argument("request", type=Path, help="Request JSON file")
    run_parser.add_argument(
        "--export-only", action="store_true",
        help="Treat the request as an export request (zoom regions optional)",
    )

    enqueue_parser = sub.add_parser("enqueue", help="Enqueue a request for the worker")
    enqueue_parser.add_argument("request", type=Path, help="Request JSON file")
    enqueue_parser.add_argument(
        "--export-only", action="store_true",
        help="Enqueue on the export queue instead of the zoom queue",
    )

    plan_parser = sub.add_parser("plan", help="Resolve zoom regions without rendering")
    plan_parser.add_argument("playlist", type=Path, help="Local playlist file")
    plan_parser.add_argument(
        "--zoom", action="append", default=[], metavar="START:END[:X:Y[:ZOOM]]",
        help="Zoom region (repeatable)",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command == "run":
        sys.exit(cmd_run(args.request, export_only=args.export_only))
    elif args.command == "enqueue":
        sys.exit(cmd_enqueue(args.request, export_only=args.export_only))
    elif args.command == "plan":
        sys.exit(cmd_plan(args.playlist, args.zoom))


if __name__ == "__main__":
    main()
