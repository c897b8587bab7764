"""
FFmpeg Runner

Two ways of running the transform engine:
- run_ffmpeg: short stream-copy passes, run to completion
- run_ffmpeg_with_progress: zoom renders, followed through -progress pipe:1
  in their own process group so a cancelled job takes the encoder down too

Binaries come from an explicit EngineConfig. Every failure is raised as a
TransformError subclass carrying the tail of FFmpeg's stderr.
"""

import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from .compositor.errors import TransformError

logger = logging.getLogger(__name__)

# Characters of stderr kept in error messages
STDERR_TAIL = 2000

# Seconds to wait for the encoder to exit once its progress stream ended
EXIT_GRACE_SECONDS = 30

PROGRESS_US = re.compile(r"out_time_us=(\d+)")
PROGRESS_MS = re.compile(r"out_time_ms=(\d+)")
PROGRESS_CLOCK = re.compile(r"out_time=(\d+):(\d+):(\d+)\.(\d+)")
PROGRESS_STATE = re.compile(r"progress=(\w+)")


class FFmpegTimeout(TransformError):
    """Raised when a render runs past its time limit."""

    pass


class FFmpegError(TransformError):
    """Raised when FFmpeg cannot start or exits non-zero."""

    pass


class FFmpegCancelled(FFmpegError):
    """Raised when a run is stopped because its invocation was cancelled."""

    pass


class CancelScope:
    """
    FFmpeg processes started for one invocation, stoppable as a group.

    Worker threads register their renders; the thread that owns the
    invocation calls cancel() when it is interrupted, which kills every
    live process group and makes later runs fail before they start.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self, description: str = "ffmpeg") -> None:
        if self._cancelled.is_set():
            raise FFmpegCancelled(f"{description} cancelled")

    def register(self, process: subprocess.Popen) -> None:
        with self._lock:
            if self._cancelled.is_set():
                _kill_process_group(process)
                raise FFmpegCancelled("FFmpeg started after cancellation")
            self._processes.add(process)

    def unregister(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            live = list(self._processes)
            self._processes.clear()
        for process in live:
            _kill_process_group(process)
        if live:
            logger.warning(f"Killed {len(live)} running FFmpeg process(es) on cancellation")


@dataclass(frozen=True)
class EngineConfig:
    """Transform engine binaries and encoder settings."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    x264_preset: str = "medium"
    x264_crf: int = 23

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
            x264_preset=settings.x264_preset,
            x264_crf=settings.x264_crf,
        )


def _failure_message(description: str, return_code: int, stderr: str) -> str:
    message = f"{description} failed with code {return_code}"
    if stderr:
        message += f": {stderr[-STDERR_TAIL:]}"
    return message


def run_ffmpeg(
    cmd: List[str],
    description: str = "ffmpeg",
    cancel_scope: Optional[CancelScope] = None,
) -> None:
    """
    Run a stream-copy pass (concat, timestamp repair, export) to completion.

    These passes are short, so a cancel scope is only checked before the
    pass starts.

    Raises:
        FFmpegCancelled: If cancel_scope was already cancelled
        FFmpegError: If the binary is missing or exits non-zero
    """
    if cancel_scope is not None:
        cancel_scope.check(description)
    logger.debug(f"{description}: {' '.join(cmd)}")
    started = time.time()

    try:
        result = subprocess.run(cmd, capture_output=True)
    except OSError as e:
        raise FFmpegError(f"{description} could not start: {e}") from e

    if result.returncode != 0:
        message = _failure_message(
            description, result.returncode, result.stderr.decode("utf-8", errors="replace")
        )
        logger.error(message)
        raise FFmpegError(message)

    logger.info(f"{description} finished in {time.time() - started:.1f}s")


def run_ffmpeg_with_progress(
    cmd: List[str],
    total_duration_ms: int,
    progress_callback: Optional[Callable[[int, str], None]] = None,
    timeout_seconds: Optional[int] = None,
    description: str = "render",
    cancel_scope: Optional[CancelScope] = None,
) -> None:
    """
    Run a long FFmpeg command while reporting how far it got.

    Progress is read from the key=value stream FFmpeg writes with
    -progress pipe:1 and turned into a percentage of total_duration_ms.
    The callback sees strictly increasing values below 100, then 100 once
    the process exited cleanly.

    Args:
        cmd: FFmpeg command without -progress arguments
        total_duration_ms: Expected output duration in milliseconds
        progress_callback: Called with (percent, message)
        timeout_seconds: Wall-clock limit, or None to rely on the job deadline
        description: Short label for log and error messages
        cancel_scope: Registers the process so another thread can kill it

    Raises:
        FFmpegCancelled: If cancel_scope is cancelled before or during the run
        FFmpegTimeout: If the run exceeds timeout_seconds
        FFmpegError: If FFmpeg fails or the run is interrupted
    """
    if cancel_scope is not None:
        cancel_scope.check(description)

    full_cmd = cmd + ["-progress", "pipe:1", "-stats_period", "0.5"]
    logger.info(f"Starting {description}: {total_duration_ms}ms of output, timeout={timeout_seconds}")
    logger.debug(f"{description}: {' '.join(full_cmd)}")

    try:
        process = subprocess.Popen(
            full_cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            preexec_fn=os.setsid,
        )
    except OSError as e:
        raise FFmpegError(f"{description} could not start: {e}") from e

    started = time.time()
    try:
        if cancel_scope is not None:
            cancel_scope.register(process)
        _follow_progress(
            process, total_duration_ms, progress_callback, started, timeout_seconds, cancel_scope
        )

        stderr = process.stderr.read()
        try:
            return_code = process.wait(timeout=EXIT_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            raise FFmpegTimeout(f"{description} did not exit after its progress stream ended")

        if cancel_scope is not None and cancel_scope.cancelled:
            raise FFmpegCancelled(f"{description} cancelled")

        if return_code != 0:
            message = _failure_message(description, return_code, stderr)
            logger.error(message)
            raise FFmpegError(message)

    except TransformError:
        raise
    except Exception as e:
        # RQ raises its job timeout inside the running frame
        logger.error(f"{description} interrupted: {e}", exc_info=True)
        _kill_process_group(process)
        raise FFmpegError(f"{description} interrupted: {e}") from e

    finally:
        if cancel_scope is not None:
            cancel_scope.unregister(process)

    logger.info(f"{description} finished in {time.time() - started:.1f}s")
    if progress_callback:
        progress_callback(100, "Complete")


def _follow_progress(
    process, total_duration_ms, progress_callback, started, timeout_seconds, cancel_scope=None
):
    last_percent = 0
    for line in process.stdout:
        line = line.strip()

        if cancel_scope is not None and cancel_scope.cancelled:
            _kill_process_group(process)
            raise FFmpegCancelled("FFmpeg cancelled while rendering")

        if timeout_seconds is not None and time.time() - started > timeout_seconds:
            _kill_process_group(process)
            raise FFmpegTimeout(f"FFmpeg exceeded timeout of {timeout_seconds} seconds")

        state = PROGRESS_STATE.search(line)
        if state and state.group(1) == "end":
            return

        current_ms = _parse_progress_time(line)
        if current_ms is None or total_duration_ms <= 0:
            continue
        percent = min(99, current_ms * 100 // total_duration_ms)
        if percent > last_percent:
            last_percent = percent
            if progress_callback:
                progress_callback(percent, f"Rendering: {percent}%")


def _parse_progress_time(line: str) -> Optional[int]:
    """Output position in milliseconds from one progress line, if it has one."""
    match = PROGRESS_US.search(line)
    if match:
        return int(match.group(1)) // 1000

    match = PROGRESS_MS.search(line)
    if match:
        return int(match.group(1))

    match = PROGRESS_CLOCK.search(line)
    if match:
        hours, minutes, seconds = (int(match.group(i)) for i in (1, 2, 3))
        fraction_ms = int(match.group(4).ljust(6, "0")[:6]) // 1000
        return ((hours * 60 + minutes) * 60 + seconds) * 1000 + fraction_ms

    return None


def _kill_process_group(process: subprocess.Popen) -> None:
    """SIGKILL FFmpeg together with everything in its process group."""
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("FFmpeg already exited")
    except OSError as e:
        logger.warning(f"Could not kill FFmpeg process group: {e}")
        try:
            process.kill()
        except OSError:
            logger.debug("FFmpeg already exited")


def validate_ffmpeg_available(engine: EngineConfig) -> bool:
    """True if both configured binaries start and report a version."""
    for binary in (engine.ffmpeg_path, engine.ffprobe_path):
        try:
            result = subprocess.run([binary, "-version"], capture_output=True, timeout=5)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"{binary} not available: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"{binary} -version exited with code {result.returncode}")
            return False
    return True
