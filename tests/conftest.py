"""
Root conftest for worker tests.

Provides playlist builders, engine configuration and isolated storage
for unit and integration tests.
"""
import shutil
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from hls_zoom.config import get_settings
from hls_zoom.tasks.compositor.timeline import Timeline, parse_playlist
from hls_zoom.tasks.ffmpeg_runner import EngineConfig

from .utils.playlists import build_playlist_text


@pytest.fixture
def playlist_factory() -> Callable[..., Timeline]:
    """Factory that parses a generated playlist.

    Usage:
        timeline = playlist_factory([4.0] * 5)
    """

    def _create(durations: List[float], references: Optional[List[str]] = None) -> Timeline:
        return parse_playlist(build_playlist_text(durations, references))

    return _create


@pytest.fixture
def five_by_four(playlist_factory) -> Timeline:
    """5 segments of 4s each, 0-20s."""
    return playlist_factory([4.0] * 5)


@pytest.fixture
def engine() -> EngineConfig:
    return EngineConfig()


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are cached per process; tests patch the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def isolated_storage(tmp_path) -> Path:
    """Create isolated storage root for each test.

    Returns:
        Path to isolated storage root
    """
    storage_root = tmp_path / "storage"
    storage_root.mkdir()
    return storage_root


@pytest.fixture
def segment_dir_factory(tmp_path) -> Callable[..., Path]:
    """Factory writing a playlist plus dummy segment files to a directory.

    Usage:
        source_dir = segment_dir_factory("source", [4.0, 4.0, 4.0])
    """

    def _create(name: str, durations: List[float]) -> Path:
        directory = tmp_path / name
        if directory.exists():
            shutil.rmtree(directory)
        directory.mkdir(parents=True)
        references = [f"seg{i}.ts" for i in range(len(durations))]
        for index, reference in enumerate(references):
            (directory / reference).write_bytes(f"segment {index}".encode())
        (directory / "playlist.m3u8").write_text(
            build_playlist_text(durations, references), encoding="utf-8"
        )
        return directory

    return _create
