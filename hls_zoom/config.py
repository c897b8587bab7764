"""
Worker Configuration

Settings class using pydantic-settings for environment variable loading.
Engine binaries, animation timing and concurrency limits live here and are
handed to the compositor's collaborators explicitly.
"""

import tempfile
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Worker settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For example, FFMPEG_PATH=/opt/bin/ffmpeg points the engine at a
    bundled binary.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # Storage
    storage_path: str = Field(
        default="/data",
        alias="STORAGE_PATH",
        description="Root path of the storage collaborator",
    )
    scratch_root: str = Field(
        default_factory=tempfile.gettempdir,
        description="Directory holding per-invocation scratch space",
    )

    # Transform engine
    ffmpeg_path: str = Field(default="ffmpeg", description="FFmpeg binary")
    ffprobe_path: str = Field(default="ffprobe", description="FFprobe binary")
    x264_preset: str = Field(default="medium", description="libx264 preset for zoom clips")
    x264_crf: int = Field(default=23, ge=0, le=51, description="libx264 CRF for zoom clips")

    # Animation
    zoom_in_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Lead time of the ease-in ramp",
    )
    zoom_out_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Trailing time of the ease-out ramp",
    )

    # Concurrency and deadlines
    max_parallel_zooms: int = Field(
        default=2,
        ge=1,
        description="Zoom jobs assembled and rendered at the same time",
    )
    zoom_job_timeout: int = Field(
        default=1800,  # 30 minutes
        description="RQ job timeout for one zoom request in seconds",
    )
    export_job_timeout: int = Field(
        default=900,  # 15 minutes
        description="RQ job timeout for one export-only request in seconds",
    )
    callback_timeout: float = Field(
        default=10.0,
        description="Timeout for completion/failure callbacks in seconds",
    )
    download_timeout: float = Field(
        default=60.0,
        description="Timeout for remote manifest/segment downloads in seconds",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached worker settings instance.

    Uses lru_cache to ensure settings are only loaded once per process.

    Returns:
        Settings: Worker settings instance
    """
    return Settings()
