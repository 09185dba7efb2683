#!/usr/bin/env python
"""
Validated settings snapshot for the download pipeline.

Merges defaults from hifidl.config.Config with optional runtime overrides so
every pipeline component reads its knobs from one typed object.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hifidl.config import Config


class PipelineSettings(BaseModel):
    """Knobs consumed by the fetcher, scheduler, embedder and persistence layers."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    scratch_dir: str

    concurrency: int = 3
    max_retries: int = 3
    retry_base_delay: float = 2.0
    media_timeout: int = 300
    cover_timeout: int = 15
    transcode_timeout: int = 600
    ffmpeg_binary: str = "ffmpeg"
    default_bitrate: int = 320

    track_name_template: str = "{track} - {name}"
    zip_name_template: str = "{artists} - {name}"

    lyrics_api_url: Optional[str] = None
    lyrics_prefetch_limit: int = 5
    lyrics_cache_maxsize: int = 512
    lyrics_cache_ttl: float = 3600.0

    library_size_limit: int = Field(default=30 * 1024 ** 3, gt=0)
    storage_window_days: int = Field(default=30, gt=0)

    progress_queue_maxsize: int = 64

    @field_validator("concurrency", mode="before")
    @classmethod
    def _clamp_concurrency(cls, value: object) -> int:
        try:
            n = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 3
        return max(1, min(n, 16))

    @field_validator("max_retries", mode="before")
    @classmethod
    def _clamp_retries(cls, value: object) -> int:
        try:
            n = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 3
        return max(1, min(n, 10))

    @field_validator("retry_base_delay", "lyrics_cache_ttl", mode="before")
    @classmethod
    def _non_negative(cls, value: object) -> float:
        try:
            return max(0.0, float(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0

    @field_validator("lyrics_api_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip().rstrip("/")
        return text or None


def load_pipeline_settings(overrides: Optional[Dict[str, Any]] = None) -> PipelineSettings:
    """Load settings merging config defaults with optional runtime overrides."""
    data: Dict[str, Any] = {
        "scratch_dir": Config.SCRATCH_DIR,
        "concurrency": Config.TRACK_CONCURRENCY,
        "max_retries": Config.TRACK_MAX_RETRIES,
        "retry_base_delay": Config.TRACK_RETRY_BASE_DELAY_SECONDS,
        "media_timeout": Config.MEDIA_DOWNLOAD_TIMEOUT_SECONDS,
        "cover_timeout": Config.COVER_DOWNLOAD_TIMEOUT_SECONDS,
        "transcode_timeout": Config.TRANSCODE_TIMEOUT_SECONDS,
        "ffmpeg_binary": Config.FFMPEG_BINARY,
        "default_bitrate": Config.DEFAULT_LOSSY_BITRATE,
        "track_name_template": Config.DEFAULT_TRACK_NAME_TEMPLATE,
        "zip_name_template": Config.DEFAULT_ZIP_NAME_TEMPLATE,
        "lyrics_api_url": Config.LYRICS_API_URL,
        "lyrics_prefetch_limit": Config.LYRICS_PREFETCH_LIMIT,
        "lyrics_cache_maxsize": Config.LYRICS_CACHE_MAXSIZE,
        "lyrics_cache_ttl": Config.LYRICS_CACHE_TTL_SECONDS,
        "library_size_limit": Config.LIBRARY_SIZE_LIMIT_BYTES,
        "storage_window_days": Config.STORAGE_WINDOW_DAYS,
        "progress_queue_maxsize": Config.PROGRESS_QUEUE_MAXSIZE,
    }
    if overrides:
        data.update(overrides)
    return PipelineSettings.model_validate(data)


__all__ = ["PipelineSettings", "load_pipeline_settings"]
