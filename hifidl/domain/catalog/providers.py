#!/usr/bin/env python
"""
Catalog provider capability interface and registry.

A job names its catalog ``source``; the registry hands the pipeline the
matching provider so the rest of the download flow stays provider-agnostic.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, Iterable, Mapping, Optional

from hifidl.domain.errors import CatalogError
from hifidl.models.dto import AlbumInfo, MediaUrl, TrackInfo

logger = logging.getLogger(__name__)

SOURCE_ALIASES = {"primary": "qobuz", "secondary": "tidal"}


class CatalogProvider:
    """Resolve album metadata and signed media URLs for one upstream catalog."""

    name = "base"

    def resolve_album(self, album_id: str, region: Optional[str] = None) -> AlbumInfo:  # pragma: no cover - interface
        raise NotImplementedError

    def resolve_media_url(self, track_id: int, quality: int, region: Optional[str] = None) -> MediaUrl:  # pragma: no cover - interface
        raise NotImplementedError


def is_retryable_status(status: Optional[int]) -> bool:
    """Network errors (no status), 429 and 5xx are worth another attempt."""
    if status is None:
        return True
    return status == 429 or status >= 500


def backoff_delay(attempt: int, base: float = 1.0, jitter: float = 1.0, rng: Optional[random.Random] = None) -> float:
    """Exponential delay in seconds for ``attempt`` (1-based) plus up to ``jitter`` seconds."""
    spread = (rng or random).uniform(0, jitter) if jitter > 0 else 0.0
    return base * (2 ** max(0, attempt - 1)) + spread


def source_codec_for(mime_type: Optional[str]) -> str:
    """Codec the provider streams, judged from the media MIME type."""
    mime = (mime_type or "").lower()
    if "mpeg" in mime or "mp3" in mime:
        return "MP3"
    return "FLAC"


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        name = value.get("name")
        return str(name) if name else None
    if isinstance(value, str) and value:
        return value
    return None


def track_from_payload(item: Mapping[str, Any], *, fallback_performer: Optional[str] = None) -> TrackInfo:
    return TrackInfo(
        id=int(item["id"]),
        title=str(item.get("title") or "Unknown"),
        version=item.get("version") or None,
        track_number=int(item.get("track_number") or 1),
        disc_number=int(item.get("media_number") or 1),
        duration=int(item.get("duration") or 0),
        isrc=item.get("isrc") or None,
        streamable=item.get("streamable") is not False,
        performer=_name_of(item.get("performer")) or fallback_performer,
        copyright=item.get("copyright") or None,
    )


def album_from_payload(payload: Mapping[str, Any]) -> AlbumInfo:
    """Normalize an ``album/get`` style payload into AlbumInfo."""
    if not payload or not payload.get("id"):
        raise CatalogError("Invalid album data received")
    artist = _name_of(payload.get("artist"))
    image = payload.get("image") or {}
    items: Iterable[Mapping[str, Any]] = (payload.get("tracks") or {}).get("items") or []
    tracks = [track_from_payload(item, fallback_performer=artist) for item in items]
    return AlbumInfo(
        id=str(payload["id"]),
        title=str(payload.get("title") or "Unknown Album"),
        artist=artist,
        genre=_name_of(payload.get("genre")),
        label=_name_of(payload.get("label")),
        release_date=payload.get("release_date_original") or None,
        tracks_count=int(payload.get("tracks_count") or len(tracks)),
        disc_count=int(payload.get("media_count") or 1),
        upc=payload.get("upc") or None,
        copyright=payload.get("copyright") or None,
        cover_large=image.get("large") or None,
        cover_small=image.get("small") or None,
        tracks=tracks,
    )


class CatalogRegistry:
    def __init__(self, providers: Optional[Iterable[CatalogProvider]] = None, *, default: str = "qobuz") -> None:
        self._providers: Dict[str, CatalogProvider] = {}
        self.default = default
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: CatalogProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, source: Optional[str]) -> CatalogProvider:
        key = (source or self.default).strip().lower()
        key = SOURCE_ALIASES.get(key, key)
        provider = self._providers.get(key)
        if provider is None:
            raise CatalogError(f"Unsupported catalog source: {source}")
        return provider

    def names(self) -> list:
        return sorted(self._providers)


__all__ = [
    "CatalogProvider",
    "CatalogRegistry",
    "SOURCE_ALIASES",
    "album_from_payload",
    "track_from_payload",
    "backoff_delay",
    "is_retryable_status",
    "source_codec_for",
]
