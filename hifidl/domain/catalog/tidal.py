"""Tidal catalog client normalized to the same AlbumInfo/MediaUrl shapes as Qobuz."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Dict, Optional, Type

import requests

from hifidl.domain.errors import CatalogError, TrackUnavailableError
from hifidl.models.dto import AlbumInfo, MediaUrl, TrackInfo

from .providers import CatalogProvider, backoff_delay, is_retryable_status

logger = logging.getLogger(__name__)

TIDAL_API_BASE = "https://api.tidal.com/v1"
TIDAL_IMAGE_BASE = "https://resources.tidal.com/images"


def tidal_quality(quality: int) -> str:
    """Map the numeric quality used by jobs onto Tidal's soundQuality names."""
    if quality <= 5:
        return "LOW"
    if quality <= 6:
        return "HIGH"
    if quality >= 27:
        return "HI_RES_LOSSLESS"
    return "LOSSLESS"


def cover_url(cover_id: Optional[str], size: int) -> Optional[str]:
    if not cover_id:
        return None
    return f"{TIDAL_IMAGE_BASE}/{cover_id.replace('-', '/')}/{size}x{size}.jpg"


class TidalCatalog(CatalogProvider):
    name = "tidal"

    def __init__(
        self,
        *,
        auth_token: str,
        country_code: str = "US",
        timeout: int = 15,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.auth_token = auth_token
        self.country_code = country_code or "US"
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._session = session or requests.Session()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _get_json(
        self,
        path: str,
        params: Dict[str, Any],
        *,
        context: str,
        not_found: Type[CatalogError],
    ) -> Dict[str, Any]:
        url = f"{TIDAL_API_BASE}/{path}"
        headers = {"X-Tidal-Token": self.auth_token, "Content-Type": "application/json"}
        for attempt in range(1, self.max_retries + 1):
            status: Optional[int] = None
            try:
                resp = self._session.get(url, params=params, headers=headers, timeout=self.timeout)
                status = resp.status_code
                if status < 400:
                    return resp.json()
                reason = f"HTTP {status}"
            except requests.RequestException as e:
                reason = f"network error - {e}"

            logger.warning("[Tidal %s] Attempt %d/%d failed: %s", context, attempt, self.max_retries, reason)
            if status in (403, 404):
                raise not_found(f"{context} failed: {reason}", status_code=status)
            if not is_retryable_status(status) or attempt >= self.max_retries:
                raise CatalogError(f"{context} failed after {attempt} attempts: {reason}", status_code=status)
            self._sleep(backoff_delay(attempt, base=1.0, rng=self._rng))
        raise CatalogError(f"{context} failed after {self.max_retries} attempts")  # pragma: no cover

    def resolve_album(self, album_id: str, region: Optional[str] = None) -> AlbumInfo:
        country = region or self.country_code
        context = f"getAlbumInfo({album_id})"
        album = self._get_json(
            f"albums/{album_id}", {"countryCode": country}, context=context, not_found=CatalogError
        )
        listing = self._get_json(
            f"albums/{album_id}/tracks",
            {"countryCode": country, "limit": 100, "offset": 0},
            context=context,
            not_found=CatalogError,
        )
        if not album or not album.get("id"):
            raise CatalogError(f"Invalid album data received for album {album_id}")

        album_artist = (album.get("artist") or {}).get("name") or None
        tracks = [
            TrackInfo(
                id=int(item["id"]),
                title=item.get("title") or "Unknown",
                version=item.get("version") or None,
                track_number=int(item.get("trackNumber") or 1),
                disc_number=int(item.get("volumeNumber") or 1),
                duration=int(item.get("duration") or 0),
                isrc=item.get("isrc") or None,
                streamable=item.get("streamReady") is not False,
                performer=(item.get("artist") or {}).get("name") or album_artist,
                copyright=item.get("copyright") or album.get("copyright") or None,
            )
            for item in (listing.get("items") or [])
        ]
        return AlbumInfo(
            id=str(album["id"]),
            title=album.get("title") or "Unknown Album",
            artist=album_artist,
            release_date=album.get("releaseDate") or None,
            tracks_count=int(album.get("numberOfTracks") or len(tracks)),
            disc_count=int(album.get("numberOfVolumes") or 1),
            upc=album.get("upc") or None,
            copyright=album.get("copyright") or None,
            cover_large=cover_url(album.get("cover"), 1280),
            cover_small=cover_url(album.get("cover"), 320),
            tracks=tracks,
        )

    def resolve_media_url(self, track_id: int, quality: int, region: Optional[str] = None) -> MediaUrl:
        payload = self._get_json(
            f"tracks/{track_id}/streamUrl",
            {"soundQuality": tidal_quality(quality), "countryCode": region or self.country_code},
            context=f"getTrackFileUrl({track_id})",
            not_found=TrackUnavailableError,
        )
        url = payload.get("url") if isinstance(payload, dict) else None
        if not url:
            raise CatalogError(f"No stream URL received for track {track_id}")
        return MediaUrl(url=url, mime_type=payload.get("mimeType") or "audio/flac")


__all__ = ["TIDAL_API_BASE", "TidalCatalog", "cover_url", "tidal_quality"]
