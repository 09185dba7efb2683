"""Qobuz catalog client: album lookup and signed stream URLs with token rotation."""

from __future__ import annotations

import hashlib
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

import requests

from hifidl.domain.errors import CatalogError, TrackUnavailableError
from hifidl.models.dto import AlbumInfo, MediaUrl
from hifidl.utils.cache import TTLCache

from .providers import CatalogProvider, album_from_payload, backoff_delay, is_retryable_status

logger = logging.getLogger(__name__)

QOBUZ_API_BASE = "https://www.qobuz.com/api.json/0.2"


def request_signature(track_id: Any, quality: int, timestamp: int, secret: str) -> str:
    data = f"trackgetFileUrlformat_id{quality}intentstreamtrack_id{track_id}{timestamp}{secret}"
    return hashlib.md5(data.encode("utf-8")).hexdigest()


class QobuzCatalog(CatalogProvider):
    name = "qobuz"

    def __init__(
        self,
        *,
        app_id: str,
        secret: str,
        auth_tokens: Sequence[str],
        failed_tokens: TTLCache,
        timeout: int = 10,
        max_retries: int = 5,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.app_id = app_id
        self.secret = secret
        self.auth_tokens: List[str] = [t for t in auth_tokens if t]
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._failed_tokens = failed_tokens
        self._session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    # --- token rotation ---
    def _available_tokens(self) -> List[str]:
        return [t for t in self.auth_tokens if t not in self._failed_tokens]

    def _pick_token(self) -> str:
        if not self.auth_tokens:
            raise CatalogError("No Qobuz auth tokens configured")
        available = self._available_tokens()
        if not available:
            # Every token is parked; give them all another chance
            for token in self.auth_tokens:
                self._failed_tokens.discard(token)
            available = list(self.auth_tokens)
        return self._rng.choice(available)

    def _mark_failed(self, token: str) -> None:
        self._failed_tokens.set(token, True)
        logger.warning(
            "Marked Qobuz token as failed. %d of %d tokens parked.",
            len(self.auth_tokens) - len(self._available_tokens()),
            len(self.auth_tokens),
        )

    def _headers(self, token: str, region: Optional[str]) -> Dict[str, str]:
        headers = {"X-User-Auth-Token": token}
        if region:
            headers["X-App-Country"] = region
        return headers

    def _get_json(
        self,
        path: str,
        params_factory: Callable[[], Dict[str, Any]],
        *,
        context: str,
        region: Optional[str],
        not_found: Type[CatalogError],
    ) -> Dict[str, Any]:
        url = f"{QOBUZ_API_BASE}/{path}"
        attempt = 1
        while True:
            token = self._pick_token()
            status: Optional[int] = None
            try:
                resp = self._session.get(
                    url, params=params_factory(), headers=self._headers(token, region), timeout=self.timeout
                )
                status = resp.status_code
                if status < 400:
                    return resp.json()
                reason = f"HTTP {status}"
            except requests.RequestException as e:
                reason = f"network error - {e}"
            except ValueError as e:
                raise CatalogError(f"{context} returned invalid JSON: {e}") from e

            logger.warning("[%s] Attempt %d/%d failed: %s", context, attempt, self.max_retries, reason)

            if status in (401, 403):
                self._mark_failed(token)
                if self._available_tokens():
                    continue
                raise not_found(f"{context} failed: {reason}", status_code=status)
            if status == 404:
                raise not_found(f"{context} failed: {reason}", status_code=status)
            if not is_retryable_status(status) or attempt >= self.max_retries:
                raise CatalogError(f"{context} failed after {attempt} attempts: {reason}", status_code=status)

            delay = backoff_delay(attempt, base=1.0, rng=self._rng)
            logger.info("[%s] Retrying in %.1fs", context, delay)
            self._sleep(delay)
            attempt += 1

    def resolve_album(self, album_id: str, region: Optional[str] = None) -> AlbumInfo:
        payload = self._get_json(
            "album/get",
            lambda: {"album_id": album_id, "app_id": self.app_id},
            context=f"getAlbumInfo({album_id})",
            region=region,
            not_found=CatalogError,
        )
        return album_from_payload(payload)

    def resolve_media_url(self, track_id: int, quality: int, region: Optional[str] = None) -> MediaUrl:
        def _params() -> Dict[str, Any]:
            # Signature is bound to the request time, so it is rebuilt per attempt
            ts = int(self._clock())
            return {
                "track_id": track_id,
                "format_id": quality,
                "intent": "stream",
                "request_ts": ts,
                "request_sig": request_signature(track_id, quality, ts, self.secret),
                "app_id": self.app_id,
            }

        payload = self._get_json(
            "track/getFileUrl",
            _params,
            context=f"getTrackFileUrl({track_id})",
            region=region,
            not_found=TrackUnavailableError,
        )
        url = payload.get("url") if isinstance(payload, dict) else None
        if not url:
            raise CatalogError(f"No download URL received for track {track_id}")
        return MediaUrl(url=url, mime_type=payload.get("mime_type") or "audio/flac")


__all__ = ["QOBUZ_API_BASE", "QobuzCatalog", "request_signature"]
