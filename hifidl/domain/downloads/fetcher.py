#!/usr/bin/env python
"""
Track fetcher: signed media URL resolution plus streamed download to scratch.

The fetch-and-download unit is retried as a whole. Permanent failures
(TrackUnavailableError, i.e. HTTP 403/404) escape on the first attempt;
everything else is treated as transient and retried with exponential backoff.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional, Tuple

import requests

from hifidl.domain.catalog.providers import CatalogProvider
from hifidl.domain.errors import CatalogError, TrackUnavailableError, TransientDownloadError
from hifidl.models.dto import MediaUrl
from hifidl.observability.metrics import record_track_attempt

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def _remove_quietly(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("Could not remove partial file %s: %s", path, e)


class TrackFetcher:
    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 2.0,
        timeout: int = 300,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep

    def retry_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    def download(self, url: str, dest_path: str) -> int:
        """Stream ``url`` into ``dest_path``; returns bytes written."""
        try:
            with self._session.get(url, stream=True, timeout=self.timeout) as response:
                status = response.status_code
                if status in (403, 404):
                    raise TrackUnavailableError(f"Media download returned HTTP {status}", status_code=status)
                if status >= 400:
                    raise TransientDownloadError(f"Media download returned HTTP {status}")
                written = 0
                with open(dest_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        except requests.exceptions.Timeout as e:
            raise TransientDownloadError(f"Timed out downloading media: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransientDownloadError(f"Network error downloading media: {e}") from e
        return written

    def fetch(
        self,
        provider: CatalogProvider,
        track_id: int,
        quality: int,
        region: Optional[str],
        dest_path: str,
    ) -> Tuple[str, MediaUrl]:
        """Resolve and download one track, retrying transient failures.

        Returns the local path and the media descriptor of the successful attempt.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            # Never let a previous attempt's bytes survive into this one
            _remove_quietly(dest_path)
            record_track_attempt()
            try:
                media = provider.resolve_media_url(track_id, quality, region)
                self.download(media.url, dest_path)
                if not os.path.exists(dest_path) or os.path.getsize(dest_path) == 0:
                    raise TransientDownloadError("Downloaded file is empty")
                return dest_path, media
            except TrackUnavailableError:
                _remove_quietly(dest_path)
                raise
            except (TransientDownloadError, CatalogError, OSError) as e:
                last_error = e
                _remove_quietly(dest_path)
                logger.warning(
                    "Track %s attempt %d/%d failed: %s", track_id, attempt, self.max_retries, e
                )
            if attempt < self.max_retries:
                self._sleep(self.retry_delay(attempt))

        raise TransientDownloadError(
            f"Track {track_id} failed after {self.max_retries} attempts: {last_error}"
        )


__all__ = ["TrackFetcher"]
