"""Exception hierarchy for the download pipeline."""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by pipeline components."""


class CatalogError(PipelineError):
    """Catalog metadata or media resolution failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TrackUnavailableError(CatalogError):
    """Track is delisted or not licensed in the region (HTTP 403/404). Never retried."""


class TransientDownloadError(PipelineError):
    """Timeout, 5xx, connection reset or an empty file. Retried with backoff."""


class TranscodeError(PipelineError):
    """The codec tool exited with a failure."""


class NoTracksError(PipelineError):
    """Metadata contains no streamable track matching the job target."""


class NoOutputError(PipelineError):
    """Every track of the job failed."""


class ObjectStoreError(PipelineError):
    """Upload or deletion in object storage failed."""


__all__ = [
    "PipelineError",
    "CatalogError",
    "TrackUnavailableError",
    "TransientDownloadError",
    "TranscodeError",
    "NoTracksError",
    "NoOutputError",
    "ObjectStoreError",
]
