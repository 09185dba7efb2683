"""Typed models shared across the pipeline."""

from .dto import AlbumInfo, LyricsResult, MediaUrl, TrackInfo, TrackOutput
from .job import GUEST_PREFIX, Job, JobStatus, JobType, LyricsMode, TERMINAL_STATUSES

__all__ = [
    "AlbumInfo",
    "LyricsResult",
    "MediaUrl",
    "TrackInfo",
    "TrackOutput",
    "GUEST_PREFIX",
    "Job",
    "JobStatus",
    "JobType",
    "LyricsMode",
    "TERMINAL_STATUSES",
]
