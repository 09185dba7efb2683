from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

GUEST_PREFIX = "guest_"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobType(str, Enum):
    ALBUM = "album"
    TRACK = "track"


class LyricsMode(str, Enum):
    EMBED = "embed"
    SIDECAR = "sidecar"
    DISABLED = "disabled"


class Job(BaseModel):
    """Read-only view of a download job as stored in the job store."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=False)

    id: str
    user_id: str
    user_email: Optional[str] = None
    job_type: JobType = JobType.ALBUM

    album_id: str
    track_id: Optional[str] = None
    source: str = "qobuz"
    country: Optional[str] = None

    quality: int = 6
    format: str = "FLAC"
    bitrate: Optional[int] = None
    lyrics_mode: LyricsMode = LyricsMode.EMBED
    track_name_template: Optional[str] = None
    zip_name_template: Optional[str] = None

    album_title: Optional[str] = None
    artist_name: Optional[str] = None
    tracks_count: int = 0

    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    description: Optional[str] = None
    error: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    download_url: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_guest(self) -> bool:
        """Guest jobs are exempt from quota accounting."""
        return not self.user_id or self.user_id.startswith(GUEST_PREFIX)

    @property
    def storage_owner(self) -> str:
        # Quota is tracked per e-mail when known, matching how the library is listed
        return self.user_email or self.user_id


__all__ = [
    "GUEST_PREFIX",
    "Job",
    "JobStatus",
    "JobType",
    "LyricsMode",
    "TERMINAL_STATUSES",
]
