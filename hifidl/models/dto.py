#!/usr/bin/env python
"""
Pydantic DTOs for catalog metadata and pipeline results.

Catalog providers normalize their payloads into AlbumInfo/TrackInfo so the
rest of the pipeline never sees provider-specific shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TrackInfo(BaseModel):
    """One track's catalog metadata, immutable for a job run."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    version: Optional[str] = None
    track_number: int = Field(default=1, ge=0)
    disc_number: int = Field(default=1, ge=0)
    duration: int = Field(default=0, ge=0)
    isrc: Optional[str] = None
    streamable: bool = True
    performer: Optional[str] = None
    copyright: Optional[str] = None

    @property
    def display_title(self) -> str:
        """Title with the optional version suffix, e.g. ``Song (Live)``."""
        if self.version:
            return f"{self.title} ({self.version})"
        return self.title


class AlbumInfo(BaseModel):
    """Album-level metadata plus the ordered track list."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    artist: Optional[str] = None
    genre: Optional[str] = None
    label: Optional[str] = None
    release_date: Optional[str] = None
    tracks_count: int = 0
    disc_count: int = 1
    upc: Optional[str] = None
    copyright: Optional[str] = None
    cover_large: Optional[str] = None
    cover_small: Optional[str] = None
    tracks: List[TrackInfo] = Field(default_factory=list)

    @property
    def year(self) -> str:
        if self.release_date and len(self.release_date) >= 4 and self.release_date[:4].isdigit():
            return self.release_date[:4]
        return ""

    @property
    def cover_url(self) -> Optional[str]:
        return self.cover_large or self.cover_small or None


class MediaUrl(BaseModel):
    """Short-lived signed media location returned by a catalog provider."""

    url: str
    mime_type: str = "audio/flac"


class LyricsResult(BaseModel):
    lyrics: str
    synced: bool = False
    source: str = "unknown"


@dataclass
class TrackOutput:
    """Files produced for one track: primary audio first, optional sidecar after."""

    track_id: int
    paths: List[str] = field(default_factory=list)


__all__ = ["TrackInfo", "AlbumInfo", "MediaUrl", "LyricsResult", "TrackOutput"]
