"""
Filename templating for tracks and archives.

Templates use case-insensitive ``{placeholder}`` tokens. Unknown placeholders
are left verbatim and the rendered name is sanitized for every common
filesystem.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

from hifidl.models.dto import AlbumInfo, TrackInfo

_PLACEHOLDER = re.compile(r"\{([A-Za-z_]+)\}")
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*]')
_TRAILING_JUNK = re.compile(r"[.\s]+$")

FALLBACK_NAME = "Unknown"


def sanitize_filename(name: str) -> str:
    """Replace filesystem-illegal characters with ``_`` and trim trailing dots/whitespace."""
    cleaned = _ILLEGAL_CHARS.sub("_", name or "")
    cleaned = _TRAILING_JUNK.sub("", cleaned).strip()
    return cleaned


def render_template(template: str, values: Dict[str, str]) -> str:
    """Substitute known placeholders (case-insensitively); keep unknown ones as written."""

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1).lower()
        if key in values:
            return values[key]
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, template)


def track_template_values(
    track: TrackInfo,
    album: AlbumInfo,
    *,
    fallback_artist: Optional[str] = None,
    fallback_album: Optional[str] = None,
) -> Dict[str, str]:
    artist = track.performer or album.artist or fallback_artist or FALLBACK_NAME
    return {
        "artist": artist,
        "artists": artist,
        "name": track.display_title,
        "album": album.title or fallback_album or "Unknown Album",
        "year": album.year,
        "track": str(track.track_number or 1).zfill(2),
        "disc": str(track.disc_number or 1).zfill(2),
        "genre": album.genre or "",
        "version": track.version or "",
    }


def album_template_values(album: AlbumInfo, *, fallback_artist: Optional[str] = None) -> Dict[str, str]:
    artist = album.artist or fallback_artist or FALLBACK_NAME
    title = album.title or "Unknown Album"
    return {
        "artist": artist,
        "artists": artist,
        "name": title,
        "album": title,
        "year": album.year,
        "genre": album.genre or "",
    }


def apply_track_template(template: str, track: TrackInfo, album: AlbumInfo, **fallbacks: Optional[str]) -> str:
    """Render a track base name (no extension), e.g. ``01 - Song (Live)``."""
    rendered = render_template(template, track_template_values(track, album, **fallbacks))
    return sanitize_filename(rendered) or FALLBACK_NAME


def apply_archive_template(template: str, album: AlbumInfo, *, fallback_artist: Optional[str] = None) -> str:
    """Render the archive folder name (no ``.zip``) from album-level fields."""
    rendered = render_template(template, album_template_values(album, fallback_artist=fallback_artist))
    return sanitize_filename(rendered) or FALLBACK_NAME


__all__ = [
    "FALLBACK_NAME",
    "sanitize_filename",
    "render_template",
    "track_template_values",
    "album_template_values",
    "apply_track_template",
    "apply_archive_template",
]
