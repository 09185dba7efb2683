#!/usr/bin/env python
"""
Per-track pipeline: fetch, lyrics, tag/transcode, sidecar.

One TrackPipeline serves every provider; the provider is carried in the
JobRun so nothing here branches on where the audio comes from.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Optional, Set

from hifidl.domain.catalog.lyrics_service import LyricsResolver
from hifidl.domain.catalog.providers import CatalogProvider, source_codec_for
from hifidl.domain.errors import TranscodeError
from hifidl.models.dto import AlbumInfo, LyricsResult, TrackInfo, TrackOutput
from hifidl.models.job import Job, LyricsMode
from hifidl.utils.naming import apply_track_template

from .fetcher import TrackFetcher
from .tagging import CodecSpec, EmbedResult, TagEmbedder, codec_spec, needs_reencode

logger = logging.getLogger(__name__)


@dataclass
class JobRun:
    """Everything a track worker needs to know about the job it belongs to."""

    job: Job
    album: AlbumInfo
    provider: CatalogProvider
    scratch_dir: str
    target: CodecSpec
    track_name_template: str
    cover_path: Optional[str] = None
    _names: Set[str] = field(default_factory=set, repr=False)
    _names_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def reserve_name(self, base_name: str) -> str:
        """Claim a unique base name inside the scratch dir (``Name``, ``Name (2)``, ...)."""
        with self._names_lock:
            candidate = base_name
            n = 2
            while candidate.lower() in self._names:
                candidate = f"{base_name} ({n})"
                n += 1
            self._names.add(candidate.lower())
            return candidate


def lyrics_lookup(resolver: Optional[LyricsResolver], track: TrackInfo, album: AlbumInfo) -> Optional[LyricsResult]:
    if resolver is None:
        return None
    return resolver.resolve(
        track.title,
        track.performer or album.artist or "Unknown",
        album.title or "Unknown",
        track.duration or None,
    )


def _remove_quietly(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


class TrackPipeline:
    def __init__(self, fetcher: TrackFetcher, embedder: TagEmbedder, lyrics: Optional[LyricsResolver] = None) -> None:
        self.fetcher = fetcher
        self.embedder = embedder
        self.lyrics = lyrics

    def output_name(self, run: JobRun, track: TrackInfo) -> str:
        """Render and reserve the base file name of ``track`` within the run."""
        return run.reserve_name(
            apply_track_template(
                run.track_name_template,
                track,
                run.album,
                fallback_artist=run.job.artist_name,
                fallback_album=run.job.album_title,
            )
        )

    def process(self, run: JobRun, track: TrackInfo, base_name: str) -> TrackOutput:
        """Produce the output files for one track under ``base_name``.

        Raises TrackUnavailableError or TransientDownloadError when the audio
        itself cannot be obtained; every later failure degrades instead.
        """
        job = run.job
        raw_path = os.path.join(run.scratch_dir, f"raw_{track.id}.download")

        _, media = self.fetcher.fetch(run.provider, track.id, job.quality, job.country, raw_path)
        source = codec_spec(source_codec_for(media.mime_type))

        lyrics: Optional[LyricsResult] = None
        if job.lyrics_mode is not LyricsMode.DISABLED:
            try:
                lyrics = lyrics_lookup(self.lyrics, track, run.album)
            except Exception as e:
                logger.warning("[%s] Lyrics lookup failed for track %s: %s", job.id, track.id, e)

        output_path = os.path.join(run.scratch_dir, f"{base_name}.{run.target.extension}")
        embed_lyrics = lyrics.lyrics if lyrics and job.lyrics_mode is LyricsMode.EMBED else None
        try:
            result = self.embedder.embed(
                raw_path,
                output_path,
                track,
                run.album,
                run.target,
                source_codec=source.name,
                bitrate=job.bitrate,
                cover_path=run.cover_path,
                lyrics=embed_lyrics,
            )
            _remove_quietly(raw_path)
        except (TranscodeError, OSError) as e:
            logger.warning("[%s] Metadata embedding failed for track %s, keeping raw file: %s", job.id, track.id, e)
            _remove_quietly(output_path)
            if needs_reencode(source.name, run.target):
                fallback = os.path.join(run.scratch_dir, f"{base_name}.{source.extension}")
            else:
                fallback = output_path
            os.replace(raw_path, fallback)
            result = EmbedResult(path=fallback, lyrics_embedded=False)

        paths = [result.path]
        wants_sidecar = job.lyrics_mode is LyricsMode.SIDECAR or (
            job.lyrics_mode is LyricsMode.EMBED and not result.lyrics_embedded
        )
        if lyrics and wants_sidecar:
            sidecar = os.path.splitext(result.path)[0] + ".lrc"
            try:
                with open(sidecar, "w", encoding="utf-8") as f:
                    f.write(lyrics.lyrics)
                paths.append(sidecar)
            except OSError as e:
                logger.warning("[%s] Could not write lyrics sidecar for track %s: %s", job.id, track.id, e)

        return TrackOutput(track_id=track.id, paths=paths)


__all__ = ["JobRun", "TrackPipeline", "lyrics_lookup"]
