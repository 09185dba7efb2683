#!/usr/bin/env python
"""
Tag embedding and transcoding via the external ``ffmpeg`` tool.

Container quirks live in CONTAINER_STRATEGIES rather than in branches: a
container either takes cover art in the same pass as the audio, needs a
second remux pass for it, or takes none at all; and it either accepts
lyrics through the tag writer or falls back to a sidecar file.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import requests
from mutagen.flac import FLAC
from mutagen.id3 import ID3, USLT, ID3NoHeaderError
from mutagen.oggopus import OggOpus

from hifidl.domain.errors import TranscodeError
from hifidl.models.dto import AlbumInfo, TrackInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodecSpec:
    name: str
    codec: str
    extension: str
    content_type: str
    lossy: bool = False


CODECS: Dict[str, CodecSpec] = {
    "FLAC": CodecSpec("FLAC", "flac", "flac", "audio/flac"),
    "WAV": CodecSpec("WAV", "pcm_s16le", "wav", "audio/wav"),
    "ALAC": CodecSpec("ALAC", "alac", "m4a", "audio/mp4"),
    "MP3": CodecSpec("MP3", "libmp3lame", "mp3", "audio/mpeg", lossy=True),
    "AAC": CodecSpec("AAC", "aac", "m4a", "audio/mp4", lossy=True),
    "OPUS": CodecSpec("OPUS", "libopus", "opus", "audio/opus", lossy=True),
}

# Targets that may be produced by re-muxing a same-codec source
COPYABLE_CODECS = frozenset({"FLAC", "MP3"})


def codec_spec(name: Optional[str]) -> CodecSpec:
    return CODECS.get((name or "FLAC").upper(), CODECS["FLAC"])


class CoverMode(str, Enum):
    SINGLE_PASS = "single_pass"
    TWO_PASS = "two_pass"
    NONE = "none"


@dataclass(frozen=True)
class ContainerStrategy:
    cover: CoverMode
    lyrics_via_tags: bool


CONTAINER_STRATEGIES: Dict[str, ContainerStrategy] = {
    "flac": ContainerStrategy(CoverMode.SINGLE_PASS, lyrics_via_tags=True),
    "mp3": ContainerStrategy(CoverMode.SINGLE_PASS, lyrics_via_tags=True),
    "opus": ContainerStrategy(CoverMode.SINGLE_PASS, lyrics_via_tags=True),
    # Cover in the same pass as an m4a transcode corrupts the stream
    "m4a": ContainerStrategy(CoverMode.TWO_PASS, lyrics_via_tags=False),
    "wav": ContainerStrategy(CoverMode.NONE, lyrics_via_tags=False),
}


def strategy_for(extension: str) -> ContainerStrategy:
    return CONTAINER_STRATEGIES.get(extension.lower(), ContainerStrategy(CoverMode.NONE, lyrics_via_tags=False))


def needs_reencode(source_codec: str, target: CodecSpec) -> bool:
    return not (source_codec.upper() == target.name and target.name in COPYABLE_CODECS)


# --- FFMETADATA ---
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def escape_metadata_value(value: object) -> str:
    text = _CONTROL_CHARS.sub("", str(value))
    return (
        text.replace("\\", "\\\\")
        .replace("=", "\\=")
        .replace(";", "\\;")
        .replace("#", "\\#")
        .replace("\n", "\\n")
    )


def build_ffmetadata(track: TrackInfo, album: AlbumInfo) -> str:
    """Render the ``;FFMETADATA1`` document carried into the output in the same pass."""
    e = escape_metadata_value
    lines = [";FFMETADATA1"]
    lines.append(f"title={e(track.display_title)}")
    lines.append(f"artist={e(track.performer or album.artist or 'Unknown')}")
    lines.append(f"album_artist={e(album.artist or 'Unknown')}")
    lines.append(f"album={e(album.title or 'Unknown')}")
    if album.genre:
        lines.append(f"genre={e(album.genre)}")
    if album.release_date:
        lines.append(f"date={e(album.release_date)}")
        if album.year:
            lines.append(f"year={album.year}")
    if track.track_number:
        total = f"/{album.tracks_count}" if album.tracks_count else ""
        lines.append(f"track={track.track_number}{total}")
    if track.disc_number:
        total = f"/{album.disc_count}" if album.disc_count else ""
        lines.append(f"disc={track.disc_number}{total}")
    if album.label:
        lines.append(f"publisher={e(album.label)}")
    copyright_text = track.copyright or album.copyright
    if copyright_text:
        lines.append(f"copyright={e(copyright_text)}")
    if track.isrc:
        lines.append(f"isrc={e(track.isrc)}")
    if album.upc:
        lines.append(f"barcode={e(album.upc)}")
    return "\n".join(lines) + "\n"


# --- command builders ---
def _base(ffmpeg: str) -> List[str]:
    return [ffmpeg, "-y", "-hide_banner", "-loglevel", "error"]


def transcode_command(
    ffmpeg: str,
    input_path: str,
    metadata_path: str,
    output_path: str,
    target: CodecSpec,
    *,
    bitrate: Optional[int] = None,
    cover_path: Optional[str] = None,
) -> List[str]:
    cmd = _base(ffmpeg) + ["-i", input_path, "-i", metadata_path]
    if cover_path:
        cmd += ["-i", cover_path]
    cmd += ["-map", "0:a", "-map_metadata", "1", "-c:a", target.codec]
    if target.lossy:
        cmd += ["-b:a", f"{bitrate}k"]
    if cover_path:
        cmd += ["-map", "2:v", "-disposition:v:0", "attached_pic"]
    cmd.append(output_path)
    return cmd


def cover_remux_command(ffmpeg: str, audio_path: str, cover_path: str, output_path: str) -> List[str]:
    return _base(ffmpeg) + [
        "-i", audio_path,
        "-i", cover_path,
        "-map", "0:a",
        "-map", "1:v",
        "-c:a", "copy",
        "-c:v", "mjpeg",
        "-disposition:v:0", "attached_pic",
        output_path,
    ]


def copy_command(
    ffmpeg: str,
    input_path: str,
    metadata_path: str,
    output_path: str,
    *,
    cover_path: Optional[str] = None,
) -> List[str]:
    cmd = _base(ffmpeg) + ["-i", input_path, "-i", metadata_path]
    if cover_path:
        cmd += ["-i", cover_path]
    cmd += ["-map_metadata", "1", "-codec", "copy"]
    if cover_path:
        cmd += ["-map", "0:a", "-map", "2:v", "-disposition:v:0", "attached_pic"]
    cmd.append(output_path)
    return cmd


CommandRunner = Callable[[Sequence[str], float], None]


def run_ffmpeg(args: Sequence[str], timeout: float) -> None:
    """Run the codec tool; any failure is raised as TranscodeError."""
    try:
        subprocess.run(list(args), capture_output=True, text=True, check=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise TranscodeError(f"ffmpeg timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise TranscodeError(stderr.splitlines()[-1] if stderr else f"ffmpeg exited with {exc.returncode}") from exc
    except OSError as exc:
        raise TranscodeError(f"ffmpeg could not be started: {exc}") from exc


# --- lyrics tag writer ---
def write_lyrics_tag(path: str, lyrics: str) -> bool:
    """Embed lyrics with literal line breaks; returns False when the container is unsupported."""
    extension = os.path.splitext(path)[1].lower().lstrip(".")
    if extension == "flac":
        audio = FLAC(path)
        audio["LYRICS"] = lyrics
        audio.save()
        return True
    if extension == "opus":
        audio = OggOpus(path)
        audio["LYRICS"] = lyrics
        audio.save()
        return True
    if extension == "mp3":
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            tags = ID3()
        tags.delall("USLT")
        tags.add(USLT(encoding=3, lang="eng", desc="", text=lyrics))
        tags.save(path)
        return True
    return False


def upgrade_cover_url(url: str) -> str:
    """Ask the CDN for the largest rendition (``_600.jpg`` -> ``_max.jpg``)."""
    return re.sub(r"_\d+\.jpg$", "_max.jpg", url)


@dataclass
class EmbedResult:
    path: str
    lyrics_embedded: bool = False


class TagEmbedder:
    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        default_bitrate: int = 320,
        transcode_timeout: float = 600,
        cover_timeout: float = 15,
        runner: Optional[CommandRunner] = None,
        lyrics_writer: Callable[[str, str], bool] = write_lyrics_tag,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.default_bitrate = default_bitrate
        self.transcode_timeout = transcode_timeout
        self.cover_timeout = cover_timeout
        self._run = runner or run_ffmpeg
        self._write_lyrics = lyrics_writer
        self._session = session or requests.Session()

    def download_cover(self, url: Optional[str], output_dir: str, filename: str = "cover.jpg") -> Optional[str]:
        """Fetch album art once per job; a failure only costs the artwork."""
        if not url:
            logger.info("No cover URL provided, skipping cover art download.")
            return None
        local_path = os.path.join(output_dir, filename)
        target = upgrade_cover_url(url)
        try:
            with self._session.get(target, stream=True, timeout=self.cover_timeout) as response:
                response.raise_for_status()
                with open(local_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=8192):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.RequestException as e:
            logger.warning("Cover download failed from %s: %s", target, e)
            return None
        except OSError as e:
            logger.warning("Failed to save cover art to %s: %s", local_path, e)
            return None
        if os.path.getsize(local_path) == 0:
            os.remove(local_path)
            return None
        return local_path

    def embed(
        self,
        raw_path: str,
        output_path: str,
        track: TrackInfo,
        album: AlbumInfo,
        target: CodecSpec,
        *,
        source_codec: str,
        bitrate: Optional[int] = None,
        cover_path: Optional[str] = None,
        lyrics: Optional[str] = None,
    ) -> EmbedResult:
        """Produce ``output_path`` from ``raw_path``; raises TranscodeError if the codec tool fails."""
        strategy = strategy_for(target.extension)
        if cover_path and not os.path.exists(cover_path):
            cover_path = None

        work_dir = os.path.join(os.path.dirname(output_path), f"meta_{track.id}")
        os.makedirs(work_dir, exist_ok=True)
        try:
            metadata_path = os.path.join(work_dir, "metadata.txt")
            with open(metadata_path, "w", encoding="utf-8") as f:
                f.write(build_ffmetadata(track, album))

            if needs_reencode(source_codec, target):
                self._transcode(raw_path, metadata_path, output_path, target, strategy, bitrate, cover_path, work_dir, track)
            else:
                single_cover = cover_path if strategy.cover is not CoverMode.NONE else None
                self._run(
                    copy_command(self.ffmpeg_binary, raw_path, metadata_path, output_path, cover_path=single_cover),
                    self.transcode_timeout,
                )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise TranscodeError(f"ffmpeg produced no output for track {track.id}")

        embedded = False
        if lyrics and strategy.lyrics_via_tags:
            try:
                embedded = bool(self._write_lyrics(output_path, lyrics))
            except Exception as e:
                logger.warning("Lyrics tag writing failed for track %s: %s", track.id, e)
        elif lyrics:
            logger.info("Skipping lyrics tag for .%s container, sidecar will be used", target.extension)
        return EmbedResult(path=output_path, lyrics_embedded=embedded)

    def _transcode(
        self,
        raw_path: str,
        metadata_path: str,
        output_path: str,
        target: CodecSpec,
        strategy: ContainerStrategy,
        bitrate: Optional[int],
        cover_path: Optional[str],
        work_dir: str,
        track: TrackInfo,
    ) -> None:
        rate = bitrate or self.default_bitrate
        if strategy.cover is CoverMode.SINGLE_PASS:
            self._run(
                transcode_command(
                    self.ffmpeg_binary, raw_path, metadata_path, output_path, target, bitrate=rate, cover_path=cover_path
                ),
                self.transcode_timeout,
            )
            return
        if strategy.cover is CoverMode.NONE:
            self._run(
                transcode_command(self.ffmpeg_binary, raw_path, metadata_path, output_path, target, bitrate=rate),
                self.transcode_timeout,
            )
            return

        # Two-pass: audio-only transcode, then remux the cover into the final container
        intermediate = os.path.join(work_dir, f"intermediate.{target.extension}")
        self._run(
            transcode_command(self.ffmpeg_binary, raw_path, metadata_path, intermediate, target, bitrate=rate),
            self.transcode_timeout,
        )
        if not cover_path:
            shutil.move(intermediate, output_path)
            return
        try:
            self._run(
                cover_remux_command(self.ffmpeg_binary, intermediate, cover_path, output_path),
                self.transcode_timeout,
            )
        except TranscodeError as e:
            logger.warning("Cover art embedding failed for track %s, keeping it without cover: %s", track.id, e)
            shutil.copyfile(intermediate, output_path)


__all__ = [
    "CODECS",
    "CONTAINER_STRATEGIES",
    "CodecSpec",
    "CommandRunner",
    "ContainerStrategy",
    "CoverMode",
    "EmbedResult",
    "TagEmbedder",
    "build_ffmetadata",
    "codec_spec",
    "copy_command",
    "cover_remux_command",
    "escape_metadata_value",
    "needs_reencode",
    "run_ffmpeg",
    "strategy_for",
    "transcode_command",
    "upgrade_cover_url",
    "write_lyrics_tag",
]
