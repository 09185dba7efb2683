"""
Best-effort lyrics lookup across a prioritized provider chain.

The resolver never raises for "not found" or provider failures; callers get
either a LyricsResult or None. Results (including misses) are cached in a
TTLCache handed in by the caller.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import requests

from hifidl.models.dto import LyricsResult
from hifidl.utils.cache import MISSING, TTLCache

logger = logging.getLogger(__name__)

LRCLIB_BASE_URL = "https://lrclib.net/api"
LYRICSPLUS_SERVERS = (
    "https://lyricsplus.prjktla.workers.dev",
    "https://lyrics-plus-backend.vercel.app",
    "https://lyricsplus.onrender.com",
    "https://lyricsplus.prjktla.online",
)
MUSIXMATCH_SOURCE = "musixmatch-word,musixmatch"
FALLBACK_SOURCE = "spotify,apple,lyricsplus"

_CLEANUPS = (
    (re.compile(r"\s*\(feat\..*?\)", re.IGNORECASE), ""),
    (re.compile(r"\s*\[.*?\]"), ""),
    (re.compile(r"\s*-\s*Remaster(ed)?.*$", re.IGNORECASE), ""),
    (re.compile(r"\s*-\s*\d{4}\s*(Remaster)?.*$", re.IGNORECASE), ""),
    (re.compile(r"\s*\(Deluxe.*?\)", re.IGNORECASE), ""),
    (re.compile(r"\s*\(Bonus.*?\)", re.IGNORECASE), ""),
)


def clean_for_search(text: Optional[str]) -> str:
    """Strip featuring credits, bracketed notes and remaster/edition suffixes."""
    cleaned = text or ""
    for pattern, repl in _CLEANUPS:
        cleaned = pattern.sub(repl, cleaned)
    return cleaned.strip()


@dataclass(frozen=True)
class LyricsQuery:
    title: str
    artist: str
    album: Optional[str] = None
    duration: Optional[int] = None

    @property
    def cache_key(self) -> Tuple[str, str, str]:
        return (
            self.artist.lower().strip(),
            self.title.lower().strip(),
            (self.album or "").lower().strip(),
        )


# --- LRC helpers ---
def to_milliseconds(value: Any, fallback: int = 0) -> int:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return fallback
    if not num or num < 0:
        return fallback
    # Small fractional values are seconds, everything else is already ms
    if num < 1000 and not num.is_integer():
        return int(round(num * 1000))
    return max(0, int(round(num)))


def format_lrc_timestamp(ms: int) -> str:
    total_seconds = ms / 1000
    minutes = int(total_seconds // 60)
    seconds = total_seconds - minutes * 60
    return f"{minutes:02d}:{seconds:05.2f}"


def kpoe_lines(payload: Any) -> Tuple[List[Tuple[int, str]], str]:
    """Flatten a LyricsPlus payload into ``(start_ms, text)`` lines plus its source label."""
    if not isinstance(payload, dict):
        return [], "Unknown"
    data = payload.get("data")
    raw = None
    if isinstance(payload.get("lyrics"), list):
        raw = payload["lyrics"]
    elif isinstance(data, dict) and isinstance(data.get("lyrics"), list):
        raw = data["lyrics"]
    elif isinstance(data, list):
        raw = data
    if raw is None:
        return [], "Unknown"

    metadata = payload.get("metadata") or {}
    source_label = metadata.get("source") or metadata.get("provider") or "LyricsPlus"
    line_type = payload.get("type") == "Line"

    lines: List[Tuple[int, str]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        start = to_milliseconds(entry.get("time"), 0)
        text = entry.get("text") if isinstance(entry.get("text"), str) else ""
        syllabus = entry.get("syllabus") if isinstance(entry.get("syllabus"), list) else []
        if not line_type and syllabus:
            words = [str(s.get("text") or "") for s in syllabus if isinstance(s, dict) and not s.get("isBackground")]
            if words:
                text = "".join(words)
        text = (text or "").strip()
        if text:
            lines.append((start, text))
    return lines, source_label


def lines_to_lrc(lines: Iterable[Tuple[int, str]], *, title: str = "", artist: str = "", album: str = "", source: str = "") -> str:
    out: List[str] = []
    if title:
        out.append(f"[ti:{title}]")
    if artist:
        out.append(f"[ar:{artist}]")
    if album:
        out.append(f"[al:{album}]")
    if source:
        out.append(f"[re:{source}]")
    for start, text in lines:
        out.append(f"[{format_lrc_timestamp(start)}]{text}")
    return "\n".join(out)


# --- providers ---
class LyricsProvider:
    name = "base"

    def lookup(self, query: LyricsQuery) -> Optional[LyricsResult]:  # pragma: no cover - interface
        raise NotImplementedError


class LrclibProvider(LyricsProvider):
    name = "LRCLIB"

    def __init__(self, *, user_agent: str, timeout: float = 8, base_url: str = LRCLIB_BASE_URL, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"User-Agent": user_agent}
        self._session = session or requests.Session()

    @staticmethod
    def _pick(record: Any) -> Optional[LyricsResult]:
        if not isinstance(record, dict):
            return None
        if record.get("syncedLyrics"):
            return LyricsResult(lyrics=record["syncedLyrics"], synced=True, source="LRCLIB")
        if record.get("plainLyrics"):
            return LyricsResult(lyrics=record["plainLyrics"], synced=False, source="LRCLIB")
        return None

    def lookup(self, query: LyricsQuery) -> Optional[LyricsResult]:
        params = {"artist_name": query.artist.strip(), "track_name": query.title.strip()}
        exact = dict(params)
        if query.album:
            exact["album_name"] = query.album.strip()
        if query.duration and query.duration > 0:
            exact["duration"] = int(round(query.duration))

        try:
            resp = self._session.get(f"{self.base_url}/get", params=exact, headers=self._headers, timeout=self.timeout)
            if resp.status_code == 200:
                found = self._pick(resp.json())
                if found:
                    return found
            elif resp.status_code == 404:
                logger.debug("[LRCLIB] No exact match for: %s - %s", query.artist, query.title)
        except (requests.RequestException, ValueError) as e:
            logger.debug("[LRCLIB] Error: %s", e)

        try:
            resp = self._session.get(f"{self.base_url}/search", params=params, headers=self._headers, timeout=self.timeout)
            if resp.status_code == 200:
                results = resp.json()
                if isinstance(results, list) and results:
                    best = next((r for r in results if isinstance(r, dict) and r.get("syncedLyrics")), results[0])
                    return self._pick(best)
        except (requests.RequestException, ValueError) as e:
            logger.debug("[LRCLIB] Search error: %s", e)
        return None


class LyricsPlusProvider(LyricsProvider):
    def __init__(
        self,
        source_filter: str,
        *,
        servers: Sequence[str] = LYRICSPLUS_SERVERS,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.source_filter = source_filter
        self.servers = list(servers)
        self.timeout = timeout
        self._session = session or requests.Session()
        self.name = f"LyricsPlus({source_filter})"

    def lookup(self, query: LyricsQuery) -> Optional[LyricsResult]:
        params = {"title": query.title.strip(), "artist": query.artist.strip(), "source": self.source_filter}
        if query.album:
            params["album"] = query.album.strip()
        if query.duration and query.duration > 0:
            params["duration"] = str(int(round(query.duration)))

        for base in self.servers:
            url = f"{base.rstrip('/')}/v2/lyrics/get"
            try:
                resp = self._session.get(url, params=params, timeout=self.timeout)
                if resp.status_code != 200:
                    continue
                lines, label = kpoe_lines(resp.json())
            except (requests.RequestException, ValueError) as e:
                logger.debug("[LyricsPlus] Error from %s: %s", base, e)
                continue
            if lines:
                lrc = lines_to_lrc(lines, title=query.title, artist=query.artist, album=query.album or "", source=label)
                return LyricsResult(lyrics=lrc, synced=True, source=label)
        return None


class RemoteLyricsServiceProvider(LyricsProvider):
    """Client for a lyrics service speaking ``POST {title, artist, album, duration}``."""

    name = "remote"

    def __init__(self, api_url: str, *, timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def lookup(self, query: LyricsQuery) -> Optional[LyricsResult]:
        body = {"title": query.title, "artist": query.artist, "album": query.album, "duration": query.duration}
        try:
            resp = self._session.post(f"{self.api_url}/lyrics", json=body, timeout=self.timeout)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug("[Lyrics] Fetch error for %s: %s", query.title, e)
            return None
        if not isinstance(data, dict) or data.get("error") or not data.get("lyrics"):
            return None
        return LyricsResult(lyrics=data["lyrics"], synced=bool(data.get("synced")), source=str(data.get("source") or "remote"))


class LyricsResolver:
    def __init__(self, providers: Sequence[LyricsProvider], cache: TTLCache) -> None:
        self.providers = list(providers)
        self._cache = cache

    def resolve(
        self,
        title: Optional[str],
        artist: Optional[str],
        album: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> Optional[LyricsResult]:
        query = LyricsQuery(
            title=clean_for_search(title),
            artist=clean_for_search(artist),
            album=clean_for_search(album) or None,
            duration=duration or None,
        )
        if not query.title or not query.artist:
            return None

        cached = self._cache.get(query.cache_key, MISSING)
        if cached is not MISSING:
            return cached

        result: Optional[LyricsResult] = None
        for provider in self.providers:
            try:
                found = provider.lookup(query)
            except Exception as e:
                logger.warning("Lyrics provider %s failed for %s - %s: %s", provider.name, query.artist, query.title, e)
                continue
            if found is not None and found.lyrics and found.lyrics.strip():
                result = found
                logger.info("Lyrics found via %s for %s - %s (synced=%s)", found.source, query.artist, query.title, found.synced)
                break

        if result is None:
            logger.info("No lyrics found for %s - %s", query.artist, query.title)
        self._cache.set(query.cache_key, result)
        return result


def build_lyrics_resolver(
    *,
    cache: TTLCache,
    api_url: Optional[str] = None,
    user_agent: str = "hifidl/1.0",
    session: Optional[requests.Session] = None,
) -> LyricsResolver:
    """Remote service only when ``api_url`` is set, otherwise the direct provider chain."""
    if api_url:
        providers: List[LyricsProvider] = [RemoteLyricsServiceProvider(api_url, session=session)]
    else:
        providers = [
            LrclibProvider(user_agent=user_agent, session=session),
            LyricsPlusProvider(MUSIXMATCH_SOURCE, session=session),
            LyricsPlusProvider(FALLBACK_SOURCE, session=session),
        ]
    return LyricsResolver(providers, cache)


__all__ = [
    "FALLBACK_SOURCE",
    "MUSIXMATCH_SOURCE",
    "LyricsPlusProvider",
    "LyricsProvider",
    "LyricsQuery",
    "LyricsResolver",
    "LrclibProvider",
    "RemoteLyricsServiceProvider",
    "build_lyrics_resolver",
    "clean_for_search",
    "format_lrc_timestamp",
    "kpoe_lines",
    "lines_to_lrc",
    "to_milliseconds",
]
