"""Shared fakes for catalogs, HTTP sessions, the codec tool, object storage and the job store."""

import os
import shutil
import threading
import uuid
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from hifidl.domain.catalog.providers import CatalogProvider, CatalogRegistry
from hifidl.domain.downloads import (
    ArtifactPersister,
    BatchScheduler,
    FileManager,
    JobController,
    QuotaPolicy,
    TagEmbedder,
    TrackFetcher,
    TrackPipeline,
)
from hifidl.domain.downloads.repository import JobStore
from hifidl.domain.errors import CatalogError, TranscodeError, TrackUnavailableError
from hifidl.infrastructure.s3 import ObjectStore
from hifidl.models.dto import AlbumInfo, MediaUrl, TrackInfo
from hifidl.models.job import TERMINAL_STATUSES, Job, JobStatus
from hifidl.settings import PipelineSettings

AUDIO_BYTES = b"fLaC" + b"\x00" * 2048

_NO_JSON = object()


# --- catalog data ---
def make_album(track_count: int = 3, *, artist: str = "Artist", title: str = "Album", cover: Optional[str] = None, **extra) -> AlbumInfo:
    tracks = [
        TrackInfo(id=i, title=f"Track {i}", track_number=i, disc_number=1, duration=180, performer=artist)
        for i in range(1, track_count + 1)
    ]
    return AlbumInfo(
        id="alb-1",
        title=title,
        artist=artist,
        release_date="2020-05-01",
        tracks_count=track_count,
        cover_large=cover,
        tracks=tracks,
        **extra,
    )


def make_job(**overrides: Any) -> Job:
    data: Dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "user_id": "user-1",
        "user_email": "user@example.com",
        "album_id": "alb-1",
        "album_title": "Album",
        "artist_name": "Artist",
    }
    data.update(overrides)
    return Job(**data)


class FakeCatalog(CatalogProvider):
    """Serves one album; tracks can be marked unavailable or made to fail transiently."""

    def __init__(
        self,
        album: Any,
        *,
        name: str = "qobuz",
        unavailable: Iterable[int] = (),
        transient_failures: Optional[Dict[int, int]] = None,
        mime_type: str = "audio/flac",
        on_album: Optional[Callable[[str], None]] = None,
        on_media: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.album = album
        self.name = name
        self.unavailable = set(unavailable)
        self.transient_failures = dict(transient_failures or {})
        self.mime_type = mime_type
        self.on_album = on_album
        self.on_media = on_media
        self.album_calls = 0
        self.media_calls: List[int] = []
        self._lock = threading.Lock()

    def resolve_album(self, album_id, region=None):
        self.album_calls += 1
        if self.on_album:
            self.on_album(album_id)
        if isinstance(self.album, Exception):
            raise self.album
        return self.album

    def resolve_media_url(self, track_id, quality, region=None):
        with self._lock:
            self.media_calls.append(track_id)
            remaining = self.transient_failures.get(track_id, 0)
            if remaining:
                self.transient_failures[track_id] = remaining - 1
        if self.on_media:
            self.on_media(track_id)
        if track_id in self.unavailable:
            raise TrackUnavailableError(f"getTrackFileUrl({track_id}) failed: HTTP 404", status_code=404)
        if remaining:
            raise CatalogError(f"getTrackFileUrl({track_id}) failed: HTTP 503", status_code=503)
        return MediaUrl(url=f"https://media.test/{track_id}", mime_type=self.mime_type)

    def calls_for(self, track_id: int) -> int:
        with self._lock:
            return self.media_calls.count(track_id)


# --- HTTP ---
class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"", json_data: Any = _NO_JSON) -> None:
        self.status_code = status_code
        self.body = body
        self._json = json_data

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), max(1, chunk_size)):
            yield self.body[start : start + chunk_size]

    def json(self):
        if self._json is _NO_JSON:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def close(self):
        pass


class FakeSession:
    """Routes requests by URL fragment; a route with several responses serves them in order, repeating the last."""

    def __init__(self, default: Optional[FakeResponse] = None) -> None:
        self.routes: Dict[str, List[Any]] = {}
        self.default = default
        self.calls: List[SimpleNamespace] = []
        self._lock = threading.Lock()

    def add(self, fragment: str, *responses: Any) -> "FakeSession":
        self.routes[fragment] = list(responses)
        return self

    def _dispatch(self, method: str, url: str, **kwargs: Any):
        with self._lock:
            self.calls.append(
                SimpleNamespace(
                    method=method,
                    url=url,
                    params=kwargs.get("params"),
                    headers=kwargs.get("headers"),
                    json=kwargs.get("json"),
                )
            )
            item = None
            for fragment, queue in self.routes.items():
                if fragment in url:
                    item = queue.pop(0) if len(queue) > 1 else queue[0]
                    break
        if item is None:
            if self.default is None:
                raise requests.ConnectionError(f"No fake route for {url}")
            item = self.default
        if isinstance(item, BaseException):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)


# --- codec tool ---
class FakeFfmpeg:
    """Stands in for the codec tool by copying the first input to the output path."""

    def __init__(self, fail_when: Optional[Callable[[List[str]], bool]] = None) -> None:
        self.fail_when = fail_when
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def __call__(self, args, timeout):
        args = list(args)
        with self._lock:
            self.calls.append(args)
        if self.fail_when and self.fail_when(args):
            raise TranscodeError("fake ffmpeg failure")
        source = args[args.index("-i") + 1]
        shutil.copyfile(source, args[-1])


# --- object storage ---
@dataclass
class Upload:
    key: str
    content_type: str
    file_name: str
    data: bytes


class FakeObjectStore(ObjectStore):
    def __init__(self, base_url: str = "https://cdn.test", fail: Optional[Exception] = None) -> None:
        self.base_url = base_url
        self.fail = fail
        self.uploads: List[Upload] = []

    def upload(self, local_path, key, content_type):
        if self.fail is not None:
            raise self.fail
        with open(local_path, "rb") as f:
            data = f.read()
        self.uploads.append(Upload(key=key, content_type=content_type, file_name=os.path.basename(local_path), data=data))
        return f"{self.base_url}/{key}"

    def delete_by_prefix(self, prefix):
        before = len(self.uploads)
        self.uploads = [u for u in self.uploads if not u.key.startswith(prefix)]
        return before - len(self.uploads)


# --- job store ---
class RecordingStore(JobStore):
    """In-memory job store that keeps every update in ``history``."""

    def __init__(self, used_bytes: int = 0) -> None:
        self.jobs: Dict[str, Job] = {}
        self.history: List[Dict[str, Any]] = []
        self.used_bytes = used_bytes
        self.usage_queries: List[Any] = []
        self._listeners: List[Callable[[Job], None]] = []
        self._lock = threading.RLock()

    def create(self, job):
        with self._lock:
            self.jobs[job.id] = job
        for listener in list(self._listeners):
            listener(job)
        return job

    def get(self, job_id):
        with self._lock:
            return self.jobs.get(job_id)

    def update(self, job_id, **fields):
        with self._lock:
            self.history.append(dict(fields))
            job = self.jobs.get(job_id)
            if job is not None:
                self.jobs[job_id] = job.model_copy(update=fields)

    def update_if_active(self, job_id, **fields):
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.status in TERMINAL_STATUSES:
                return False
            self.update(job_id, **fields)
            return True

    def claim(self, job_id, from_status, to_status):
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.status is not from_status:
                return False
            self.jobs[job_id] = job.model_copy(update={"status": to_status})
            self.history.append({"status": to_status})
            return True

    def storage_used(self, owner, since):
        self.usage_queries.append((owner, since))
        return self.used_bytes

    def pending_job_ids(self):
        with self._lock:
            return [job_id for job_id, job in self.jobs.items() if job.status is JobStatus.PENDING]

    def subscribe(self, listener):
        self._listeners.append(listener)

    def cancel(self, job_id, description=None):
        fields = {"status": JobStatus.CANCELLED}
        if description is not None:
            fields["description"] = description
        with self._lock:
            self.jobs[job_id] = self.jobs[job_id].model_copy(update=fields)

    def progress_values(self) -> List[int]:
        with self._lock:
            return [entry["progress"] for entry in self.history if "progress" in entry]

    def descriptions(self) -> List[str]:
        with self._lock:
            return [entry["description"] for entry in self.history if entry.get("description")]


class FakeLyrics:
    def __init__(self, result=None) -> None:
        self.result = result
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def resolve(self, title, artist, album=None, duration=None):
        with self._lock:
            self.calls.append(title)
        return self.result


# --- builders ---
def build_fetcher(session: Optional[FakeSession] = None, *, max_retries: int = 3) -> TrackFetcher:
    return TrackFetcher(
        max_retries=max_retries,
        base_delay=0,
        session=session or FakeSession(default=FakeResponse(body=AUDIO_BYTES)),
        sleep=lambda seconds: None,
    )


def build_embedder(runner: Optional[FakeFfmpeg] = None, session: Optional[FakeSession] = None) -> TagEmbedder:
    return TagEmbedder(
        runner=runner or FakeFfmpeg(),
        lyrics_writer=lambda path, text: True,
        session=session or FakeSession(),
    )


def build_controller(
    store: JobStore,
    catalog: CatalogProvider,
    object_store: ObjectStore,
    *,
    scratch_dir: str,
    session: Optional[FakeSession] = None,
    runner: Optional[FakeFfmpeg] = None,
    lyrics: Any = None,
    **overrides: Any,
) -> JobController:
    options: Dict[str, Any] = {"scratch_dir": scratch_dir, "retry_base_delay": 0, "lyrics_prefetch_limit": 0}
    options.update(overrides)
    settings = PipelineSettings(**options)
    embedder = build_embedder(runner)
    pipeline = TrackPipeline(build_fetcher(session, max_retries=settings.max_retries), embedder, lyrics)
    scheduler = BatchScheduler(
        store,
        pipeline,
        concurrency=settings.concurrency,
        lyrics=lyrics,
        lyrics_prefetch_limit=settings.lyrics_prefetch_limit,
    )
    quota = QuotaPolicy(store, limit_bytes=settings.library_size_limit, window_days=settings.storage_window_days)
    return JobController(
        store,
        CatalogRegistry([catalog]),
        scheduler,
        embedder,
        ArtifactPersister(object_store, quota),
        FileManager(scratch_dir),
        settings,
    )


__all__ = [
    "AUDIO_BYTES",
    "FakeCatalog",
    "FakeFfmpeg",
    "FakeLyrics",
    "FakeObjectStore",
    "FakeResponse",
    "FakeSession",
    "RecordingStore",
    "build_controller",
    "build_embedder",
    "build_fetcher",
    "make_album",
    "make_job",
]
