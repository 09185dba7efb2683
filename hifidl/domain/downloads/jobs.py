#!/usr/bin/env python
"""
Job lifecycle controller and the in-process dispatcher that feeds it.

pending -> processing -> downloading -> completed | failed, with an external
``cancelled`` observed cooperatively. Every exit path removes the job's
scratch directory.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from queue import Empty, Queue
from typing import List, Optional

from hifidl.core.progress import ProgressReporter
from hifidl.domain.catalog.providers import CatalogRegistry
from hifidl.domain.errors import NoOutputError, NoTracksError
from hifidl.models.dto import AlbumInfo, TrackInfo
from hifidl.models.job import Job, JobStatus
from hifidl.observability.logging import job_context
from hifidl.observability.metrics import record_job_finished, update_queue_gauge
from hifidl.settings import PipelineSettings
from hifidl.utils.cancellation import JobCancelled
from hifidl.utils.naming import apply_archive_template

from .file_manager import ArchiveAssembler, FileManager
from .persistence import Artifact, ArtifactPersister
from .pipeline import JobRun
from .repository import JobStore
from .scheduler import DOWNLOAD_PROGRESS_FLOOR, BatchScheduler
from .tagging import CODECS, TagEmbedder, codec_spec

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/zip"


def content_type_for(path: str) -> str:
    extension = os.path.splitext(path)[1].lower().lstrip(".")
    if extension == "zip":
        return ARCHIVE_CONTENT_TYPE
    if extension == "lrc":
        return "text/plain"
    for codec in CODECS.values():
        if codec.extension == extension:
            return codec.content_type
    return "application/octet-stream"


def select_tracks(album: AlbumInfo, track_id: Optional[str]) -> List[TrackInfo]:
    """Streamable tracks of the album, narrowed to ``track_id`` when the job names one."""
    if not album.tracks:
        raise NoTracksError("No tracks found in this album")
    tracks = [t for t in album.tracks if t.streamable]
    if track_id:
        tracks = [t for t in tracks if str(t.id) == str(track_id)]
        if not tracks:
            raise NoTracksError("Track not found or unavailable")
    if not tracks:
        raise NoTracksError("No streamable tracks in this album")
    return tracks


class JobController:
    def __init__(
        self,
        store: JobStore,
        catalogs: CatalogRegistry,
        scheduler: BatchScheduler,
        embedder: TagEmbedder,
        persister: ArtifactPersister,
        files: FileManager,
        settings: PipelineSettings,
        archive: Optional[ArchiveAssembler] = None,
    ) -> None:
        self.store = store
        self.catalogs = catalogs
        self.scheduler = scheduler
        self.embedder = embedder
        self.persister = persister
        self.files = files
        self.settings = settings
        self.archive = archive or ArchiveAssembler()

    def process(self, job_id: str) -> Optional[JobStatus]:
        """Run one job to a terminal state.

        Returns the resulting status, or None when this delivery was a no-op
        (job missing or no longer pending).
        """
        job = self.store.get(job_id)
        if job is None:
            logger.warning("Job %s not found, skipping", job_id)
            return None
        if job.status is not JobStatus.PENDING:
            logger.info("Job %s is not pending (%s), skipping", job_id, job.status.value)
            return None
        if not self.store.claim(job_id, JobStatus.PENDING, JobStatus.PROCESSING):
            logger.info("Job %s was claimed elsewhere, skipping", job_id)
            return None

        started = time.monotonic()
        outcome = JobStatus.FAILED
        reporter = ProgressReporter(self.store, job_id, maxsize=self.settings.progress_queue_maxsize)
        with job_context(job_id), reporter:
            logger.info(
                "[%s] Starting%s: %s - %s",
                job_id, " (GUEST)" if job.is_guest else "", job.artist_name, job.album_title,
            )
            try:
                outcome = self._run(job, reporter)
            except JobCancelled:
                logger.info("[%s] Cancelled", job_id)
                outcome = JobStatus.CANCELLED
            except Exception as e:
                logger.error("[%s] Failed: %s", job_id, e, exc_info=True)
                outcome = self._fail(job_id, reporter, str(e) or e.__class__.__name__)
            finally:
                self.files.cleanup_job_dir(job_id)
                record_job_finished(outcome.value, time.monotonic() - started)
        return outcome

    def _fail(self, job_id: str, reporter: ProgressReporter, message: str) -> JobStatus:
        reporter.flush()
        current = self.store.get(job_id)
        if current is not None and current.status is JobStatus.CANCELLED:
            # An external cancel wins over whatever broke afterwards
            return JobStatus.CANCELLED
        self.store.update(job_id, status=JobStatus.FAILED, description="Download failed", error=message)
        return JobStatus.FAILED

    def _enter_downloading(self, job_id: str) -> None:
        if self.store.claim(job_id, JobStatus.PROCESSING, JobStatus.DOWNLOADING):
            return
        current = self.store.get(job_id)
        if current is not None and current.status is JobStatus.CANCELLED:
            raise JobCancelled(job_id)
        raise RuntimeError(f"Job {job_id} left processing unexpectedly")

    def _run(self, job: Job, reporter: ProgressReporter) -> JobStatus:
        self.store.update(job.id, description="Fetching album info...")
        provider = self.catalogs.get(job.source)
        album = provider.resolve_album(job.album_id, job.country)
        tracks = select_tracks(album, job.track_id)

        self._enter_downloading(job.id)
        reporter.report_now(
            DOWNLOAD_PROGRESS_FLOOR,
            f"Downloading {len(tracks)} track(s)...",
            tracks_count=len(tracks),
            album_title=job.album_title or album.title,
            artist_name=job.artist_name or album.artist,
        )

        scratch_dir = self.files.create_job_dir(job.id)
        run = JobRun(
            job=job,
            album=album,
            provider=provider,
            scratch_dir=scratch_dir,
            target=codec_spec(job.format),
            track_name_template=job.track_name_template or self.settings.track_name_template,
            cover_path=self.embedder.download_cover(album.cover_url, scratch_dir),
        )
        outputs = self.scheduler.run(run, tracks, reporter)
        produced = [path for output in outputs for path in output.paths]
        if not produced:
            raise NoOutputError("No files downloaded")

        if len(produced) == 1:
            path = produced[0]
            artifact = Artifact(
                path=path,
                file_name=os.path.basename(path),
                size=os.path.getsize(path),
                content_type=content_type_for(path),
            )
        else:
            reporter.report_now(85, "Creating archive...")
            folder = apply_archive_template(
                job.zip_name_template or self.settings.zip_name_template,
                album,
                fallback_artist=job.artist_name,
            )
            file_name = f"{folder}.zip"
            zip_path = os.path.join(scratch_dir, file_name)
            size = self.archive.assemble(produced, zip_path, folder)
            artifact = Artifact(path=zip_path, file_name=file_name, size=size, content_type=ARCHIVE_CONTENT_TYPE)

        self.scheduler.ensure_not_cancelled(job.id)
        self.persister.persist(job, artifact, reporter)
        return JobStatus.COMPLETED


class JobDispatcher:
    """Feeds inserted job ids to worker threads running the controller."""

    def __init__(self, controller: JobController, store: JobStore, *, workers: int = 2, flask_app=None):
        self.controller = controller
        self.store = store
        self.workers = max(1, workers)
        self.flask_app = flask_app
        self._queue: "Queue[str]" = Queue()
        self._threads: List[threading.Thread] = []
        self._shutdown = threading.Event()
        self._started = False
        self._lock = threading.Lock()
        store.subscribe(self._on_insert)

    def _on_insert(self, job: Job) -> None:
        if job.status is JobStatus.PENDING:
            self.enqueue(job.id)

    def enqueue(self, job_id: str) -> None:
        self._queue.put(job_id)
        update_queue_gauge(self._queue.qsize())

    def qsize(self) -> int:
        return self._queue.qsize()

    def alive_workers(self) -> int:
        return sum(1 for t in self._threads if t.is_alive())

    def start(self) -> None:
        """Re-deliver jobs left pending by a previous process, then start the workers."""
        with self._lock:
            if self._started:
                return
            self._started = True
            for job_id in self.store.pending_job_ids():
                self.enqueue(job_id)
            for i in range(self.workers):
                t = threading.Thread(target=self._worker, name=f"download-worker-{i+1}", daemon=True)
                t.start()
                self._threads.append(t)
        logger.info("Job dispatcher started with %d worker(s), %d job(s) queued", self.workers, self.qsize())

    def shutdown(self, timeout: float = 5.0) -> None:
        self._shutdown.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads.clear()

    def join(self) -> None:
        """Block until every queued id has been processed."""
        self._queue.join()

    def _worker(self) -> None:
        while not self._shutdown.is_set():
            try:
                job_id = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                if self.flask_app is not None:
                    with self.flask_app.app_context():
                        self.controller.process(job_id)
                else:
                    self.controller.process(job_id)
            except Exception as e:
                logger.error("Worker failed on job %s: %s", job_id, e, exc_info=True)
            finally:
                self._queue.task_done()
                update_queue_gauge(self._queue.qsize())


__all__ = ["JobController", "JobDispatcher", "content_type_for", "select_tracks"]
