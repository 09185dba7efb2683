#!/usr/bin/env python
"""
Batch scheduler: fixed-size concurrency windows over a job's track list.

Each window runs fully in parallel and must settle before the next one
starts; the job record is re-read between windows so an external cancel is
honoured within one window.
"""

from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence

from hifidl.core.progress import ProgressReporter, stage_progress
from hifidl.domain.catalog.lyrics_service import LyricsResolver
from hifidl.domain.errors import TrackUnavailableError
from hifidl.models.dto import TrackInfo, TrackOutput
from hifidl.models.job import JobStatus, LyricsMode
from hifidl.observability.metrics import record_track_failure, record_track_success
from hifidl.utils.cancellation import JobCancelled

from .pipeline import JobRun, TrackPipeline, lyrics_lookup
from .repository import JobStore

logger = logging.getLogger(__name__)

DOWNLOAD_PROGRESS_FLOOR = 5
DOWNLOAD_PROGRESS_SPAN = 75


class BatchScheduler:
    def __init__(
        self,
        store: JobStore,
        pipeline: TrackPipeline,
        *,
        concurrency: int = 3,
        lyrics: Optional[LyricsResolver] = None,
        lyrics_prefetch_limit: int = 5,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.concurrency = max(1, concurrency)
        self.lyrics = lyrics
        self.lyrics_prefetch_limit = max(0, lyrics_prefetch_limit)

    def ensure_not_cancelled(self, job_id: str) -> None:
        current = self.store.get(job_id)
        if current is not None and current.status is JobStatus.CANCELLED:
            raise JobCancelled(job_id)

    def prefetch_lyrics(self, run: JobRun, tracks: Sequence[TrackInfo]) -> Optional[threading.Thread]:
        """Warm the lyrics cache for the first few tracks without holding up the batch."""
        if self.lyrics is None or self.lyrics_prefetch_limit == 0:
            return None
        head = list(tracks[: self.lyrics_prefetch_limit])

        def _worker() -> None:
            for track in head:
                try:
                    lyrics_lookup(self.lyrics, track, run.album)
                except Exception as e:
                    logger.debug("[%s] Lyrics prefetch failed for track %s: %s", run.job.id, track.id, e)

        thread = threading.Thread(target=_worker, name=f"lyrics-prefetch-{run.job.id[:8]}", daemon=True)
        thread.start()
        return thread

    def run(self, run: JobRun, tracks: Sequence[TrackInfo], reporter: ProgressReporter) -> List[TrackOutput]:
        """Process every track; returns successful outputs in track order.

        Raises JobCancelled when the job is cancelled between windows.
        """
        job_id = run.job.id
        total = len(tracks)
        completed = 0
        outputs: Dict[int, TrackOutput] = {}

        # Reserved in track order: the earliest of two duplicates keeps the bare name
        names = [self.pipeline.output_name(run, track) for track in tracks]

        if run.job.lyrics_mode is not LyricsMode.DISABLED:
            self.prefetch_lyrics(run, tracks)

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix=f"track-{job_id[:8]}") as pool:
            for start in range(0, total, self.concurrency):
                self.ensure_not_cancelled(job_id)
                window = tracks[start : start + self.concurrency]
                futures = {
                    pool.submit(
                        contextvars.copy_context().run, self.pipeline.process, run, track, names[start + offset]
                    ): (start + offset, track)
                    for offset, track in enumerate(window)
                }
                for future in as_completed(futures):
                    index, track = futures[future]
                    try:
                        outputs[index] = future.result()
                        record_track_success()
                        logger.info("[%s] Track %s done (%s)", job_id, track.id, track.title)
                    except TrackUnavailableError as e:
                        record_track_failure("unavailable")
                        logger.warning("[%s] Track %s unavailable: %s", job_id, track.id, e)
                    except Exception as e:
                        record_track_failure("exhausted")
                        logger.error("[%s] Failed track %s: %s", job_id, track.id, e)
                    completed += 1
                    reporter.report(
                        stage_progress(completed, total, floor=DOWNLOAD_PROGRESS_FLOOR, span=DOWNLOAD_PROGRESS_SPAN),
                        f"Downloaded {completed}/{total}: {track.title}",
                    )

        return [outputs[i] for i in sorted(outputs)]


__all__ = ["BatchScheduler", "DOWNLOAD_PROGRESS_FLOOR", "DOWNLOAD_PROGRESS_SPAN"]
