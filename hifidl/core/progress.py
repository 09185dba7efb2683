#!/usr/bin/env python
"""
Progress reporting for a single job run.

Track workers hand progress values to a bounded queue and return at once; a
dedicated writer thread persists them to the job store. Values are clamped at
enqueue time so the persisted progress never goes backwards, even when tracks
finish out of order or the writer falls behind and stale entries are dropped.
Writes are skipped once the job is terminal, so a cancel recorded by someone
else is never overwritten.
"""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Any, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

_STOP = object()


class ProgressSink(Protocol):
    def update_if_active(self, job_id: str, **fields: Any) -> bool: ...


class ProgressReporter:
    def __init__(self, store: ProgressSink, job_id: str, *, maxsize: int = 64, initial: int = 0) -> None:
        self._store = store
        self._job_id = job_id
        self._queue: "Queue[Any]" = Queue(maxsize=max(1, maxsize))
        self._lock = threading.Lock()
        self._high_water = max(0, min(100, int(initial)))
        self._closed = False
        self._thread = threading.Thread(
            target=self._drain, name=f"progress-{job_id[:8]}", daemon=True
        )
        self._thread.start()

    @property
    def current(self) -> int:
        with self._lock:
            return self._high_water

    def _clamp(self, progress: int) -> int:
        value = max(0, min(100, int(progress)))
        with self._lock:
            if value < self._high_water:
                value = self._high_water
            self._high_water = value
        return value

    def report(self, progress: int, description: Optional[str] = None) -> None:
        """Queue a progress update without waiting for it to be written."""
        if self._closed:
            return
        item: Tuple[int, Optional[str]] = (self._clamp(progress), description)
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except Full:
                # Writer is behind: the oldest entry is superseded by this one
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                except Empty:
                    pass

    def report_now(self, progress: int, description: Optional[str] = None, **fields: Any) -> None:
        """Flush queued updates, then write this one synchronously (stage transitions)."""
        self.flush()
        value = self._clamp(progress)
        payload = dict(fields)
        payload["progress"] = value
        if description is not None:
            payload["description"] = description
        self._store.update_if_active(self._job_id, **payload)

    def flush(self) -> None:
        if self._thread.is_alive():
            self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._thread.is_alive():
            self._queue.put(_STOP)
            self._thread.join(timeout=30)

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                progress, description = item
                fields: dict = {"progress": progress}
                if description is not None:
                    fields["description"] = description
                self._store.update_if_active(self._job_id, **fields)
            except Exception as exc:
                logger.warning("[%s] Progress write failed: %s", self._job_id, exc)
            finally:
                self._queue.task_done()

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def stage_progress(completed: int, total: int, *, floor: int, span: int) -> int:
    """``floor + floor((completed / total) * span)``; ``total == 0`` maps to ``floor``."""
    if total <= 0:
        return floor
    completed = max(0, min(completed, total))
    return floor + (completed * span) // total


__all__ = ["ProgressReporter", "ProgressSink", "stage_progress"]
