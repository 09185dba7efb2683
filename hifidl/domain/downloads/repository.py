from __future__ import annotations

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_

from hifidl.database.db_manager import db, DownloadJob
from hifidl.models.job import TERMINAL_STATUSES, Job, JobStatus


logger = logging.getLogger(__name__)

JobListener = Callable[[Job], None]

_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "progress",
        "description",
        "error",
        "file_name",
        "file_size",
        "download_url",
        "album_title",
        "artist_name",
        "tracks_count",
    }
)


class JobStore:
    """Interface for the durable job store consumed by the pipeline."""

    def create(self, job: Job) -> Job:  # pragma: no cover - interface
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[Job]:  # pragma: no cover - interface
        raise NotImplementedError

    def update(self, job_id: str, **fields: Any) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def update_if_active(self, job_id: str, **fields: Any) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def claim(self, job_id: str, from_status: JobStatus, to_status: JobStatus) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def storage_used(self, owner: str, since: datetime) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    def pending_job_ids(self) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def subscribe(self, listener: JobListener) -> None:  # pragma: no cover - interface
        raise NotImplementedError


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _update_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported job fields: {sorted(unknown)}")
    values: Dict[str, Any] = {key: _column_value(value) for key, value in fields.items()}
    values["updated_at"] = datetime.utcnow()
    return values


class SqlAlchemyJobStore(JobStore):
    """Job store backed by the ``download_jobs`` table.

    Every call opens its own app context so worker threads can use the store
    without inheriting a request or session.
    """

    def __init__(self, flask_app) -> None:
        self.flask_app = flask_app
        self._listeners: List[JobListener] = []
        self._listeners_lock = threading.Lock()

    def subscribe(self, listener: JobListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def _notify(self, job: Job) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(job)
            except Exception as e:
                logger.error("Job insert listener failed for %s: %s", job.id, e, exc_info=True)

    def create(self, job: Job) -> Job:
        data = {key: _column_value(value) for key, value in job.model_dump().items() if value is not None}
        with self.flask_app.app_context():
            record = DownloadJob(**data)
            try:
                db.session.add(record)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            created = Job.model_validate(record)
        self._notify(created)
        return created

    def get(self, job_id: str) -> Optional[Job]:
        with self.flask_app.app_context():
            record = db.session.get(DownloadJob, job_id)
            if record is None:
                return None
            return Job.model_validate(record)

    def update(self, job_id: str, **fields: Any) -> None:
        values = _update_values(fields)
        with self.flask_app.app_context():
            try:
                db.session.query(DownloadJob).filter(DownloadJob.id == job_id).update(
                    values, synchronize_session=False
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

    def update_if_active(self, job_id: str, **fields: Any) -> bool:
        """Apply ``fields`` unless the job already reached a terminal status.

        Progress writes go through here so a late write from a track worker
        cannot overwrite what an external cancel recorded.
        """
        values = _update_values(fields)
        with self.flask_app.app_context():
            try:
                changed = (
                    db.session.query(DownloadJob)
                    .filter(
                        DownloadJob.id == job_id,
                        DownloadJob.status.notin_([status.value for status in TERMINAL_STATUSES]),
                    )
                    .update(values, synchronize_session=False)
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        return changed == 1

    def claim(self, job_id: str, from_status: JobStatus, to_status: JobStatus) -> bool:
        """Atomically move a job from ``from_status`` to ``to_status``.

        Returns False when the job is missing or no longer in ``from_status``.
        """
        with self.flask_app.app_context():
            try:
                changed = (
                    db.session.query(DownloadJob)
                    .filter(DownloadJob.id == job_id, DownloadJob.status == JobStatus(from_status).value)
                    .update(
                        {"status": JobStatus(to_status).value, "updated_at": datetime.utcnow()},
                        synchronize_session=False,
                    )
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        return changed == 1

    def storage_used(self, owner: str, since: datetime) -> int:
        with self.flask_app.app_context():
            total = (
                db.session.query(func.coalesce(func.sum(DownloadJob.file_size), 0))
                .filter(
                    or_(DownloadJob.user_email == owner, DownloadJob.user_id == owner),
                    DownloadJob.status == JobStatus.COMPLETED.value,
                    DownloadJob.download_url.isnot(None),
                    DownloadJob.created_at >= since,
                )
                .scalar()
            )
        return int(total or 0)

    def pending_job_ids(self) -> List[str]:
        with self.flask_app.app_context():
            rows = (
                db.session.query(DownloadJob.id)
                .filter(DownloadJob.status == JobStatus.PENDING.value)
                .order_by(DownloadJob.created_at.asc())
                .all()
            )
        return [row[0] for row in rows]


__all__ = ["JobListener", "JobStore", "SqlAlchemyJobStore"]
