#!/usr/bin/env python
"""
Quota-aware persistence of a finished artifact.

Runs strictly after all processing (the artifact's final size is what the
owner pays for) and strictly before the upload (no egress is spent on a file
that will not be kept).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from hifidl.config import GIB
from hifidl.core.progress import ProgressReporter
from hifidl.infrastructure.s3 import ObjectStore, artifact_key
from hifidl.models.job import Job, JobStatus
from hifidl.observability.metrics import record_quota_rejection

from .repository import JobStore

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


@dataclass(frozen=True)
class Artifact:
    path: str
    file_name: str
    size: int
    content_type: str


@dataclass(frozen=True)
class PersistOutcome:
    stored: bool
    download_url: Optional[str] = None


def quota_messages(used_bytes: int, file_size: int, limit_bytes: int) -> Tuple[str, str]:
    """Human-readable (description, error) pair for an artifact that did not fit."""
    used_gb = f"{used_bytes / GIB:.2f}"
    limit_gb = f"{limit_bytes / GIB:.0f}"
    size_mb = f"{file_size / MIB:.1f}"
    description = f"Library full ({used_gb}/{limit_gb} GB). File not stored."
    error = (
        f"Storage limit reached. Your library uses {used_gb} GB out of {limit_gb} GB available. "
        f"This download ({size_mb} MB) was not stored in your library. Delete some files to free up space."
    )
    return description, error


class QuotaPolicy:
    def __init__(
        self,
        store: JobStore,
        *,
        limit_bytes: int,
        window_days: int,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.limit_bytes = limit_bytes
        self.window_days = window_days
        self._clock = clock

    def usage(self, owner: str) -> int:
        """Bytes of stored artifacts the owner created inside the window; never cached."""
        since = self._clock() - timedelta(days=self.window_days)
        return self.store.storage_used(owner, since)

    def fits(self, used_bytes: int, file_size: int) -> bool:
        return used_bytes + file_size <= self.limit_bytes


class ArtifactPersister:
    def __init__(self, object_store: ObjectStore, quota: QuotaPolicy) -> None:
        self.object_store = object_store
        self.quota = quota

    def persist(self, job: Job, artifact: Artifact, reporter: ProgressReporter) -> PersistOutcome:
        used: Optional[int] = None
        if job.is_guest:
            logger.info("[%s] Guest user - skipping storage limit check", job.id)
        else:
            reporter.report_now(90, "Checking available storage...")
            used = self.quota.usage(job.storage_owner)
            if not self.quota.fits(used, artifact.size):
                description, error = quota_messages(used, artifact.size, self.quota.limit_bytes)
                logger.info(
                    "[%s] Storage limit exceeded: %d used + %d new > %d limit",
                    job.id, used, artifact.size, self.quota.limit_bytes,
                )
                record_quota_rejection()
                reporter.report_now(
                    100,
                    description,
                    status=JobStatus.COMPLETED,
                    file_name=artifact.file_name,
                    file_size=artifact.size,
                    error=error,
                )
                return PersistOutcome(stored=False)

        reporter.report_now(95, "Uploading file...")
        url = self.object_store.upload(artifact.path, artifact_key(job.id, artifact.file_name), artifact.content_type)
        reporter.report_now(
            100,
            "Done!",
            status=JobStatus.COMPLETED,
            download_url=url,
            file_name=artifact.file_name,
            file_size=artifact.size,
        )
        logger.info("[%s] Completed%s: %s", job.id, " (GUEST)" if job.is_guest else "", url)
        return PersistOutcome(stored=True, download_url=url)


__all__ = ["Artifact", "ArtifactPersister", "PersistOutcome", "QuotaPolicy", "quota_messages"]
