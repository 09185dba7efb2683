from __future__ import annotations

from typing import Optional

from flask import Blueprint, Response
from prometheus_client import Counter, Gauge, Histogram, generate_latest

metrics_blueprint = Blueprint("metrics_bp", __name__)

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"

JOBS_FINISHED = Counter(
    "hifidl_jobs_finished_total",
    "Download jobs that reached a terminal state.",
    ["status"],
)
TRACK_ATTEMPTS = Counter(
    "hifidl_track_download_attempts_total",
    "Individual fetch-and-download attempts for a track.",
)
TRACK_SUCCESSES = Counter(
    "hifidl_track_success_total",
    "Tracks that produced an output file.",
)
TRACK_FAILURES = Counter(
    "hifidl_track_failure_total",
    "Tracks excluded from a job's output.",
    ["reason"],
)
QUOTA_REJECTIONS = Counter(
    "hifidl_quota_rejections_total",
    "Artifacts not stored because the owner's library is full.",
)
JOB_QUEUE_DEPTH = Gauge(
    "hifidl_job_queue_depth",
    "Current number of jobs waiting in the in-process queue.",
)
JOB_EXECUTION_TIME = Histogram(
    "hifidl_job_execution_seconds",
    "Execution time for individual download jobs.",
    buckets=(5, 10, 20, 40, 60, 120, 300, 600, 1200, float("inf")),
)


def record_job_finished(status: str, duration_seconds: Optional[float] = None) -> None:
    JOBS_FINISHED.labels(status=status).inc()
    if duration_seconds is not None:
        JOB_EXECUTION_TIME.observe(duration_seconds)


def record_track_attempt() -> None:
    TRACK_ATTEMPTS.inc()


def record_track_success() -> None:
    TRACK_SUCCESSES.inc()


def record_track_failure(reason: str) -> None:
    TRACK_FAILURES.labels(reason=reason).inc()


def record_quota_rejection() -> None:
    QUOTA_REJECTIONS.inc()


def update_queue_gauge(depth: int) -> None:
    JOB_QUEUE_DEPTH.set(max(0, depth))


@metrics_blueprint.route("/metrics")
def metrics_endpoint() -> Response:
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
