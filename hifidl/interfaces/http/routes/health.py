from __future__ import annotations

import os
import shutil

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from hifidl.database.db_manager import db
from hifidl.observability.metrics import update_queue_gauge

health_bp = Blueprint("health_bp", __name__)


def _dispatcher():
    return current_app.extensions.get("download_jobs")


def _scratch_writable() -> bool:
    settings = current_app.extensions.get("pipeline_settings")
    if settings is None:
        return False
    root = settings.scratch_dir
    parent = root if os.path.isdir(root) else os.path.dirname(os.path.abspath(root))
    return os.access(parent, os.W_OK)


@health_bp.route("/healthz")
def healthz():
    """Liveness of the worker's dependencies; only the database decides the status."""
    checks = {}
    try:
        db.session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:  # pragma: no cover - DB failure path
        checks["database"] = f"error: {exc}"

    registry = current_app.extensions.get("catalogs")
    dispatcher = _dispatcher()
    settings = current_app.extensions.get("pipeline_settings")
    ffmpeg = settings.ffmpeg_binary if settings is not None else "ffmpeg"

    checks["catalogs"] = registry.names() if registry is not None else []
    checks["ffmpeg"] = "ok" if shutil.which(ffmpeg) else "missing"
    checks["scratch_dir"] = "ok" if _scratch_writable() else "read-only"
    checks["job_queue_depth"] = dispatcher.qsize() if dispatcher is not None else 0
    checks["workers"] = dispatcher.alive_workers() if dispatcher is not None else 0

    healthy = checks["database"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503


@health_bp.route("/readyz")
def readyz():
    dispatcher = _dispatcher()
    depth = dispatcher.qsize() if dispatcher is not None else 0
    update_queue_gauge(depth)
    threshold = int(current_app.config.get("READINESS_QUEUE_THRESHOLD", 25))
    if depth > threshold:
        return jsonify({"status": "blocked", "job_queue_depth": depth, "threshold": threshold}), 503
    return jsonify({"status": "ready", "job_queue_depth": depth, "threshold": threshold}), 200
