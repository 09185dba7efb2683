import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

current_job_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("current_job_id", default=None)


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Stamp ``job_id`` on every record logged by this thread while the block runs."""
    token = current_job_id.set(job_id)
    try:
        yield
    finally:
        current_job_id.reset(token)


class JobContextFilter(logging.Filter):
    """Attach the job being processed to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = current_job_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """Render log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "job_id": getattr(record, "job_id", None),
            "thread": record.threadName,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_structured_logging(app) -> None:
    """Attach a stdout handler (JSON or plain text per LOG_JSON) to the root logger."""
    root = logging.getLogger()
    level = app.config.get("LOG_LEVEL", "INFO")
    root.setLevel(level)

    use_json = bool(app.config.get("LOG_JSON", True))
    formatter: logging.Formatter
    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(job_id)s] %(name)s: %(message)s")

    already = any(getattr(handler, "_hifidl_handler", False) for handler in root.handlers)
    if already:
        return
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(JobContextFilter())
    stream_handler._hifidl_handler = True  # type: ignore[attr-defined]
    root.addHandler(stream_handler)
