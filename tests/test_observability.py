import json
import logging

import pytest


def _record(message="hello"):
    return logging.LogRecord("hifidl.test", logging.INFO, __file__, 1, message, None, None)


@pytest.mark.unit
def test_job_context_is_stamped_on_records():
    from hifidl.observability.logging import JobContextFilter, job_context

    record = _record()
    with job_context("job-77"):
        JobContextFilter().filter(record)
    assert record.job_id == "job-77"

    outside = _record()
    JobContextFilter().filter(outside)
    assert outside.job_id is None


@pytest.mark.unit
def test_json_formatter_renders_structured_payload():
    from hifidl.observability.logging import JobContextFilter, JsonFormatter, job_context

    record = _record("Track %s done")
    record.args = ("42",)
    with job_context("job-1"):
        JobContextFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "Track 42 done"
    assert payload["job_id"] == "job-1"
    assert payload["level"] == "INFO"
    assert payload["timestamp"].endswith("Z")


@pytest.mark.unit
def test_structured_logging_handler_is_installed_once():
    from flask import Flask

    from hifidl.observability.logging import configure_structured_logging

    app = Flask("log-test")
    app.config.update(LOG_LEVEL="INFO", LOG_JSON=False)
    configure_structured_logging(app)
    configure_structured_logging(app)

    marked = [h for h in logging.getLogger().handlers if getattr(h, "_hifidl_handler", False)]
    assert len(marked) == 1
