# noqa: D104 - package initialization
from .logging import configure_structured_logging, job_context  # noqa: F401
from .metrics import metrics_blueprint, record_job_finished, update_queue_gauge  # noqa: F401
