"""
Celery worker for EDGAR fundamentals ingestion.
Runs on-demand ticker refreshes plus the scheduled registry sweeps.
"""

from celery import Celery
from celery.schedules import crontab
import os

# Initialize Celery
_always_eager = os.getenv("CELERY_ALWAYS_EAGER", "").strip() in {"1", "true", "True", "yes", "YES"}
redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
_broker_url = "memory://" if _always_eager else redis_url
_result_backend = "cache+memory://" if _always_eager else redis_url
celery_app = Celery("edgar_fundamentals", broker=_broker_url, backend=_result_backend)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Sweeps pace every request, so a full pass can take a while.
    task_time_limit=60 * 60,
    task_soft_time_limit=55 * 60,
    worker_prefetch_multiplier=1,
)

# Ensure task modules are imported so Celery registers them.
from edgar_fundamentals.worker import tasks as _tasks  # noqa: F401,E402

if _always_eager:
    # Run tasks inline when no broker is available.
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=False, task_store_eager_result=False)

# Incremental sweep over due tickers. Default: every 15 minutes.
_sweep_minute = os.getenv("EDGAR_SWEEP_MINUTE", "*/15")
_sweep_hour = os.getenv("EDGAR_SWEEP_HOUR", "*")
celery_app.conf.beat_schedule = {
    "edgar_incremental_sweep": {
        "task": "edgar_incremental_sweep",
        "schedule": crontab(minute=_sweep_minute, hour=_sweep_hour),
    },
}

if __name__ == "__main__":
    celery_app.start()
