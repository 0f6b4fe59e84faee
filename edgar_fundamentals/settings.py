"""
Environment-driven settings for the fundamentals pipeline and its control plane.

HTTP transport settings live with the client (see services/sec_edgar_client.py).
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


@dataclass
class EdgarSettings:
    data_dir: str = "./data/edgar"

    quarters_to_keep: int = 12
    years_to_keep: int = 4

    directory_ttl_hours: float = 24.0
    not_found_log_cooldown_minutes: float = 10.0

    max_parallel_jobs: int = 2
    job_delay_ms: int = 400
    max_queue: int = 100
    not_found_cooldown_minutes: float = 60.0

    refresh_days_watched: int = 1
    refresh_days_active: int = 7
    refresh_days_default: int = 30

    sweep_limit: int = 250
    bootstrap_batch_size: int = 50
    worker_min_ms: int = 1500
    worker_max_ms: int = 2500
    worker_backoff_minutes: float = 15.0
    pause_after_rate_limits: int = 1

    snapshot_ttl_hours: float = 24.0
    freshness_max_age_days: float = 90.0


def load_settings() -> EdgarSettings:
    return EdgarSettings(
        data_dir=(os.getenv("EDGAR_DATA_DIR") or "./data/edgar").rstrip("/"),
        quarters_to_keep=max(4, env_int("EDGAR_QUARTERS_TO_KEEP", 12)),
        years_to_keep=max(2, env_int("EDGAR_YEARS_TO_KEEP", 4)),
        directory_ttl_hours=env_float("EDGAR_DIRECTORY_TTL_HOURS", 24.0),
        not_found_log_cooldown_minutes=env_float("EDGAR_NOT_FOUND_LOG_COOLDOWN_MINUTES", 10.0),
        max_parallel_jobs=max(1, env_int("EDGAR_MAX_PARALLEL_JOBS", 2)),
        job_delay_ms=max(0, env_int("EDGAR_JOB_DELAY_MS", 400)),
        max_queue=max(1, env_int("EDGAR_MAX_QUEUE", 100)),
        not_found_cooldown_minutes=env_float("EDGAR_NOT_FOUND_COOLDOWN_MINUTES", 60.0),
        refresh_days_watched=env_int("EDGAR_REFRESH_DAYS_WATCHED", 1),
        refresh_days_active=env_int("EDGAR_REFRESH_DAYS_ACTIVE", 7),
        refresh_days_default=env_int("EDGAR_REFRESH_DAYS_DEFAULT", 30),
        sweep_limit=max(1, env_int("EDGAR_SWEEP_LIMIT", 250)),
        bootstrap_batch_size=max(1, env_int("EDGAR_BOOTSTRAP_BATCH_SIZE", 50)),
        worker_min_ms=max(0, env_int("EDGAR_WORKER_MIN_MS", 1500)),
        worker_max_ms=max(0, env_int("EDGAR_WORKER_MAX_MS", 2500)),
        worker_backoff_minutes=env_float("EDGAR_WORKER_BACKOFF_MINUTES", 15.0),
        pause_after_rate_limits=max(1, env_int("EDGAR_PAUSE_AFTER_RATE_LIMITS", 1)),
        snapshot_ttl_hours=env_float("EDGAR_SNAPSHOT_TTL_HOURS", 24.0),
        freshness_max_age_days=env_float("EDGAR_FRESHNESS_MAX_AGE_DAYS", 90.0),
    )
