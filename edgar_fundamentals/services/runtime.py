"""
Process-level wiring of the ingestion components.

One pacing gate, one client and one writer lock are created here and handed to every
component by reference, so queue jobs, scheduler sweeps and ad hoc calls share the
same outbound budget and the same single-writer discipline.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from edgar_fundamentals.database import SessionLocal, init_db
from edgar_fundamentals.services.company_directory import CompanyDirectory
from edgar_fundamentals.services.filing_workflow import FilingWorkflow
from edgar_fundamentals.services.fundamentals_service import get_core_financial_snapshot
from edgar_fundamentals.services.fundamentals_store import FundamentalsStore
from edgar_fundamentals.services.ingestion_queue import IngestionQueue
from edgar_fundamentals.services.registry import TickerRegistry
from edgar_fundamentals.services.registry_scheduler import (
    SETTINGS_FILE_NAME,
    RegistryScheduler,
    SchedulerState,
)
from edgar_fundamentals.services.sec_edgar_client import SecEdgarClient, load_client_config
from edgar_fundamentals.settings import EdgarSettings, load_settings


logger = logging.getLogger("edgar_fundamentals.runtime")


class EdgarRuntime:
    def __init__(
        self,
        settings: Optional[EdgarSettings] = None,
        client: Optional[SecEdgarClient] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.settings = settings or load_settings()
        self.client = client or SecEdgarClient(load_client_config())
        writer_lock = threading.Lock()

        self.directory = CompanyDirectory(
            self.client,
            data_dir=self.settings.data_dir,
            ttl=timedelta(hours=self.settings.directory_ttl_hours),
            not_found_log_cooldown=timedelta(minutes=self.settings.not_found_log_cooldown_minutes),
        )
        self.store = FundamentalsStore(
            session_factory,
            self.settings.data_dir,
            snapshot_ttl=timedelta(hours=self.settings.snapshot_ttl_hours),
            writer_lock=writer_lock,
        )
        self.registry = TickerRegistry(session_factory, self.settings, writer_lock=writer_lock)
        self.workflow = FilingWorkflow(self.client, self.directory, self.store, self.registry, self.settings)
        self.state = SchedulerState(os.path.join(self.settings.data_dir, SETTINGS_FILE_NAME))
        self.scheduler = RegistryScheduler(self.workflow, self.registry, self.store, self.state, self.settings)
        self.queue = IngestionQueue(
            self._run_refresh,
            max_parallel=self.settings.max_parallel_jobs,
            job_delay=self.settings.job_delay_ms / 1000.0,
            max_queue=self.settings.max_queue,
            not_found_cooldown=timedelta(minutes=self.settings.not_found_cooldown_minutes),
        )

    def _run_refresh(self, ticker: str) -> int:
        return self.workflow.process_ticker(ticker).stored

    def enqueue_refresh(self, ticker: str):
        return self.queue.enqueue(ticker)

    def fetch_fundamentals(self, ticker: str):
        return self.workflow.fetch_fundamentals(ticker)

    def tickers_due_for_check(self, limit: Optional[int] = None):
        return self.registry.tickers_due_for_check(limit or self.settings.sweep_limit)

    def freshness(self, ticker: str, max_age: Optional[timedelta] = None):
        if max_age is None:
            max_age = timedelta(days=self.settings.freshness_max_age_days)
        return self.store.freshness(ticker, max_age)

    def core_financial_snapshot(self, ticker: str, enqueue_if_stale: bool = True):
        return get_core_financial_snapshot(
            ticker,
            self.store,
            self.queue,
            max_age=timedelta(days=self.settings.freshness_max_age_days),
            enqueue_if_stale=enqueue_if_stale,
        )


_runtime: Optional[EdgarRuntime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> EdgarRuntime:
    """Lazily build the shared runtime (tables are created on first use)."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            init_db()
            _runtime = EdgarRuntime()
            logger.info("runtime_initialized", extra={"data_dir": _runtime.settings.data_dir})
        return _runtime
