"""
Registry-driven background refresh.

Incremental sweep: for each due ticker, look at its latest relevant filing and only
re-ingest when that filing is newer than what the registry knows (or no snapshot exists
yet); otherwise just record the check. Bootstrap batch: ingest tickers never ingested.

A rate-limit burst pauses the whole scheduler until a backoff time, persisted in
settings.json so every worker process sees it. Pausing only stops new tickers from
starting; the ticker in flight finishes.
"""

from __future__ import annotations

import json
import logging
import os
import random
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from edgar_fundamentals.schemas import RegistryEntry, SweepSummary
from edgar_fundamentals.services.errors import (
    FundamentalsStorageError,
    TickerNotFoundError,
    is_rate_limit_error,
)
from edgar_fundamentals.services.filing_workflow import FilingWorkflow
from edgar_fundamentals.services.fundamentals_store import FundamentalsStore
from edgar_fundamentals.services.registry import TickerRegistry
from edgar_fundamentals.services.timeutil import utcnow
from edgar_fundamentals.settings import EdgarSettings


logger = logging.getLogger("edgar_fundamentals.scheduler")

SETTINGS_FILE_NAME = "settings.json"
STATE_KEY = "edgar_worker"


class SchedulerState:
    """Process-wide pause flag and rate-limit backoff, shared through a JSON file."""

    def __init__(self, path: str, clock: Callable[[], datetime] = utcnow) -> None:
        self.path = path
        self._clock = clock
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("scheduler_state_read_failed", extra={"path": self.path, "error": str(e)})
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, state: Dict[str, Any]) -> None:
        data = self._read_all()
        data[STATE_KEY] = state
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    def load(self) -> Dict[str, Any]:
        """Current state; an elapsed backoff is cleared on read."""
        with self._lock:
            state = dict(self._read_all().get(STATE_KEY) or {})
            state.setdefault("enabled", True)
            until = _parse_dt(state.get("backoff_until"))
            if until is not None and until <= self._clock():
                state["backoff_until"] = None
                self._write(state)
                logger.info("scheduler_backoff_expired", extra={"backoff_until": until.isoformat()})
            return state

    def backoff_until(self) -> Optional[datetime]:
        return _parse_dt(self.load().get("backoff_until"))

    def is_paused(self) -> bool:
        state = self.load()
        return not state.get("enabled", True) or _parse_dt(state.get("backoff_until")) is not None

    def pause(self) -> None:
        self._update(enabled=False)
        logger.info("scheduler_paused")

    def resume(self) -> None:
        self._update(enabled=True, backoff_until=None)
        logger.info("scheduler_resumed")

    def trip_backoff(self, minutes: float) -> datetime:
        until = self._clock() + timedelta(minutes=minutes)
        self._update(backoff_until=until.isoformat())
        logger.warning("scheduler_backoff_tripped", extra={"backoff_until": until.isoformat()})
        return until

    def _update(self, **changes: Any) -> None:
        with self._lock:
            state = dict(self._read_all().get(STATE_KEY) or {})
            state.setdefault("enabled", True)
            state.update(changes)
            self._write(state)


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value)).replace(tzinfo=None)
    except ValueError:
        return None


class RegistryScheduler:
    def __init__(
        self,
        workflow: FilingWorkflow,
        registry: TickerRegistry,
        store: FundamentalsStore,
        state: SchedulerState,
        settings: Optional[EdgarSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.workflow = workflow
        self.registry = registry
        self.store = store
        self.state = state
        self.settings = settings or EdgarSettings()
        self._sleep = sleep
        self._jitter = jitter

    def _pause_between_tickers(self) -> None:
        lo = self.settings.worker_min_ms / 1000.0
        hi = max(lo, self.settings.worker_max_ms / 1000.0)
        if hi > 0:
            self._sleep(self._jitter(lo, hi))

    def _mark_checked_quietly(self, ticker: str) -> None:
        try:
            self.registry.mark_checked(ticker)
        except FundamentalsStorageError as e:
            logger.error("registry_mark_failed", extra={"ticker": ticker, "error": str(e)})

    def _incremental_step(self, entry: RegistryEntry) -> str:
        latest, submissions = self.workflow.latest_filing(entry.ticker)
        is_new = latest is not None and (
            entry.last_filing_date is None or latest.filed > entry.last_filing_date
        )
        if is_new or not self.store.has_snapshot(entry.ticker):
            self.workflow.process_ticker(entry.ticker, filing=latest, submissions=submissions)
            return "processed"
        self.registry.mark_checked(entry.ticker)
        return "checked"

    def _bootstrap_step(self, entry: RegistryEntry) -> str:
        self.workflow.process_ticker(entry.ticker)
        return "processed"

    def _run(
        self, mode: str, entries: List[RegistryEntry], step: Callable[[RegistryEntry], str]
    ) -> SweepSummary:
        summary = SweepSummary(mode=mode, due=len(entries))
        rate_limited_streak = 0

        for i, entry in enumerate(entries):
            if self.state.is_paused():
                summary.paused = True
                summary.backoff_until = self.state.backoff_until()
                break
            ticker = entry.ticker
            try:
                outcome = step(entry)
                rate_limited_streak = 0
                if outcome == "processed":
                    summary.processed += 1
                else:
                    summary.checked += 1
            except FundamentalsStorageError as e:
                # Registry left untouched so the next sweep retries this ticker.
                summary.failed += 1
                summary.errors[ticker] = str(e)
                logger.warning("sweep_ticker_storage_failed", extra={"ticker": ticker, "mode": mode, "error": str(e)})
            except TickerNotFoundError as e:
                summary.skipped += 1
                summary.errors[ticker] = str(e)
                self._mark_checked_quietly(ticker)
            except Exception as e:
                summary.failed += 1
                summary.errors[ticker] = str(e)
                logger.warning("sweep_ticker_failed", extra={"ticker": ticker, "mode": mode, "error": str(e)})
                self._mark_checked_quietly(ticker)
                if is_rate_limit_error(e):
                    rate_limited_streak += 1
                    if rate_limited_streak >= self.settings.pause_after_rate_limits:
                        summary.paused = True
                        summary.backoff_until = self.state.trip_backoff(self.settings.worker_backoff_minutes)
                        break

            if i < len(entries) - 1:
                self._pause_between_tickers()

        logger.info(
            "sweep_finished",
            extra={
                "mode": mode,
                "due": summary.due,
                "processed": summary.processed,
                "checked": summary.checked,
                "failed": summary.failed,
                "paused": summary.paused,
            },
        )
        return summary

    def _paused_summary(self, mode: str) -> Optional[SweepSummary]:
        if not self.state.is_paused():
            return None
        logger.info("sweep_skipped_paused", extra={"mode": mode})
        return SweepSummary(mode=mode, paused=True, backoff_until=self.state.backoff_until())

    def run_incremental_sweep(self, limit: Optional[int] = None) -> SweepSummary:
        paused = self._paused_summary("incremental")
        if paused is not None:
            return paused
        due = self.registry.tickers_due_for_check(limit or self.settings.sweep_limit)
        return self._run("incremental", due, self._incremental_step)

    def run_bootstrap_batch(self, limit: Optional[int] = None) -> SweepSummary:
        paused = self._paused_summary("bootstrap")
        if paused is not None:
            return paused
        entries = self.registry.tickers_for_bootstrap(
            limit or self.settings.bootstrap_batch_size, has_snapshot=self.store.has_snapshot
        )
        return self._run("bootstrap", entries, self._bootstrap_step)
