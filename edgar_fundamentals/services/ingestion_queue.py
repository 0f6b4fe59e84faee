"""
Bounded-concurrency runner for on-demand refresh jobs.

- One job per ticker: re-enqueuing a queued or running ticker returns the existing job.
- At most `max_parallel` jobs run at once; a finished job holds its slot for `job_delay`
  seconds before the next one starts.
- The pending FIFO is capped at `max_queue`; beyond that enqueue answers "busy".
- A ticker missing from the directory is remembered as not_found for a cooldown window.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Optional

from edgar_fundamentals.schemas import JobSnapshot, JobStatus
from edgar_fundamentals.services.company_directory import normalize_ticker
from edgar_fundamentals.services.errors import TickerNotFoundError
from edgar_fundamentals.services.timeutil import utcnow


logger = logging.getLogger("edgar_fundamentals.queue")

# Runner returns the number of periods stored for the ticker.
JobRunner = Callable[[str], Optional[int]]


class IngestionQueue:
    def __init__(
        self,
        runner: JobRunner,
        max_parallel: int = 2,
        job_delay: float = 0.4,
        max_queue: int = 100,
        not_found_cooldown: timedelta = timedelta(minutes=60),
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._max_parallel = max(1, int(max_parallel))
        self._job_delay = max(0.0, float(job_delay))
        self._max_queue = max(1, int(max_queue))
        self._not_found_cooldown = not_found_cooldown
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: Deque[str] = deque()
        self._jobs: Dict[str, JobSnapshot] = {}
        self._running = 0

    def enqueue(self, ticker: str) -> JobSnapshot:
        t = normalize_ticker(ticker)
        if not t:
            raise ValueError("ticker is required")
        now = self._clock()
        with self._lock:
            existing = self._jobs.get(t)
            if existing is not None and existing.pending:
                return existing.model_copy()
            if (
                existing is not None
                and existing.status == JobStatus.NOT_FOUND
                and existing.retry_after is not None
                and now < existing.retry_after
            ):
                return existing.model_copy()
            if len(self._pending) >= self._max_queue:
                logger.warning("queue_busy", extra={"ticker": t, "queued": len(self._pending)})
                return JobSnapshot(ticker=t, status=JobStatus.BUSY, message="Refresh queue is full; try again later")

            job = JobSnapshot(
                ticker=t,
                status=JobStatus.QUEUED,
                enqueued_at=now,
                last_count=existing.last_count if existing is not None else None,
            )
            self._jobs[t] = job
            self._pending.append(t)
            self._pump_locked()
            return self._jobs[t].model_copy()

    def get_job(self, ticker: str) -> Optional[JobSnapshot]:
        with self._lock:
            job = self._jobs.get(normalize_ticker(ticker))
            return job.model_copy() if job is not None else None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "queued": len(self._pending),
                "running": self._running,
                "max_parallel": self._max_parallel,
                "max_queue": self._max_queue,
            }

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued or running; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._running == 0 and not self._pending, timeout)

    def _pump_locked(self) -> None:
        while self._running < self._max_parallel and self._pending:
            t = self._pending.popleft()
            self._jobs[t] = self._jobs[t].model_copy(
                update={"status": JobStatus.RUNNING, "started_at": self._clock()}
            )
            self._running += 1
            threading.Thread(target=self._run, args=(t,), name=f"edgar-refresh-{t}", daemon=True).start()

    def _run(self, ticker: str) -> None:
        update: Dict[str, object]
        try:
            count = self._runner(ticker)
            update = {"status": JobStatus.DONE, "last_count": count, "message": f"Stored {count or 0} periods"}
            logger.info("job_done", extra={"ticker": ticker, "count": count})
        except TickerNotFoundError as e:
            update = {
                "status": JobStatus.NOT_FOUND,
                "error": str(e),
                "retry_after": self._clock() + self._not_found_cooldown,
            }
            logger.info("job_not_found", extra={"ticker": ticker})
        except Exception as e:
            update = {"status": JobStatus.FAILED, "error": str(e)}
            logger.error("job_failed", extra={"ticker": ticker, "error": str(e)})

        update["finished_at"] = self._clock()
        with self._lock:
            self._jobs[ticker] = self._jobs[ticker].model_copy(update=update)

        if self._job_delay:
            self._sleep(self._job_delay)

        with self._lock:
            self._running -= 1
            self._pump_locked()
            if self._running == 0 and not self._pending:
                self._idle.notify_all()
