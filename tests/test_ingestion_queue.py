import threading
from datetime import datetime, timedelta

from edgar_fundamentals.schemas import JobStatus
from edgar_fundamentals.services.errors import TickerNotFoundError
from edgar_fundamentals.services.ingestion_queue import IngestionQueue


class _GatedRunner:
    """Blocks every job until released; records concurrency."""

    def __init__(self):
        self.release = threading.Event()
        self.started = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, ticker):
        with self._lock:
            self.started.append(ticker)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.release.wait(timeout=5)
        with self._lock:
            self.active -= 1
        return 8


def test_enqueue_same_ticker_returns_existing_job():
    runner = _GatedRunner()
    queue = IngestionQueue(runner, max_parallel=1, job_delay=0)

    first = queue.enqueue("aapl")
    second = queue.enqueue("AAPL")
    assert second.ticker == "AAPL"
    assert second.status in (JobStatus.QUEUED, JobStatus.RUNNING)
    assert second.enqueued_at == first.enqueued_at

    runner.release.set()
    assert queue.wait_idle(timeout=5)
    assert runner.started == ["AAPL"]
    job = queue.get_job("AAPL")
    assert job.status == JobStatus.DONE
    assert job.last_count == 8
    assert job.finished_at is not None


def test_full_queue_answers_busy():
    runner = _GatedRunner()
    queue = IngestionQueue(runner, max_parallel=1, job_delay=0, max_queue=2)

    queue.enqueue("AAA")  # running
    queue.enqueue("BBB")  # queued
    queue.enqueue("CCC")  # queued
    busy = queue.enqueue("DDD")

    assert busy.status == JobStatus.BUSY
    assert not busy.pending
    assert queue.get_job("DDD") is None
    # Dedup still answers for tickers already accepted.
    assert queue.enqueue("CCC").status == JobStatus.QUEUED

    runner.release.set()
    assert queue.wait_idle(timeout=5)
    assert sorted(runner.started) == ["AAA", "BBB", "CCC"]


def test_parallelism_is_bounded():
    runner = _GatedRunner()
    queue = IngestionQueue(runner, max_parallel=2, job_delay=0)
    for t in ("A1", "B2", "C3", "D4", "E5"):
        queue.enqueue(t)

    stats = queue.stats()
    assert stats["running"] == 2
    assert stats["queued"] == 3

    runner.release.set()
    assert queue.wait_idle(timeout=5)
    assert runner.max_active <= 2
    assert len(runner.started) == 5


def test_not_found_is_cached_with_cooldown():
    calls = []
    now = [datetime(2025, 1, 1, 12, 0, 0)]

    def runner(ticker):
        calls.append(ticker)
        raise TickerNotFoundError(ticker)

    queue = IngestionQueue(runner, job_delay=0, not_found_cooldown=timedelta(minutes=60), clock=lambda: now[0])
    queue.enqueue("NOPE")
    assert queue.wait_idle(timeout=5)

    job = queue.get_job("NOPE")
    assert job.status == JobStatus.NOT_FOUND
    assert job.retry_after == now[0] + timedelta(minutes=60)

    again = queue.enqueue("NOPE")
    assert again.status == JobStatus.NOT_FOUND
    assert calls == ["NOPE"]

    now[0] += timedelta(minutes=61)
    queue.enqueue("NOPE")
    assert queue.wait_idle(timeout=5)
    assert calls == ["NOPE", "NOPE"]


def test_failed_job_does_not_block_others():
    def runner(ticker):
        if ticker == "BAD":
            raise RuntimeError("boom")
        return 4

    queue = IngestionQueue(runner, max_parallel=1, job_delay=0)
    queue.enqueue("BAD")
    queue.enqueue("GOOD")
    assert queue.wait_idle(timeout=5)

    bad = queue.get_job("BAD")
    assert bad.status == JobStatus.FAILED
    assert bad.error == "boom"
    assert queue.get_job("GOOD").status == JobStatus.DONE


def test_finished_ticker_can_be_enqueued_again():
    queue = IngestionQueue(lambda t: 1, job_delay=0)
    queue.enqueue("AAPL")
    assert queue.wait_idle(timeout=5)

    again = queue.enqueue("AAPL")
    assert again.status in (JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.DONE)
    assert queue.wait_idle(timeout=5)
    assert queue.get_job("AAPL").last_count == 1


def test_inter_completion_delay_is_applied():
    delays = []
    queue = IngestionQueue(lambda t: 1, job_delay=0.4, sleep=delays.append)
    queue.enqueue("AAPL")
    assert queue.wait_idle(timeout=5)
    assert delays == [0.4]
