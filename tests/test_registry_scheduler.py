import dataclasses
import json
import os
from datetime import date, datetime, timedelta

import pytest

from edgar_fundamentals.services.errors import (
    FundamentalsStorageError,
    SecHttpError,
    SecRateLimitedError,
)
from edgar_fundamentals.services.registry_scheduler import (
    SETTINGS_FILE_NAME,
    STATE_KEY,
    RegistryScheduler,
    SchedulerState,
)


@pytest.fixture()
def state(edgar_settings):
    return SchedulerState(os.path.join(edgar_settings.data_dir, SETTINGS_FILE_NAME))


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def scheduler(workflow, state, edgar_settings, sleeps):
    return RegistryScheduler(
        workflow,
        workflow.registry,
        workflow.store,
        state,
        dataclasses.replace(edgar_settings, worker_min_ms=1000, worker_max_ms=2000),
        sleep=sleeps.append,
        jitter=lambda lo, hi: 1.5,
    )


def _facts_calls(client):
    return [c for c in client.calls if c[0] == "facts"]


def test_incremental_sweep_processes_new_filings_and_checks_the_rest(scheduler, workflow, fake_client, sleeps):
    workflow.process_ticker("MSFT")
    workflow.registry.upsert_ticker("AAPL", priority=2)
    # MSFT was just processed; make it due again without any new filing.
    workflow.registry.upsert_ticker("MSFT", next_check_at=datetime(2000, 1, 1))
    fake_client.calls.clear()

    summary = scheduler.run_incremental_sweep()

    assert summary.due == 2
    assert summary.processed == 1
    assert summary.checked == 1
    assert summary.failed == 0
    assert [c[1] for c in _facts_calls(fake_client)] == ["0000320193"]
    # One submissions fetch per ticker, reused by the refresh itself.
    assert [c[1] for c in fake_client.calls if c[0] == "submissions"] == ["0000320193", "0000789019"]
    assert workflow.registry.get_ticker("AAPL").last_filing_date == date(2025, 1, 31)
    assert workflow.registry.get_ticker("MSFT").next_check_at > datetime(2000, 1, 1)
    # One jittered pause between the two tickers.
    assert sleeps == [1.5]


def test_missing_snapshot_forces_processing(scheduler, workflow, fake_client):
    workflow.registry.upsert_ticker("MSFT", last_filing_date=date(2025, 1, 29))
    summary = scheduler.run_incremental_sweep()
    assert summary.processed == 1
    assert workflow.store.has_snapshot("MSFT")


def test_one_failing_ticker_does_not_stop_the_sweep(scheduler, workflow, fake_client):
    workflow.registry.upsert_ticker("AAPL", priority=2)
    workflow.registry.upsert_ticker("MSFT", priority=1)
    fake_client.errors["0000320193"] = SecHttpError(500, "https://data.sec.gov/x", "oops")

    summary = scheduler.run_incremental_sweep()

    assert summary.failed == 1
    assert summary.processed == 1
    assert "AAPL" in summary.errors
    # The failing ticker is still pushed out so it is retried later, not looped.
    assert workflow.registry.get_ticker("AAPL").last_checked_at is not None
    assert workflow.registry.get_ticker("AAPL").next_check_at is not None


def test_unknown_ticker_is_skipped_and_checked(scheduler, workflow):
    workflow.registry.upsert_ticker("GONE")
    summary = scheduler.run_incremental_sweep()
    assert summary.skipped == 1
    assert workflow.registry.get_ticker("GONE").last_checked_at is not None


def test_storage_failure_leaves_registry_untouched(scheduler, workflow, monkeypatch):
    workflow.registry.upsert_ticker("AAPL")

    def failing_upsert(periods):
        raise FundamentalsStorageError("disk full", "AAPL")

    monkeypatch.setattr(workflow.store, "upsert_periods", failing_upsert)
    summary = scheduler.run_incremental_sweep()

    assert summary.failed == 1
    entry = workflow.registry.get_ticker("AAPL")
    assert entry.last_checked_at is None
    assert entry.next_check_at is None


def test_rate_limit_trips_process_wide_pause(scheduler, workflow, fake_client, state):
    workflow.registry.upsert_ticker("AAPL", priority=2)
    workflow.registry.upsert_ticker("MSFT", priority=1)
    fake_client.errors["0000320193"] = SecRateLimitedError(429, "https://data.sec.gov/x", "")

    summary = scheduler.run_incremental_sweep()

    assert summary.paused is True
    assert summary.backoff_until is not None
    assert summary.processed == 0
    assert state.is_paused()
    with open(state.path, "r", encoding="utf-8") as f:
        assert json.load(f)[STATE_KEY]["backoff_until"]

    # Later sweeps stay idle until the backoff expires.
    fake_client.calls.clear()
    again = scheduler.run_incremental_sweep()
    assert again.paused is True
    assert again.due == 0
    assert fake_client.calls == []


def test_pause_and_resume(scheduler, workflow, state):
    workflow.registry.upsert_ticker("MSFT")
    state.pause()
    assert scheduler.run_incremental_sweep().paused is True

    state.resume()
    assert scheduler.run_incremental_sweep().processed == 1


def test_expired_backoff_clears_itself(tmp_path):
    now = [datetime(2025, 1, 1, 12, 0, 0)]
    state = SchedulerState(str(tmp_path / SETTINGS_FILE_NAME), clock=lambda: now[0])
    state.trip_backoff(15)
    assert state.is_paused()

    now[0] += timedelta(minutes=16)
    assert not state.is_paused()
    assert state.load()["backoff_until"] is None


def test_state_file_keeps_other_settings(tmp_path):
    path = tmp_path / SETTINGS_FILE_NAME
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")
    SchedulerState(str(path)).pause()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["theme"] == "dark"
    assert data[STATE_KEY]["enabled"] is False


def test_bootstrap_batch_ingests_unseen_tickers(scheduler, workflow):
    workflow.registry.upsert_ticker("AAPL")
    workflow.registry.upsert_ticker("TSM")

    summary = scheduler.run_bootstrap_batch(limit=1)
    assert summary.mode == "bootstrap"
    assert summary.processed == 1
    assert workflow.store.has_snapshot("AAPL")

    summary = scheduler.run_bootstrap_batch()
    assert summary.processed == 1
    assert workflow.store.has_snapshot("TSM")
    assert scheduler.run_bootstrap_batch().due == 0
