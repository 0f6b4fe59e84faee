from datetime import date

import pytest

from edgar_fundamentals.models import FundamentalsPeriod
from edgar_fundamentals.services.errors import TickerNotFoundError
from edgar_fundamentals.services.filing_workflow import (
    company_meta,
    detect_issuer_type,
    latest_relevant_filing,
    sector_from_sic,
)

from conftest import make_submissions


def test_latest_relevant_filing_ignores_other_forms():
    subs = make_submissions(
        "Apple Inc.",
        [("4", "2025-03-01", "x-1"), ("10-Q", "2025-01-31", "x-2"), ("8-K", "2025-02-20", "x-3"), ("S-8", "2025-02-25", "x-4")],
    )
    latest = latest_relevant_filing(subs)
    assert latest.form == "8-K"
    assert latest.filed == date(2025, 2, 20)
    assert latest.accession == "x-3"
    assert latest.primary_document == "8-k.htm"


def test_latest_relevant_filing_none_when_no_matches():
    assert latest_relevant_filing(make_submissions("X", [("4", "2025-03-01", "x-1")])) is None
    assert latest_relevant_filing({}) is None


def test_detect_issuer_type():
    issuer, profile = detect_issuer_type(make_submissions("TSMC", [("6-K", "2025-01-16", "t"), ("20-F", "2024-04-18", "u")]))
    assert issuer == "foreign"
    assert profile == {"annual": "20-F", "interim": "6-K", "current": "6-K"}

    issuer, profile = detect_issuer_type(make_submissions("Apple", [("10-K", "2024-11-01", "a")]))
    assert issuer == "domestic"
    assert profile["interim"] == "10-Q"


def test_company_meta_and_sector():
    meta = company_meta({"name": "Apple Inc.", "sic": "3571", "sicDescription": "Electronic Computers"})
    assert meta == {"name": "Apple Inc.", "sic": 3571, "sic_description": "Electronic Computers"}
    assert company_meta({"sic": ""})["sic"] is None
    assert sector_from_sic(3571) == "Tech/Internet"
    assert sector_from_sic(6021) == "Financials"
    assert sector_from_sic(None) == "Other"


def test_fetch_fundamentals_returns_windowed_periods(workflow):
    periods = workflow.fetch_fundamentals("aapl")
    assert [p.period_end for p in periods] == [date(2024, 9, 30), date(2024, 6, 30), date(2024, 3, 31)]
    assert periods[0].revenue == 120.0
    assert periods[0].cik == "0000320193"
    assert periods[0].sector == "Tech/Internet"
    assert periods[0].sic == 3571


def test_process_ticker_stores_and_records_filing_event(workflow, session_factory):
    result = workflow.process_ticker("AAPL")

    assert result.stored == 3
    assert result.issuer_type == "domestic"
    assert result.filing.form == "10-Q"
    assert result.event is not None
    assert result.event.filing_date == date(2025, 1, 31)

    db = session_factory()
    assert db.query(FundamentalsPeriod).filter(FundamentalsPeriod.ticker == "AAPL").count() == 3
    db.close()

    entry = workflow.registry.get_ticker("AAPL")
    assert entry.cik == "0000320193"
    assert entry.last_filing_date == date(2025, 1, 31)
    assert entry.last_filing_type == "10-Q"
    assert entry.next_check_at is not None

    snap = workflow.store.read_snapshot("AAPL")
    assert snap.issuer_type == "domestic"
    assert len(snap.periods) == 3


def test_reprocessing_same_filing_adds_no_event(workflow):
    workflow.process_ticker("AAPL")
    second = workflow.process_ticker("AAPL")
    assert second.event is None
    assert len(workflow.registry.recent_filing_events(ticker="AAPL")) == 1


def test_foreign_issuer_profile_in_snapshot(workflow):
    workflow.process_ticker("TSM")
    snap = workflow.store.read_snapshot("TSM")
    assert snap.issuer_type == "foreign"
    assert snap.filing_profile["annual"] == "20-F"


def test_json_only_leaves_database_untouched(workflow, session_factory):
    result = workflow.process_ticker("MSFT", json_only=True)

    assert result.stored == 0
    assert result.snapshot_path is not None
    assert workflow.store.has_snapshot("MSFT")
    assert workflow.registry.get_ticker("MSFT") is None
    db = session_factory()
    assert db.query(FundamentalsPeriod).count() == 0
    db.close()


def test_unknown_ticker_raises_not_found(workflow):
    with pytest.raises(TickerNotFoundError):
        workflow.process_ticker("NOPE")
