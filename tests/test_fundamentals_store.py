import json
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from edgar_fundamentals.database import Base
from edgar_fundamentals.models import FundamentalsPeriod
from edgar_fundamentals.services.errors import FundamentalsStorageError
from edgar_fundamentals.services.fundamentals_store import (
    FundamentalsStore,
    clone_base_candidates,
    normalize_company_name,
)
from edgar_fundamentals.services.periods import Period


class _Clock:
    def __init__(self, start=datetime(2025, 1, 10, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def session_factory(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture()
def clock():
    return _Clock()


@pytest.fixture()
def store(session_factory, tmp_path, clock):
    return FundamentalsStore(session_factory, str(tmp_path / "edgar"), snapshot_ttl=timedelta(hours=24), clock=clock)


def _periods(ticker="EX", name="Example Corp", revenue=300.0):
    return [
        Period(
            ticker=ticker,
            period_type="quarter",
            period_end=date(2024, 9, 30),
            cik="0000000001",
            company_name=name,
            revenue=revenue,
            net_income=30.0,
            flow_meta={"revenue": {"tag": "Revenues", "start": "2024-07-01"}},
        ),
        Period(
            ticker=ticker,
            period_type="year",
            period_end=date(2023, 12, 31),
            cik="0000000001",
            company_name=name,
            revenue=1200.0,
        ),
    ]


def test_repeated_upsert_never_duplicates_keys(store, session_factory, clock):
    assert store.upsert_periods(_periods()) == 2
    db = session_factory()
    first = {(r.period_type, r.period_end): (r.id, r.created_at) for r in db.query(FundamentalsPeriod).all()}
    db.close()

    clock.advance(hours=1)
    assert store.upsert_periods(_periods()) == 2

    db = session_factory()
    rows = db.query(FundamentalsPeriod).all()
    db.close()
    assert len(rows) == 2
    for r in rows:
        row_id, created_at = first[(r.period_type, r.period_end)]
        assert r.id == row_id
        assert r.created_at == created_at
        assert r.updated_at == clock.now


def test_reingest_overwrites_values_of_same_key(store):
    store.upsert_periods(_periods(revenue=300.0))
    store.upsert_periods(_periods(revenue=310.0))

    q = [p for p in store.get_periods("ex") if p.period_type == "quarter"][0]
    assert q.revenue == 310.0
    assert q.flow_meta["revenue"]["tag"] == "Revenues"


def test_get_periods_newest_first(store):
    store.upsert_periods(_periods())
    out = store.get_periods("EX")
    assert [p.period_end for p in out] == [date(2024, 9, 30), date(2023, 12, 31)]


def test_clone_ticker_is_skipped(store):
    store.upsert_periods(_periods(ticker="ADAM", name="Adam Inc."))
    assert store.upsert_periods(_periods(ticker="ADAMG", name="ADAM, INC")) == 0
    assert store.get_periods("ADAMG") == []


def test_suffix_ticker_with_different_name_is_stored(store):
    store.upsert_periods(_periods(ticker="ADAM", name="Adam Inc."))
    assert store.upsert_periods(_periods(ticker="ADAMW", name="Adam Warrant Holdings")) == 2


def test_clone_base_candidates_rules():
    assert clone_base_candidates("ADAMG") == ["ADAM"]
    assert clone_base_candidates("abcd") == ["ABC"]
    assert clone_base_candidates("ABC") == []
    assert clone_base_candidates("ABCD1") == []
    assert clone_base_candidates("BRK.B") == []
    assert normalize_company_name("  Adam,  Inc. ") == "adam inc"
    assert normalize_company_name(None) is None


def test_write_failure_is_surfaced_as_storage_error(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    bare = FundamentalsStore(sessionmaker(bind=engine), str(tmp_path / "edgar"))
    with pytest.raises(FundamentalsStorageError):
        bare.upsert_periods(_periods())


def test_snapshot_rewrite_preserves_cached_signals(store, clock):
    store.write_snapshot(_periods(), filing_signals=[{"id": "going_concern"}], filing_signals_meta={"scanned": 3})
    clock.advance(hours=2)
    path = store.write_snapshot(_periods(revenue=999.0), issuer_type="domestic")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    assert data["filing_signals"] == [{"id": "going_concern"}]
    assert data["filing_signals_meta"] == {"scanned": 3}
    assert data["issuer_type"] == "domestic"
    assert data["periods"][0]["revenue"] == 999.0
    assert data["ticker"] == "EX"


def test_snapshot_keeps_unknown_keys(store):
    path = store.write_snapshot(_periods())
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    data["data_basis"] = "edgar"
    data["screener_rank"] = 12
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)

    store.write_snapshot(_periods())
    snap = store.read_snapshot("EX")
    assert snap.data_basis == "edgar"
    assert snap.model_dump()["screener_rank"] == 12


def test_rewrite_drops_preserved_keys_with_wrong_shape(store):
    path = store.write_snapshot(_periods(), filing_signals=[{"id": "going_concern"}])
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    data["filing_signals"] = {"going_concern": True}
    data["screener_rank"] = 12
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)

    assert store.write_snapshot(_periods(revenue=999.0), issuer_type="domestic") == path
    snap = store.read_snapshot("EX")
    assert snap.filing_signals is None
    assert snap.issuer_type == "domestic"
    assert snap.periods[0]["revenue"] == 999.0
    assert snap.model_dump()["screener_rank"] == 12


def test_attach_filing_signals_requires_existing_snapshot(store):
    assert store.attach_filing_signals("EX", [{"id": "x"}]) is False
    store.write_snapshot(_periods())
    assert store.attach_filing_signals("EX", [{"id": "x"}], {"latest_form": "10-Q"}) is True
    snap = store.read_snapshot("EX")
    assert snap.filing_signals == [{"id": "x"}]
    assert snap.filing_signals_cached_at is not None


def test_load_snapshot_honours_ttl(store, clock):
    store.write_snapshot(_periods())
    assert store.has_snapshot("ex")
    assert store.load_snapshot("EX") is not None

    clock.advance(hours=25)
    assert store.load_snapshot("EX") is None
    assert store.load_snapshot("EX", max_age=timedelta(days=2)) is not None


def test_freshness_reports_latest_update(store, clock):
    empty = store.freshness("EX", timedelta(days=90))
    assert empty.rows == []
    assert empty.latest_updated is None
    assert empty.is_fresh is False

    store.upsert_periods(_periods())
    fresh = store.freshness("EX", timedelta(days=90))
    assert len(fresh.rows) == 2
    assert fresh.latest_updated == clock.now
    assert fresh.is_fresh is True

    clock.advance(days=91)
    assert store.freshness("EX", timedelta(days=90)).is_fresh is False
    assert store.freshness("EX", None).is_fresh is True
