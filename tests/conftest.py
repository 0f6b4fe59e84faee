import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from edgar_fundamentals.database import Base
from edgar_fundamentals.services.company_directory import CompanyDirectory
from edgar_fundamentals.services.filing_workflow import FilingWorkflow
from edgar_fundamentals.services.fundamentals_store import FundamentalsStore
from edgar_fundamentals.services.registry import TickerRegistry
from edgar_fundamentals.services.sec_edgar_client import normalize_cik
from edgar_fundamentals.settings import EdgarSettings


def make_submissions(name, filings, sic="3571", sic_description="Electronic Computers"):
    """filings: list of (form, filing_date, accession)."""
    return {
        "name": name,
        "sic": sic,
        "sicDescription": sic_description,
        "filings": {
            "recent": {
                "form": [f[0] for f in filings],
                "filingDate": [f[1] for f in filings],
                "accessionNumber": [f[2] for f in filings],
                "primaryDocument": [f"{f[0].lower()}.htm" for f in filings],
            }
        },
    }


def make_company_facts(name, revenue_by_quarter):
    """revenue_by_quarter: list of (start, end, value)."""
    return {
        "entityName": name,
        "facts": {
            "us-gaap": {
                "Revenues": {
                    "units": {
                        "USD": [
                            {"start": s, "end": e, "val": v, "fp": "Q1", "fy": 2024, "form": "10-Q", "filed": e}
                            for s, e, v in revenue_by_quarter
                        ]
                    }
                },
                "Assets": {
                    "units": {
                        "USD": [{"end": e, "val": 5000.0, "fp": "Q1", "fy": 2024, "form": "10-Q", "filed": e} for _, e, _ in revenue_by_quarter]
                    }
                },
            }
        },
    }


class FakeEdgarClient:
    """In-memory stand-in for SecEdgarClient, keyed by padded CIK."""

    def __init__(self):
        self.directory_rows = []
        self.submissions = {}
        self.facts = {}
        self.errors = {}
        self.calls = []

    def add_company(self, ticker, cik, name, filings, revenue_by_quarter, sic="3571"):
        padded = normalize_cik(cik)
        self.directory_rows.append([int(cik), name, ticker, "Nasdaq"])
        self.submissions[padded] = make_submissions(name, filings, sic=sic)
        self.facts[padded] = make_company_facts(name, revenue_by_quarter)

    def get_ticker_directory(self):
        self.calls.append(("directory", None))
        return {"fields": ["cik", "name", "ticker", "exchange"], "data": list(self.directory_rows)}

    def get_company_submissions(self, cik):
        padded = normalize_cik(cik)
        self.calls.append(("submissions", padded))
        if padded in self.errors:
            raise self.errors[padded]
        return self.submissions[padded]

    def get_company_facts(self, cik):
        padded = normalize_cik(cik)
        self.calls.append(("facts", padded))
        return self.facts[padded]


QUARTERS = [
    ("2024-01-01", "2024-03-31", 100.0),
    ("2024-04-01", "2024-06-30", 110.0),
    ("2024-07-01", "2024-09-30", 120.0),
]


@pytest.fixture()
def session_factory(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine)


@pytest.fixture()
def fake_client():
    client = FakeEdgarClient()
    client.add_company("AAPL", 320193, "Apple Inc.", [("10-Q", "2025-01-31", "a-1"), ("4", "2025-02-10", "a-2")], QUARTERS)
    client.add_company("MSFT", 789019, "MICROSOFT CORP", [("10-Q", "2025-01-29", "m-1")], QUARTERS)
    client.add_company("TSM", 1046179, "TAIWAN SEMICONDUCTOR", [("6-K", "2025-01-16", "t-1"), ("20-F", "2024-04-18", "t-2")], QUARTERS, sic="3674")
    return client


@pytest.fixture()
def edgar_settings(tmp_path):
    return EdgarSettings(data_dir=str(tmp_path / "edgar"), worker_min_ms=0, worker_max_ms=0)


@pytest.fixture()
def workflow(fake_client, session_factory, edgar_settings):
    directory = CompanyDirectory(fake_client, data_dir=edgar_settings.data_dir)
    store = FundamentalsStore(session_factory, edgar_settings.data_dir)
    registry = TickerRegistry(session_factory, edgar_settings)
    return FilingWorkflow(fake_client, directory, store, registry, edgar_settings)
