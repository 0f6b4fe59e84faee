"""
End-to-end ingestion for one ticker.

resolve -> submissions (company meta, latest filing) -> companyfacts -> periods
-> durable upsert + snapshot -> registry update -> filing event when a newer filing appeared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from edgar_fundamentals.schemas import FilingEventOut
from edgar_fundamentals.services.company_directory import CompanyDirectory, CompanyRef, normalize_ticker
from edgar_fundamentals.services.fundamentals_store import FundamentalsStore
from edgar_fundamentals.services.period_builder import normalize_company_facts
from edgar_fundamentals.services.periods import Period
from edgar_fundamentals.services.registry import TickerRegistry
from edgar_fundamentals.services.sec_edgar_client import SecEdgarClient
from edgar_fundamentals.services.timeutil import utcnow
from edgar_fundamentals.settings import EdgarSettings


logger = logging.getLogger("edgar_fundamentals.workflow")

RELEVANT_FORMS = ("10-K", "10-Q", "8-K", "6-K", "20-F", "DEF 14A")

DEFAULT_SECTOR = "Other"

_SIC_SECTORS: Tuple[Tuple[str, Tuple[Tuple[int, int], ...]], ...] = (
    ("Real Estate", ((6500, 6599), (6798, 6798))),
    ("Biotech/Pharma", ((2830, 2839), (3840, 3849), (8000, 8099))),
    ("Tech/Internet", ((3570, 3579), (3670, 3679), (4800, 4899), (7370, 7389), (3600, 3699))),
    ("Energy/Materials", ((100, 1499), (2900, 2999), (3300, 3399))),
    ("Financials", ((6000, 6499), (6700, 6797))),
    ("Consumer & Services", ((5000, 5999), (7000, 7299), (7400, 7999), (8100, 8999))),
    ("Industrial/Cyclical", ((1500, 4999),)),
)


@dataclass(frozen=True)
class FilingMeta:
    form: str
    filed: date
    accession: Optional[str] = None
    primary_document: Optional[str] = None


@dataclass
class ProcessResult:
    ticker: str
    cik: str
    periods: List[Period] = field(default_factory=list)
    stored: int = 0
    snapshot_path: Optional[str] = None
    filing: Optional[FilingMeta] = None
    issuer_type: Optional[str] = None
    event: Optional[FilingEventOut] = None


def sector_from_sic(sic: Optional[int]) -> str:
    """Coarse sector bucket from the SIC code; first matching range wins."""
    if sic is None:
        return DEFAULT_SECTOR
    for sector, ranges in _SIC_SECTORS:
        for lo, hi in ranges:
            if lo <= sic <= hi:
                return sector
    return DEFAULT_SECTOR


def company_meta(submissions: Dict[str, Any]) -> Dict[str, Any]:
    sic_raw = submissions.get("sic")
    try:
        sic = int(sic_raw) if sic_raw not in (None, "") else None
    except (TypeError, ValueError):
        sic = None
    return {
        "name": submissions.get("name") or None,
        "sic": sic,
        "sic_description": submissions.get("sicDescription") or None,
    }


def _parse_filing_date(value: Any) -> Optional[date]:
    try:
        return date.fromisoformat(str(value)[:10]) if value else None
    except ValueError:
        return None


def _recent_filings(submissions: Dict[str, Any]) -> Dict[str, List[Any]]:
    recent = (submissions.get("filings") or {}).get("recent") or {}
    return recent if isinstance(recent, dict) else {}


def detect_issuer_type(submissions: Dict[str, Any]) -> Tuple[str, Dict[str, Optional[str]]]:
    """Foreign private issuers file 20-F / 6-K instead of 10-K / 10-Q."""
    forms = [str(f or "").upper() for f in _recent_filings(submissions).get("form") or []]
    has_20f = any(f.startswith("20-F") for f in forms)
    has_6k = any(f.startswith("6-K") for f in forms)
    if has_20f or has_6k:
        return "foreign", {"annual": "20-F" if has_20f else None, "interim": "6-K" if has_6k else None, "current": "6-K"}
    return "domestic", {"annual": "10-K", "interim": "10-Q", "current": "8-K"}


def latest_relevant_filing(
    submissions: Dict[str, Any], forms: Tuple[str, ...] = RELEVANT_FORMS
) -> Optional[FilingMeta]:
    recent = _recent_filings(submissions)
    form_list = recent.get("form") or []
    dates = recent.get("filingDate") or []
    accessions = recent.get("accessionNumber") or []
    documents = recent.get("primaryDocument") or []

    best: Optional[FilingMeta] = None
    for i, form in enumerate(form_list):
        if form not in forms:
            continue
        filed = _parse_filing_date(dates[i] if i < len(dates) else None)
        if filed is None:
            continue
        if best is None or filed > best.filed:
            best = FilingMeta(
                form=form,
                filed=filed,
                accession=accessions[i] if i < len(accessions) else None,
                primary_document=documents[i] if i < len(documents) else None,
            )
    return best


class FilingWorkflow:
    def __init__(
        self,
        client: SecEdgarClient,
        directory: CompanyDirectory,
        store: FundamentalsStore,
        registry: TickerRegistry,
        settings: Optional[EdgarSettings] = None,
    ) -> None:
        self.client = client
        self.directory = directory
        self.store = store
        self.registry = registry
        self.settings = settings or EdgarSettings()

    def latest_filing(self, ticker: str) -> Tuple[Optional[FilingMeta], Dict[str, Any]]:
        """Newest relevant filing plus the submissions index it was read from."""
        company = self.directory.resolve(ticker)
        submissions = self.client.get_company_submissions(company.cik)
        return latest_relevant_filing(submissions), submissions

    def fetch_fundamentals(
        self,
        ticker: str,
        company: Optional[CompanyRef] = None,
        submissions: Optional[Dict[str, Any]] = None,
    ) -> List[Period]:
        """Resolve, fetch and normalize one issuer's facts into the windowed period list."""
        company = company or self.directory.resolve(ticker)
        if submissions is None:
            submissions = self.client.get_company_submissions(company.cik)
        meta = company_meta(submissions)
        facts = self.client.get_company_facts(company.cik)
        periods = normalize_company_facts(
            facts,
            ticker=company.ticker,
            cik=company.cik,
            company_name=meta["name"] or facts.get("entityName") or company.name,
            sector=sector_from_sic(meta["sic"]),
            sic=meta["sic"],
            sic_description=meta["sic_description"],
            quarters_to_keep=self.settings.quarters_to_keep,
            years_to_keep=self.settings.years_to_keep,
        )
        if not periods:
            logger.warning("no_periods_parsed", extra={"ticker": company.ticker, "cik": company.cik})
        return periods

    def process_ticker(
        self,
        ticker: str,
        filing: Optional[FilingMeta] = None,
        create_event: bool = True,
        json_only: bool = False,
        submissions: Optional[Dict[str, Any]] = None,
    ) -> ProcessResult:
        """
        Refresh one ticker end to end.

        `json_only` rewrites the snapshot file and leaves the database untouched.
        `submissions` skips the index fetch when the caller already holds it.
        Raises TickerNotFoundError, SecEdgarError subclasses or FundamentalsStorageError.
        """
        t = normalize_ticker(ticker)
        if not t:
            raise ValueError("ticker is required")
        now = utcnow()
        company = self.directory.resolve(t)
        existing = None if json_only else self.registry.get_ticker(t)

        if submissions is None:
            submissions = self.client.get_company_submissions(company.cik)
        latest = filing or latest_relevant_filing(submissions)
        issuer_type, filing_profile = detect_issuer_type(submissions)
        periods = self.fetch_fundamentals(t, company=company, submissions=submissions)

        result = ProcessResult(ticker=t, cik=company.cik, periods=periods, filing=latest, issuer_type=issuer_type)

        if json_only:
            result.snapshot_path = self.store.write_snapshot(
                periods, issuer_type=issuer_type, filing_profile=filing_profile
            )
            return result

        result.stored = self.store.upsert_periods(periods)
        if result.stored:
            result.snapshot_path = self.store.write_snapshot(
                periods, issuer_type=issuer_type, filing_profile=filing_profile
            )

        self.registry.upsert_ticker(
            t,
            cik=company.cik,
            company_name=periods[0].company_name if periods else company.name,
            last_checked_at=now,
            last_filing_date=latest.filed if latest else None,
            last_filing_type=latest.form if latest else None,
            is_active=True,
        )
        self.registry.mark_checked(t, now)

        previous = existing.last_filing_date if existing is not None else None
        if create_event and latest is not None and (previous is None or latest.filed > previous):
            result.event = self.registry.record_filing_event(
                t,
                filing_type=latest.form,
                filing_date=latest.filed,
                accession=latest.accession,
                headline=f"New {latest.form} filed",
            )

        logger.info(
            "ticker_processed",
            extra={
                "ticker": t,
                "cik": company.cik,
                "periods": len(periods),
                "stored": result.stored,
                "filing": latest.form if latest else None,
            },
        )
        return result
