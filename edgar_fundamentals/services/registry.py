"""
Per-ticker scheduling registry and the append-only filing event log.

Each ticker carries {priority, refresh_interval_days, next_check_at}. The due query
returns active tickers whose next check has elapsed, highest priority first, then the
stalest. Checking a ticker pushes next_check_at forward by its effective interval.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edgar_fundamentals.models import EdgarTicker, FilingEvent
from edgar_fundamentals.schemas import FilingEventOut, RegistryEntry
from edgar_fundamentals.services.company_directory import CompanyRef, normalize_ticker
from edgar_fundamentals.services.errors import FundamentalsStorageError
from edgar_fundamentals.settings import EdgarSettings
from edgar_fundamentals.services.timeutil import utcnow


logger = logging.getLogger("edgar_fundamentals.registry")

_REGISTRY_FIELDS = (
    "cik",
    "company_name",
    "last_checked_at",
    "last_filing_date",
    "last_filing_type",
    "priority",
    "refresh_interval_days",
    "next_check_at",
    "is_active",
)


class TickerRegistry:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[EdgarSettings] = None,
        writer_lock: Optional[threading.Lock] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or EdgarSettings()
        self._writer_lock = writer_lock or threading.Lock()

    @contextmanager
    def _writing(self, ticker: Optional[str] = None) -> Iterator[Session]:
        with self._writer_lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("registry_write_failed", extra={"ticker": ticker, "error": str(e)})
                raise FundamentalsStorageError(f"Registry write failed: {e}", ticker) from e
            finally:
                db.close()

    # ------------------------------------------------------------------
    # Intervals
    # ------------------------------------------------------------------

    def default_refresh_days(self, priority: Optional[int]) -> int:
        p = priority or 0
        if p >= 2:
            return self._settings.refresh_days_watched
        if p == 1:
            return self._settings.refresh_days_active
        return self._settings.refresh_days_default

    def effective_refresh_days(self, row) -> int:
        if row.refresh_interval_days and row.refresh_interval_days > 0:
            return int(row.refresh_interval_days)
        return self.default_refresh_days(row.priority)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def upsert_ticker(
        self,
        ticker: str,
        cik: Optional[str] = None,
        company_name: Optional[str] = None,
        last_checked_at: Optional[datetime] = None,
        last_filing_date: Optional[date] = None,
        last_filing_type: Optional[str] = None,
        priority: Optional[int] = None,
        refresh_interval_days: Optional[int] = None,
        next_check_at: Optional[datetime] = None,
        is_active: Optional[bool] = None,
    ) -> RegistryEntry:
        """
        Create or update a registry entry.

        Arguments left as None keep whatever is already stored.
        """
        t = normalize_ticker(ticker)
        if not t:
            raise ValueError("ticker is required")
        values = {
            "cik": cik,
            "company_name": company_name,
            "last_checked_at": last_checked_at,
            "last_filing_date": last_filing_date,
            "last_filing_type": last_filing_type,
            "priority": priority,
            "refresh_interval_days": refresh_interval_days,
            "next_check_at": next_check_at,
            "is_active": is_active,
        }
        with self._writing(t) as db:
            row = db.get(EdgarTicker, t)
            if row is None:
                row = EdgarTicker(ticker=t, priority=0, is_active=True, created_at=utcnow())
                db.add(row)
            _coalesce(row, values)
            db.flush()
            entry = RegistryEntry.model_validate(row)
        return entry

    def get_ticker(self, ticker: str) -> Optional[RegistryEntry]:
        db = self._session_factory()
        try:
            row = db.get(EdgarTicker, normalize_ticker(ticker))
            return RegistryEntry.model_validate(row) if row is not None else None
        finally:
            db.close()

    def mark_checked(
        self, ticker: str, ts: Optional[datetime] = None, schedule_next: bool = True
    ) -> RegistryEntry:
        """Record a check at `ts` and push next_check_at out by the effective interval."""
        t = normalize_ticker(ticker)
        checked_at = ts or utcnow()
        with self._writing(t) as db:
            row = db.get(EdgarTicker, t)
            if row is None:
                row = EdgarTicker(ticker=t, priority=0, is_active=True, created_at=checked_at)
                db.add(row)
            row.last_checked_at = checked_at
            if schedule_next:
                row.next_check_at = checked_at + timedelta(days=self.effective_refresh_days(row))
            db.flush()
            entry = RegistryEntry.model_validate(row)
        return entry

    def seed_from_directory(
        self, refs: Iterable[CompanyRef], priority: Optional[int] = None
    ) -> int:
        """Register every directory entry; existing scheduling state is left untouched."""
        count = 0
        with self._writing() as db:
            for ref in refs:
                t = normalize_ticker(ref.ticker)
                if not t:
                    continue
                row = db.get(EdgarTicker, t)
                if row is None:
                    row = EdgarTicker(ticker=t, priority=0, is_active=True, created_at=utcnow())
                    db.add(row)
                _coalesce(row, {"cik": ref.cik, "company_name": ref.name, "priority": priority})
                count += 1
        logger.info("registry_seeded", extra={"count": count})
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def tickers_due_for_check(
        self, limit: int = 250, now: Optional[datetime] = None
    ) -> List[RegistryEntry]:
        """Active tickers whose next check has elapsed (or was never scheduled)."""
        ts = now or utcnow()
        db = self._session_factory()
        try:
            rows = (
                db.query(EdgarTicker)
                .filter(EdgarTicker.is_active.is_(True))
                .filter((EdgarTicker.next_check_at.is_(None)) | (EdgarTicker.next_check_at <= ts))
                .order_by(
                    EdgarTicker.priority.desc(),
                    EdgarTicker.next_check_at.is_(None).desc(),
                    EdgarTicker.next_check_at.asc(),
                    EdgarTicker.last_checked_at.is_(None).desc(),
                    EdgarTicker.last_checked_at.asc(),
                    EdgarTicker.ticker.asc(),
                )
                .limit(max(1, int(limit)))
                .all()
            )
            return [RegistryEntry.model_validate(r) for r in rows]
        finally:
            db.close()

    def tickers_for_bootstrap(
        self, limit: int, has_snapshot: Optional[Callable[[str], bool]] = None
    ) -> List[RegistryEntry]:
        """Active tickers never ingested: no known filing date, or no snapshot file."""
        db = self._session_factory()
        try:
            rows = (
                db.query(EdgarTicker)
                .filter(EdgarTicker.is_active.is_(True))
                .order_by(EdgarTicker.priority.desc(), EdgarTicker.ticker.asc())
                .all()
            )
            out: List[RegistryEntry] = []
            for r in rows:
                missing = r.last_filing_date is None or (has_snapshot is not None and not has_snapshot(r.ticker))
                if missing:
                    out.append(RegistryEntry.model_validate(r))
                if len(out) >= limit:
                    break
            return out
        finally:
            db.close()

    def list_active_tickers(self) -> List[str]:
        db = self._session_factory()
        try:
            rows = (
                db.query(EdgarTicker.ticker)
                .filter(EdgarTicker.is_active.is_(True))
                .order_by(EdgarTicker.ticker.asc())
                .all()
            )
            return [r[0] for r in rows]
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Filing events
    # ------------------------------------------------------------------

    def record_filing_event(
        self,
        ticker: str,
        filing_type: str,
        filing_date: date,
        accession: Optional[str] = None,
        headline: Optional[str] = None,
    ) -> FilingEventOut:
        t = normalize_ticker(ticker)
        with self._writing(t) as db:
            ev = FilingEvent(
                ticker=t,
                filing_type=filing_type,
                filing_date=filing_date,
                accession=accession,
                headline=headline or f"{t} filed {filing_type}",
                created_at=utcnow(),
            )
            db.add(ev)
            db.flush()
            out = FilingEventOut.model_validate(ev)
        logger.info(
            "filing_event_recorded",
            extra={"ticker": t, "filing_type": filing_type, "filing_date": str(filing_date)},
        )
        return out

    def recent_filing_events(
        self,
        limit: int = 50,
        since: Optional[date] = None,
        ticker: Optional[str] = None,
        filing_type: Optional[str] = None,
    ) -> List[FilingEventOut]:
        db = self._session_factory()
        try:
            q = db.query(FilingEvent)
            if since is not None:
                q = q.filter(FilingEvent.filing_date >= since)
            if ticker:
                q = q.filter(FilingEvent.ticker == normalize_ticker(ticker))
            if filing_type:
                q = q.filter(FilingEvent.filing_type == filing_type)
            rows = (
                q.order_by(FilingEvent.filing_date.desc(), FilingEvent.created_at.desc(), FilingEvent.id.desc())
                .limit(max(1, int(limit)))
                .all()
            )
            return [FilingEventOut.model_validate(r) for r in rows]
        finally:
            db.close()


def _coalesce(row: EdgarTicker, values) -> None:
    for name in _REGISTRY_FIELDS:
        value = values.get(name)
        if value is not None:
            setattr(row, name, value)
