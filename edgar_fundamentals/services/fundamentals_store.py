"""
Durable fundamentals storage plus the per-issuer JSON snapshot cache.

- Period rows are unique on (ticker, period_type, period_end); writes merge into the
  existing row so repeated ingestion never duplicates a key.
- Writers are serialized by a process-level lock (SQLite runs in WAL mode so readers
  are never blocked).
- {TICKER}-fundamentals.json mirrors the latest periods for fast reads and keeps
  auxiliary annotations (filing signals, issuer type) across rewrites.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edgar_fundamentals.models import FundamentalsPeriod
from edgar_fundamentals.schemas import FundamentalsSnapshotFile
from edgar_fundamentals.services.errors import FundamentalsStorageError
from edgar_fundamentals.services.periods import PERIOD_NUMERIC_FIELDS, Period
from edgar_fundamentals.services.timeutil import utcnow


logger = logging.getLogger("edgar_fundamentals.store")

SNAPSHOT_SUFFIX = "-fundamentals.json"
PERIOD_META_FIELDS = ("cik", "company_name", "sector", "sic", "sic_description", "filed_date", "currency")
_CLONE_TICKER_RE = re.compile(r"^[A-Z0-9]{4,7}$")


@dataclass(frozen=True)
class Freshness:
    rows: List[Period]
    latest_updated: Optional[datetime]
    is_fresh: bool


# ----------------------------------------------------------------------
# Clone-ticker guard helpers
# ----------------------------------------------------------------------


def normalize_company_name(name: Optional[str]) -> Optional[str]:
    cleaned = re.sub(r"[^a-z0-9]+", " ", (name or "").lower())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or None


def clone_base_candidates(ticker: str) -> List[str]:
    """
    Base tickers a suffix variant could be cloning (ADAMG -> ADAM).

    Only plain alphanumeric tickers of 4-7 characters ending in a letter qualify.
    """
    t = (ticker or "").strip().upper()
    if not _CLONE_TICKER_RE.match(t) or not t[-1].isalpha():
        return []
    base = t[:-1]
    if len(base) < 3:
        return []
    return [base]


def _row_to_period(row: FundamentalsPeriod) -> Period:
    period = Period(
        ticker=row.ticker,
        period_type=row.period_type,
        period_end=row.period_end,
        flow_meta=dict(row.flow_meta or {}),
    )
    for name in PERIOD_META_FIELDS + PERIOD_NUMERIC_FIELDS:
        setattr(period, name, getattr(row, name))
    return period


def merge_period_into_row(row: FundamentalsPeriod, period: Period, now: datetime) -> None:
    """Overwrite every value column from a freshly built period; keep id and created_at."""
    for name in PERIOD_META_FIELDS + PERIOD_NUMERIC_FIELDS:
        setattr(row, name, getattr(period, name))
    row.flow_meta = {k: dict(v) for k, v in (period.flow_meta or {}).items()}
    row.source = "edgar"
    row.updated_at = now


class FundamentalsStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        data_dir: str,
        snapshot_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
        writer_lock: Optional[threading.Lock] = None,
    ) -> None:
        self._session_factory = session_factory
        self._data_dir = data_dir
        self._snapshot_ttl = snapshot_ttl
        self._clock = clock
        self._writer_lock = writer_lock or threading.Lock()

    @property
    def data_dir(self) -> str:
        return self._data_dir

    # ------------------------------------------------------------------
    # Durable rows
    # ------------------------------------------------------------------

    def _clone_base(self, db: Session, ticker: str, company_name: Optional[str]) -> Optional[str]:
        company_key = normalize_company_name(company_name)
        if not company_key:
            return None
        for base in clone_base_candidates(ticker):
            snapshot = self.read_snapshot(base)
            if snapshot is not None and normalize_company_name(snapshot.company_name) == company_key:
                return base
            row = (
                db.query(FundamentalsPeriod.company_name)
                .filter(FundamentalsPeriod.ticker == base)
                .first()
            )
            if row is not None and normalize_company_name(row[0]) == company_key:
                return base
        return None

    def upsert_periods(self, periods: Sequence[Period]) -> int:
        """
        Insert or update periods for one issuer.

        Returns the number of rows written; 0 when the ticker is skipped as a clone.
        Raises FundamentalsStorageError when the write fails.
        """
        if not periods:
            return 0
        ticker = periods[0].ticker.upper().strip()
        company_name = periods[0].company_name

        by_key: Dict[Tuple[str, str, Any], Period] = {}
        for p in periods:
            by_key[(ticker, p.period_type, p.period_end)] = p

        with self._writer_lock:
            db = self._session_factory()
            try:
                base = self._clone_base(db, ticker, company_name)
                if base:
                    logger.info(
                        "clone_ticker_skipped",
                        extra={"ticker": ticker, "base": base, "company_name": company_name},
                    )
                    return 0

                now = self._clock()
                for (_, period_type, period_end), period in by_key.items():
                    row = (
                        db.query(FundamentalsPeriod)
                        .filter(
                            FundamentalsPeriod.ticker == ticker,
                            FundamentalsPeriod.period_type == period_type,
                            FundamentalsPeriod.period_end == period_end,
                        )
                        .first()
                    )
                    if row is None:
                        row = FundamentalsPeriod(
                            ticker=ticker,
                            period_type=period_type,
                            period_end=period_end,
                            created_at=now,
                        )
                        db.add(row)
                    merge_period_into_row(row, period, now)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("fundamentals_write_failed", extra={"ticker": ticker, "error": str(e)})
                raise FundamentalsStorageError(f"Failed to store fundamentals for {ticker}: {e}", ticker) from e
            finally:
                db.close()

        return len(by_key)

    def get_periods(self, ticker: str) -> List[Period]:
        """All stored periods for a ticker, newest first."""
        rows = self._get_rows(ticker)
        return [_row_to_period(r) for r in rows]

    def _get_rows(self, ticker: str) -> List[FundamentalsPeriod]:
        db = self._session_factory()
        try:
            return (
                db.query(FundamentalsPeriod)
                .filter(FundamentalsPeriod.ticker == (ticker or "").upper().strip())
                .order_by(FundamentalsPeriod.period_end.desc(), FundamentalsPeriod.period_type.asc())
                .all()
            )
        finally:
            db.close()

    def freshness(self, ticker: str, max_age: Optional[timedelta]) -> Freshness:
        """
        Stored rows plus whether the newest update is younger than `max_age`.

        `max_age=None` means any stored row counts as fresh.
        """
        rows = self._get_rows(ticker)
        latest = max((r.updated_at for r in rows if r.updated_at is not None), default=None)
        if latest is None:
            is_fresh = False
        elif max_age is None:
            is_fresh = True
        else:
            is_fresh = self._clock() - latest < max_age
        return Freshness(rows=[_row_to_period(r) for r in rows], latest_updated=latest, is_fresh=is_fresh)

    # ------------------------------------------------------------------
    # Snapshot file
    # ------------------------------------------------------------------

    def snapshot_path(self, ticker: str) -> str:
        return os.path.join(self._data_dir, f"{(ticker or '').upper().strip()}{SNAPSHOT_SUFFIX}")

    def has_snapshot(self, ticker: str) -> bool:
        return os.path.exists(self.snapshot_path(ticker))

    def _read_raw(self, ticker: str) -> Dict[str, Any]:
        path = self.snapshot_path(ticker)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("snapshot_read_failed", extra={"path": path, "error": str(e)})
            return {}
        return data if isinstance(data, dict) else {}

    def read_snapshot(self, ticker: str) -> Optional[FundamentalsSnapshotFile]:
        raw = self._read_raw(ticker)
        if not raw:
            return None
        try:
            return FundamentalsSnapshotFile.model_validate(raw)
        except ValidationError as e:
            logger.warning("snapshot_invalid", extra={"ticker": ticker, "error": str(e)})
            return None

    def load_snapshot(
        self, ticker: str, max_age: Optional[timedelta] = None
    ) -> Optional[FundamentalsSnapshotFile]:
        """Snapshot only while younger than its TTL (default: the store's snapshot TTL)."""
        snapshot = self.read_snapshot(ticker)
        if snapshot is None:
            return None
        ttl = self._snapshot_ttl if max_age is None else max_age
        updated = snapshot.updated_at.replace(tzinfo=None)
        if self._clock() - updated >= ttl:
            return None
        return snapshot

    def _write_raw(self, ticker: str, payload: Dict[str, Any]) -> None:
        os.makedirs(self._data_dir, exist_ok=True)
        path = self.snapshot_path(ticker)
        tmp = f"{path}.{os.getpid()}.{threading.get_ident()}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(tmp, path)

    def write_snapshot(
        self,
        periods: Sequence[Period],
        filing_signals: Optional[List[Any]] = None,
        filing_signals_meta: Optional[Dict[str, Any]] = None,
        issuer_type: Optional[str] = None,
        filing_profile: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Rewrite the issuer snapshot from `periods`.

        Annotations not supplied here keep their previously cached values.
        Returns the file path, or None when nothing was written.
        """
        if not periods:
            return None
        first = periods[0]
        ticker = first.ticker.upper().strip()
        existing = self._read_raw(ticker)
        now = self._clock()

        fresh: Dict[str, Any] = {
            "ticker": ticker,
            "cik": first.cik,
            "company_name": first.company_name,
            "sector": first.sector,
            "sic": first.sic,
            "sic_description": first.sic_description,
            "currency": first.currency,
            "updated_at": now,
            "periods": [p.to_dict() for p in periods],
        }
        if filing_signals is not None:
            fresh["filing_signals"] = filing_signals
            fresh["filing_signals_meta"] = filing_signals_meta
            fresh["filing_signals_cached_at"] = now
        if issuer_type is not None:
            fresh["issuer_type"] = issuer_type
        if filing_profile is not None:
            fresh["filing_profile"] = filing_profile
        payload: Dict[str, Any] = {**existing, **fresh}

        try:
            snapshot = FundamentalsSnapshotFile.model_validate(payload)
        except ValidationError as e:
            # Preserved keys that no longer fit the schema are dropped so the rewrite still lands.
            bad = {err["loc"][0] for err in e.errors() if err.get("loc")} - set(fresh)
            if not bad:
                raise
            logger.warning(
                "snapshot_preserved_keys_dropped",
                extra={"ticker": ticker, "keys": sorted(str(k) for k in bad)},
            )
            for key in bad:
                payload.pop(key, None)
            snapshot = FundamentalsSnapshotFile.model_validate(payload)
        try:
            self._write_raw(ticker, snapshot.model_dump(mode="json"))
        except OSError as e:
            logger.warning("snapshot_write_failed", extra={"ticker": ticker, "error": str(e)})
            return None
        return self.snapshot_path(ticker)

    def attach_filing_signals(
        self, ticker: str, signals: List[Any], meta: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Merge externally computed risk annotations into an existing snapshot."""
        existing = self._read_raw(ticker)
        if not existing:
            return False
        existing["filing_signals"] = signals
        existing["filing_signals_meta"] = meta
        existing["filing_signals_cached_at"] = self._clock().isoformat()
        try:
            snapshot = FundamentalsSnapshotFile.model_validate(existing)
            self._write_raw(ticker, snapshot.model_dump(mode="json"))
        except (OSError, ValidationError) as e:
            logger.warning("snapshot_signals_write_failed", extra={"ticker": ticker, "error": str(e)})
            return False
        return True
