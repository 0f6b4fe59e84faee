"""
Ticker -> CIK resolution against the SEC ticker/exchange directory.

The directory is fetched once and cached in memory for a TTL (24h by default).
When the remote fetch fails, a local copy of company_tickers_exchange.json is used
instead, so a cold start without network access still resolves known tickers.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from edgar_fundamentals.services.errors import SecEdgarError, TickerNotFoundError
from edgar_fundamentals.services.sec_edgar_client import SecEdgarClient, normalize_cik


logger = logging.getLogger("edgar_fundamentals.company_directory")

DIRECTORY_FILE_NAME = "company_tickers_exchange.json"


@dataclass(frozen=True)
class CompanyRef:
    ticker: str
    cik: str
    name: Optional[str] = None
    exchange: Optional[str] = None


def normalize_ticker(ticker: Optional[str]) -> str:
    return (ticker or "").upper().strip()


def parse_directory(payload: Dict[str, Any]) -> Dict[str, CompanyRef]:
    """
    Build a ticker index from either directory format SEC publishes.

    - company_tickers_exchange.json: {"fields": [...], "data": [[cik, name, ticker, exchange], ...]}
    - company_tickers.json: {"0": {"cik_str": ..., "ticker": ..., "title": ...}, ...}

    First occurrence wins when a ticker is listed twice.
    """
    index: Dict[str, CompanyRef] = {}
    if not isinstance(payload, dict):
        return index

    fields = payload.get("fields")
    rows = payload.get("data")
    if isinstance(fields, list) and isinstance(rows, list):
        try:
            cik_idx = fields.index("cik")
            ticker_idx = fields.index("ticker")
        except ValueError:
            return index
        name_idx = fields.index("name") if "name" in fields else None
        exchange_idx = fields.index("exchange") if "exchange" in fields else None
        for row in rows:
            if not isinstance(row, list) or len(row) <= max(cik_idx, ticker_idx):
                continue
            ticker = normalize_ticker(str(row[ticker_idx] or ""))
            cik = normalize_cik(row[cik_idx])
            if not ticker or not cik or ticker in index:
                continue
            index[ticker] = CompanyRef(
                ticker=ticker,
                cik=cik,
                name=row[name_idx] if name_idx is not None and name_idx < len(row) else None,
                exchange=row[exchange_idx] if exchange_idx is not None and exchange_idx < len(row) else None,
            )
        return index

    for row in payload.values():
        if not isinstance(row, dict):
            continue
        ticker = normalize_ticker(str(row.get("ticker") or ""))
        cik = normalize_cik(row.get("cik_str"))
        if not ticker or not cik or ticker in index:
            continue
        index[ticker] = CompanyRef(ticker=ticker, cik=cik, name=row.get("title"), exchange=None)
    return index


class CompanyDirectory:
    """Cached ticker directory with local-file fallback and throttled not-found logging."""

    def __init__(
        self,
        client: SecEdgarClient,
        data_dir: Optional[str] = None,
        ttl: timedelta = timedelta(hours=24),
        not_found_log_cooldown: timedelta = timedelta(minutes=10),
        local_paths: Optional[Sequence[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._data_dir = data_dir
        self._ttl = ttl.total_seconds()
        self._log_cooldown = not_found_log_cooldown.total_seconds()
        if local_paths is None:
            local_paths = [os.path.join(data_dir, DIRECTORY_FILE_NAME)] if data_dir else []
        self._local_paths = list(local_paths)
        self._clock = clock

        self._lock = threading.Lock()
        self._index: Optional[Dict[str, CompanyRef]] = None
        self._fetched_at = 0.0
        self._not_found_logged: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_local(self) -> Optional[Dict[str, CompanyRef]]:
        for path in self._local_paths:
            if not os.path.exists(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    index = parse_directory(json.load(f))
            except (OSError, ValueError) as e:
                logger.warning("directory_local_read_failed", extra={"path": path, "error": str(e)})
                continue
            if index:
                logger.warning("directory_local_fallback", extra={"path": path, "rows": len(index)})
                return index
        return None

    def _save_local(self, payload: Dict[str, Any]) -> None:
        if not self._data_dir:
            return
        path = os.path.join(self._data_dir, DIRECTORY_FILE_NAME)
        try:
            os.makedirs(self._data_dir, exist_ok=True)
            tmp = path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp, path)
        except OSError as e:
            logger.warning("directory_local_write_failed", extra={"path": path, "error": str(e)})

    def _ensure_loaded(self) -> Dict[str, CompanyRef]:
        with self._lock:
            now = self._clock()
            if self._index is not None and now - self._fetched_at < self._ttl:
                return self._index

            try:
                payload = self._client.get_ticker_directory()
                index = parse_directory(payload)
                if not index:
                    raise SecEdgarError("Ticker directory payload contained no rows")
                logger.info("directory_fetched", extra={"rows": len(index)})
                self._save_local(payload)
            except SecEdgarError as e:
                logger.warning("directory_fetch_failed", extra={"error": str(e)})
                if self._index is not None:
                    # Keep serving the expired copy; retry after another TTL.
                    self._fetched_at = now
                    return self._index
                index = self._load_local()
                if index is None:
                    raise

            self._index = index
            self._fetched_at = now
            return index

    def invalidate(self) -> None:
        with self._lock:
            self._index = None
            self._fetched_at = 0.0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _log_not_found(self, ticker: str) -> None:
        now = self._clock()
        with self._lock:
            last = self._not_found_logged.get(ticker)
            if last is not None and now - last < self._log_cooldown:
                return
            self._not_found_logged[ticker] = now
        logger.error("ticker_not_found", extra={"ticker": ticker})

    def lookup(self, ticker: str) -> Optional[CompanyRef]:
        """Case-insensitive lookup; None when the ticker is unknown."""
        key = normalize_ticker(ticker)
        if not key:
            return None
        ref = self._ensure_loaded().get(key)
        if ref is None:
            self._log_not_found(key)
        return ref

    def resolve(self, ticker: str) -> CompanyRef:
        ref = self.lookup(ticker)
        if ref is None:
            raise TickerNotFoundError(normalize_ticker(ticker))
        return ref

    def entries(self) -> List[CompanyRef]:
        return sorted(self._ensure_loaded().values(), key=lambda r: r.ticker)
