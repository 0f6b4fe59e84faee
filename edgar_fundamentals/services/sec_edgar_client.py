"""
SEC EDGAR client for XBRL fundamentals ingestion.

Implements:
- Ticker/exchange directory fetch (company_tickers_exchange.json)
- Company submissions fetch (filing index + SIC metadata)
- Company facts fetch (XBRL companyfacts)

Complies with SEC guidance on automated access:
- User-Agent header with contact info (required)
- One pacing gate shared by every caller in the process (default 1 in-flight, 400ms spacing)
- Exponential backoff + bounded retry on 429/503 and network errors

References:
- Accessing EDGAR Data: https://www.sec.gov/search-filings/edgar-search-assistance/accessing-edgar-data
- Developer Resources: https://www.sec.gov/about/developer-resources
- data.sec.gov landing: https://data.sec.gov/
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

import requests

from edgar_fundamentals.services.errors import (
    SecEdgarError,
    SecHttpError,
    SecMalformedResponseError,
    SecRateLimitedError,
    SecTransientError,
)
from edgar_fundamentals.settings import env_float, env_int


logger = logging.getLogger("edgar_fundamentals.sec_client")

RETRY_STATUSES = (429, 503)


def normalize_cik(cik: Any) -> Optional[str]:
    """Return a 10-digit zero-padded CIK, or None when no digits are present."""
    if cik is None:
        return None
    digits = re.sub(r"\D", "", str(cik))
    if not digits:
        return None
    return digits.zfill(10)


class PacingGate:
    """
    Process-wide outbound pacing.

    Holds a bounded number of in-flight slots and the "next allowed slot" clock.
    Every attempt (successful or not) passes through `slot()` and pushes the clock
    forward by `min_interval` seconds, so requests issued from any number of threads
    start at least `min_interval` apart.
    """

    def __init__(
        self,
        min_interval: float,
        max_in_flight: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = max(0.0, float(min_interval))
        self._slots = threading.BoundedSemaphore(max(1, int(max_in_flight)))
        self._lock = threading.Lock()
        self._next_slot = 0.0
        self._clock = clock
        self._sleep = sleep

    @contextmanager
    def slot(self) -> Iterator[None]:
        self._slots.acquire()
        try:
            self._wait_turn()
            yield
        finally:
            self._slots.release()

    def _wait_turn(self) -> None:
        with self._lock:
            now = self._clock()
            wait = self._next_slot - now
            if wait > 0:
                self._sleep(wait)
                now = self._clock()
            self._next_slot = now + self.min_interval


@dataclass
class SecClientConfig:
    user_agent: str = ""
    data_base_url: str = "https://data.sec.gov"
    directory_url: str = "https://www.sec.gov/files/company_tickers_exchange.json"
    spacing_seconds: float = 0.4
    max_in_flight: int = 1
    retry_max: int = 3
    backoff_base_seconds: float = 60.0
    timeout_seconds: float = 30.0


def load_client_config() -> SecClientConfig:
    return SecClientConfig(
        user_agent=os.getenv("SEC_EDGAR_USER_AGENT", "").strip(),
        data_base_url=(os.getenv("SEC_DATA_BASE_URL") or "https://data.sec.gov").rstrip("/"),
        directory_url=os.getenv("SEC_DIRECTORY_URL") or SecClientConfig.directory_url,
        spacing_seconds=env_float("SEC_REQUEST_SPACING_MS", 400.0) / 1000.0,
        max_in_flight=max(1, env_int("SEC_MAX_IN_FLIGHT", 1)),
        retry_max=max(1, env_int("SEC_RETRY_MAX_ATTEMPTS", 3)),
        backoff_base_seconds=env_float("SEC_BACKOFF_BASE_SECONDS", 60.0),
        timeout_seconds=env_float("SEC_REQUEST_TIMEOUT_SECONDS", 30.0),
    )


class SecEdgarClient:
    """
    Lightweight client for SEC EDGAR (data.sec.gov).

    Uses JSON endpoints:
    - files/company_tickers_exchange.json
    - submissions/CIK##########.json
    - api/xbrl/companyfacts/CIK##########.json

    Pass the same `PacingGate` to every client in a process; a client built without
    one owns a private gate.
    """

    SUBMISSIONS_PATH_TMPL = "/submissions/CIK{cik}.json"
    COMPANY_FACTS_PATH_TMPL = "/api/xbrl/companyfacts/CIK{cik}.json"

    def __init__(
        self,
        config: Optional[SecClientConfig] = None,
        gate: Optional[PacingGate] = None,
        session: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        cfg = config or load_client_config()
        if not cfg.user_agent:
            raise SecEdgarError("SEC_EDGAR_USER_AGENT is required for SEC EDGAR access")
        self._config = cfg
        self.gate = gate or PacingGate(cfg.spacing_seconds, cfg.max_in_flight)
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def config(self) -> SecClientConfig:
        return self._config

    # ------------------------------------------------------------------
    # Low-level HTTP helpers
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return self._config.backoff_base_seconds * (2 ** attempt)

    def _request(self, url: str, accept: str) -> requests.Response:
        """GET with shared pacing, retrying 429/503 and any requests-level network failure."""
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept": accept,
            "Accept-Encoding": "gzip, deflate",
        }
        retry_max = max(1, self._config.retry_max)
        last_err: Optional[BaseException] = None
        for attempt in range(retry_max):
            try:
                with self.gate.slot():
                    resp = self._session.get(url, headers=headers, timeout=self._config.timeout_seconds)
            except requests.RequestException as e:
                last_err = e
                logger.warning(
                    "sec_request_transient",
                    extra={"url": url, "attempt": attempt + 1, "error": str(e)},
                )
            else:
                status = resp.status_code
                if status in RETRY_STATUSES:
                    if attempt >= retry_max - 1:
                        raise SecRateLimitedError(status, url, resp.text)
                    logger.warning(
                        "sec_request_throttled",
                        extra={"url": url, "attempt": attempt + 1, "status": status},
                    )
                elif not 200 <= status < 300:
                    raise SecHttpError(status, url, resp.text)
                else:
                    return resp

            if attempt < retry_max - 1:
                self._sleep(self._backoff(attempt))

        raise SecTransientError(f"Failed to GET {url}: {last_err}")

    def request_json(self, url: str) -> Dict[str, Any]:
        resp = self._request(url, accept="application/json")
        try:
            payload = resp.json()
        except ValueError as e:
            raise SecMalformedResponseError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(payload, dict):
            raise SecMalformedResponseError(f"Expected a JSON object from {url}")
        return payload

    def request_text(self, url: str) -> str:
        return self._request(url, accept="*/*").text

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_ticker_directory(self) -> Dict[str, Any]:
        """
        Fetch company_tickers_exchange.json.

        Shape: {"fields": ["cik", "name", "ticker", "exchange"], "data": [[...], ...]}
        """
        return self.request_json(self._config.directory_url)

    def get_company_submissions(self, cik: Any) -> Dict[str, Any]:
        """Fetch the submissions index (recent filings, SIC, name) for a CIK."""
        padded = normalize_cik(cik)
        if not padded:
            raise SecEdgarError(f"Invalid CIK: {cik!r}")
        return self.request_json(self._config.data_base_url + self.SUBMISSIONS_PATH_TMPL.format(cik=padded))

    def get_company_facts(self, cik: Any) -> Dict[str, Any]:
        """Fetch every XBRL fact the issuer has reported."""
        padded = normalize_cik(cik)
        if not padded:
            raise SecEdgarError(f"Invalid CIK: {cik!r}")
        return self.request_json(self._config.data_base_url + self.COMPANY_FACTS_PATH_TMPL.format(cik=padded))
