"""
Error taxonomy for EDGAR fundamentals ingestion.

- NotFound:  TickerNotFoundError (ticker absent from the directory)
- RateLimited: SecRateLimitedError (429/503 after bounded retries)
- Transient: SecTransientError (network error / timeout after retries)
- Malformed: SecMalformedResponseError (unexpected payload shape, never retried)
- Storage:   FundamentalsStorageError (durable write failure)
"""

from __future__ import annotations

from typing import Optional


class SecEdgarError(RuntimeError):
    """Domain error for SEC EDGAR operations."""


class SecHttpError(SecEdgarError):
    """Non-2xx response surfaced to the caller with status and body."""

    def __init__(self, status: int, url: str, body: str = "") -> None:
        self.status = status
        self.url = url
        self.body_snippet = (body or "")[:500]
        super().__init__(f"EDGAR request failed {status} {url}")


class SecRateLimitedError(SecHttpError):
    """Rate-limit / unavailable responses that persisted through every retry."""


class SecTransientError(SecEdgarError):
    """Network failure or timeout that persisted through every retry."""


class SecMalformedResponseError(SecEdgarError):
    """Payload could not be decoded or did not have the expected shape."""


class TickerNotFoundError(SecEdgarError):
    """Ticker is not present in the SEC ticker directory."""

    code = "EDGAR_TICKER_NOT_FOUND"

    def __init__(self, ticker: str) -> None:
        self.ticker = ticker
        super().__init__(f"CIK not found for ticker {ticker}")


class FundamentalsStorageError(SecEdgarError):
    """Durable write of fundamentals or registry state failed."""

    def __init__(self, message: str, ticker: Optional[str] = None) -> None:
        self.ticker = ticker
        super().__init__(message)


def is_rate_limit_error(err: BaseException) -> bool:
    """True when an error means EDGAR is throttling us."""
    if isinstance(err, SecRateLimitedError):
        return True
    if isinstance(err, SecHttpError):
        return err.status in (429, 503) or "temporarily blocked" in err.body_snippet.lower()
    return False
