"""
Celery tasks for EDGAR fundamentals ingestion.

Every task returns a JSON-serializable dict; per-ticker failures are reported in the
result instead of failing the task.
"""

import logging
from typing import Optional

from edgar_fundamentals.worker.main import celery_app
from edgar_fundamentals.services.errors import TickerNotFoundError
from edgar_fundamentals.services.runtime import get_runtime


logger = logging.getLogger("edgar_fundamentals.worker")


@celery_app.task(bind=True, name="edgar_refresh_ticker")
def edgar_refresh_ticker(self, ticker: str, json_only: bool = False):
    """Refresh one ticker synchronously inside the worker."""
    runtime = get_runtime()
    try:
        result = runtime.workflow.process_ticker(ticker, json_only=json_only)
    except TickerNotFoundError as e:
        logger.info("refresh_not_found", extra={"ticker": ticker})
        return {"ticker": ticker.upper(), "status": "not_found", "error": str(e)}
    except Exception as e:
        logger.error("refresh_failed", extra={"ticker": ticker, "error": str(e)})
        return {"ticker": ticker.upper(), "status": "failed", "error": str(e)}

    return {
        "ticker": result.ticker,
        "status": "done",
        "periods": len(result.periods),
        "stored": result.stored,
        "filing_type": result.filing.form if result.filing else None,
        "filing_date": result.filing.filed.isoformat() if result.filing else None,
        "event": bool(result.event),
    }


@celery_app.task(bind=True, name="edgar_incremental_sweep")
def edgar_incremental_sweep(self, limit: Optional[int] = None):
    summary = get_runtime().scheduler.run_incremental_sweep(limit)
    return summary.model_dump(mode="json")


@celery_app.task(bind=True, name="edgar_bootstrap_batch")
def edgar_bootstrap_batch(self, limit: Optional[int] = None):
    summary = get_runtime().scheduler.run_bootstrap_batch(limit)
    return summary.model_dump(mode="json")


@celery_app.task(bind=True, name="edgar_seed_registry")
def edgar_seed_registry(self, priority: Optional[int] = None):
    """Register every directory ticker so sweeps and bootstrap batches can reach it."""
    runtime = get_runtime()
    count = runtime.registry.seed_from_directory(runtime.directory.entries(), priority=priority)
    return {"seeded": count}
