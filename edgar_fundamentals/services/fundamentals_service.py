"""
Read-side summary over stored periods: TTM, headline ratios, coverage and freshness.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from edgar_fundamentals.schemas import CoreFinancialSnapshot, JobSnapshot
from edgar_fundamentals.services.company_directory import normalize_ticker
from edgar_fundamentals.services.fundamentals_store import FundamentalsStore
from edgar_fundamentals.services.ingestion_queue import IngestionQueue
from edgar_fundamentals.services.metric_deriver import free_cash_flow
from edgar_fundamentals.services.periods import Period
from edgar_fundamentals.services.split_guard import share_change_with_split_guard


DEFAULT_MAX_AGE = timedelta(days=90)

TTM_FIELDS = ("revenue", "net_income", "gross_profit", "operating_income", "operating_cash_flow", "capex")

CRITICAL_FIELDS = (
    "revenue",
    "gross_profit",
    "operating_income",
    "net_income",
    "total_assets",
    "total_liabilities",
    "operating_cash_flow",
    "capex",
)

STALE_NOTE = "Latest fundamentals are older than the freshness window; a refresh runs when new filings arrive."


def ttm_incomplete_note(count: int) -> str:
    plural = "" if count == 1 else "s"
    return f"Trailing twelve months is based on the last {count} reported quarter{plural}."


def _sum_present(values: Sequence[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    return sum(present) if present else None


def _ratio(num: Optional[float], den: Optional[float]) -> Optional[float]:
    if num is None or not den:
        return None
    return num / den


def _by_date_desc(periods: Sequence[Period]) -> List[Period]:
    return sorted(periods, key=lambda p: p.period_end, reverse=True)


def compute_ttm(periods: Sequence[Period]) -> Dict[str, Any]:
    """
    Trailing-twelve-month sums over the latest four quarters.

    Needs at least three quarters; with three the result is flagged incomplete.
    """
    quarters = [p for p in _by_date_desc(periods) if p.period_type == "quarter"][:4]
    count = len(quarters)
    if count < 3:
        return {"ttm": None, "incomplete": True, "source_count": count}

    ttm: Dict[str, Any] = {name: _sum_present([getattr(q, name) for q in quarters]) for name in TTM_FIELDS}
    ttm["period_end"] = quarters[0].period_end.isoformat()
    ttm["free_cash_flow"] = free_cash_flow(ttm["operating_cash_flow"], ttm["capex"])
    ttm["gross_margin"] = _ratio(ttm["gross_profit"], ttm["revenue"])
    ttm["net_margin"] = _ratio(ttm["net_income"], ttm["revenue"])
    ttm["operating_margin"] = _ratio(ttm["operating_income"], ttm["revenue"])
    return {"ttm": ttm, "incomplete": count < 4, "source_count": count}


def compute_snapshot(periods: Sequence[Period]) -> Dict[str, Any]:
    ordered = _by_date_desc(periods)
    quarters = [p for p in ordered if p.period_type == "quarter"]
    years = [p for p in ordered if p.period_type == "year"]
    latest_quarter = quarters[0] if quarters else None
    latest_year = years[0] if years else None
    ttm = compute_ttm(ordered)

    notes: Dict[str, str] = {}
    if ttm["incomplete"] and ttm["ttm"] is not None:
        notes["ttm"] = ttm_incomplete_note(ttm["source_count"])

    completeness_base = latest_quarter or latest_year
    available = 0
    if completeness_base is not None:
        available = sum(1 for f in CRITICAL_FIELDS if getattr(completeness_base, f) is not None)

    # Ratios read the fiscal year when available, the latest quarter otherwise.
    base = latest_year or latest_quarter
    ratios: Dict[str, Optional[float]] = {}
    if base is not None:
        if base.revenue:
            ratios["gross_margin"] = _ratio(base.gross_profit, base.revenue)
            ratios["net_margin"] = _ratio(base.net_income, base.revenue)
            ratios["operating_margin"] = _ratio(base.operating_income, base.revenue)
        if base.total_assets and base.total_liabilities is not None:
            ratios["debt_to_assets"] = base.total_liabilities / base.total_assets
        if base.total_equity:
            ratios["debt_to_equity"] = _ratio(base.total_debt, base.total_equity)
        ratios["cash_flow_coverage"] = _ratio(free_cash_flow(base.operating_cash_flow, base.capex), base.total_debt)

    share_change = share_change_with_split_guard(quarters)
    split = share_change.split_signal or share_change.reverse_split_signal

    return {
        "latest_quarter": latest_quarter.to_dict() if latest_quarter else None,
        "latest_year": latest_year.to_dict() if latest_year else None,
        "ttm": ttm["ttm"],
        "ttm_incomplete": ttm["incomplete"],
        "ttm_source_count": ttm["source_count"],
        "coverage": {"quarters": len(quarters), "years": len(years)},
        "completeness": {
            "available": available,
            "total": len(CRITICAL_FIELDS),
            "percent": available / len(CRITICAL_FIELDS) * 100,
        },
        "ratios": ratios,
        "share_change": {
            "qoq": share_change.change_qoq,
            "yoy": share_change.change_yoy,
            "raw_yoy": share_change.raw_yoy,
            "split": {
                "kind": split.kind,
                "ratio": split.ratio,
                "eps_ratio": split.eps_ratio,
                "residual": split.residual,
                "current_period_end": split.current_period_end.isoformat(),
                "prior_period_end": split.prior_period_end.isoformat(),
            }
            if split
            else None,
        },
        "notes": notes,
    }


def get_core_financial_snapshot(
    ticker: str,
    store: FundamentalsStore,
    queue: Optional[IngestionQueue] = None,
    max_age: Optional[timedelta] = DEFAULT_MAX_AGE,
    enqueue_if_stale: bool = True,
) -> CoreFinancialSnapshot:
    """
    Summary from stored rows; missing or stale data schedules a background refresh.

    The caller always gets an answer immediately, `pending` tells whether a refresh is in flight.
    """
    t = normalize_ticker(ticker)
    if not t:
        raise ValueError("ticker is required")

    fresh = store.freshness(t, max_age)
    has_data = bool(fresh.rows)

    job: Optional[JobSnapshot] = queue.get_job(t) if queue is not None else None
    if queue is not None and enqueue_if_stale and (not has_data or not fresh.is_fresh):
        job = queue.enqueue(t)

    snapshot = compute_snapshot(fresh.rows) if has_data else None
    if snapshot is not None and not fresh.is_fresh:
        snapshot["notes"]["stale"] = STALE_NOTE

    if has_data:
        source = "cache:fresh" if fresh.is_fresh else "cache:stale"
    else:
        source = "none"

    return CoreFinancialSnapshot(
        ticker=t,
        source=source,
        updated_at=fresh.latest_updated,
        snapshot=snapshot,
        pending=bool(job and job.pending),
        inactive=job is None and not has_data,
        job=job,
        periods=[p.to_dict() for p in fresh.rows],
    )
