"""
Stock-split detection for share-count trends.

A split multiplies the share count and divides EPS by the same ratio while net
income stays put. Left alone, a 2:1 split reads as +100% dilution and a reverse
split reads as a huge buyback, so the guarded year-over-year share change is
nulled whenever either pattern shows up between two adjacent periods.

Thresholds are empirical and kept as overridable constants.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Sequence

from edgar_fundamentals.services.periods import Period


FORWARD_SPLIT_MIN_RATIO = 2.0
REVERSE_SPLIT_MIN_RATIO = 4.0
SPLIT_RATIO_TOLERANCE = 0.25
NET_INCOME_STABILITY = 0.35
EPS_FLOOR = 0.01

YEAR_AGO_DAYS = 365
YEAR_AGO_TOLERANCE_DAYS = 30


@dataclass(frozen=True)
class SplitThresholds:
    forward_min_ratio: float = FORWARD_SPLIT_MIN_RATIO
    reverse_min_ratio: float = REVERSE_SPLIT_MIN_RATIO
    tolerance: float = SPLIT_RATIO_TOLERANCE
    net_income_stability: float = NET_INCOME_STABILITY
    eps_floor: float = EPS_FLOOR


@dataclass(frozen=True)
class SplitSignal:
    kind: str  # "forward" | "reverse"
    ratio: float
    eps_ratio: float
    residual: float
    current_period_end: date
    prior_period_end: date
    net_income_stable: bool


@dataclass(frozen=True)
class ShareChange:
    change_qoq: Optional[float]
    change_yoy: Optional[float]
    raw_yoy: Optional[float]
    split_signal: Optional[SplitSignal]
    reverse_split_signal: Optional[SplitSignal]


def pct_change(curr: Optional[float], prev: Optional[float]) -> Optional[float]:
    """Percent change (3.0 means +3%); None when either side is missing or prev is 0."""
    if curr is None or prev is None or prev == 0:
        return None
    return (curr - prev) / abs(prev) * 100.0


def _eps_pair_ok(curr: Optional[float], prev: Optional[float], floor: float) -> bool:
    if curr is None or prev is None or curr == 0 or prev == 0:
        return False
    if math.copysign(1.0, curr) != math.copysign(1.0, prev):
        return False
    return abs(curr) >= floor and abs(prev) >= floor


def _net_income_stable(curr: Period, prev: Period, band: float) -> bool:
    if curr.net_income is None or prev.net_income is None or abs(prev.net_income) <= 1e-6:
        return False
    return abs(curr.net_income / prev.net_income - 1.0) < band


def _ordered(periods: Sequence[Period]) -> List[Period]:
    return sorted(
        (p for p in periods if p is not None and p.period_end is not None),
        key=lambda p: p.period_end,
        reverse=True,
    )


def detect_split(
    periods_desc: Sequence[Period],
    reverse: bool = False,
    thresholds: SplitThresholds = SplitThresholds(),
) -> Optional[SplitSignal]:
    """Scan adjacent pairs (newest first) and return the first split-shaped jump."""
    series = _ordered(periods_desc)
    min_ratio = thresholds.reverse_min_ratio if reverse else thresholds.forward_min_ratio
    for curr, prev in zip(series, series[1:]):
        shares_curr, shares_prev = curr.shares_outstanding, prev.shares_outstanding
        if shares_curr is None or shares_prev is None or shares_curr == 0 or shares_prev == 0:
            continue
        ratio = shares_prev / shares_curr if reverse else shares_curr / shares_prev
        if ratio < min_ratio:
            continue
        if not _eps_pair_ok(curr.eps_basic, prev.eps_basic, thresholds.eps_floor):
            continue
        eps_ratio = curr.eps_basic / prev.eps_basic
        # Forward: shares x r, EPS / r -> product ~ 1. Reverse: EPS x r -> eps_ratio / r ~ 1.
        residual = abs(eps_ratio / ratio - 1.0) if reverse else abs(ratio * eps_ratio - 1.0)
        if residual > thresholds.tolerance:
            continue
        if not _net_income_stable(curr, prev, thresholds.net_income_stability):
            continue
        return SplitSignal(
            kind="reverse" if reverse else "forward",
            ratio=ratio,
            eps_ratio=eps_ratio,
            residual=residual,
            current_period_end=curr.period_end,
            prior_period_end=prev.period_end,
            net_income_stable=True,
        )
    return None


def _year_ago(series: List[Period]) -> Optional[Period]:
    latest = series[0]
    for p in series[1:]:
        gap = (latest.period_end - p.period_end).days
        if abs(gap - YEAR_AGO_DAYS) < YEAR_AGO_TOLERANCE_DAYS:
            return p
    return series[4] if len(series) > 4 else None


def share_change_with_split_guard(
    periods: Sequence[Period], thresholds: SplitThresholds = SplitThresholds()
) -> ShareChange:
    """
    QoQ / YoY share-count change with split artifacts removed.

    `change_yoy` is None when a forward or reverse split is detected; `raw_yoy`
    keeps the unguarded value for auditing.
    """
    series = [p for p in _ordered(periods) if p.shares_outstanding is not None]
    if not series:
        return ShareChange(None, None, None, None, None)

    latest = series[0]
    prev = series[1] if len(series) > 1 else None
    change_qoq = pct_change(latest.shares_outstanding, prev.shares_outstanding if prev else None)

    year_ago = _year_ago(series)
    raw_yoy = (
        pct_change(latest.shares_outstanding, year_ago.shares_outstanding) if year_ago else change_qoq
    )

    split = detect_split(series, reverse=False, thresholds=thresholds)
    reverse_split = detect_split(series, reverse=True, thresholds=thresholds)
    change_yoy = None if (split or reverse_split) else raw_yoy
    return ShareChange(
        change_qoq=change_qoq,
        change_yoy=change_yoy,
        raw_yoy=raw_yoy,
        split_signal=split,
        reverse_split_signal=reverse_split,
    )
