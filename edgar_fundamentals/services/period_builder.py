"""
Merge collected XBRL facts into canonical per-period records.

Steps:
1. facts are grouped by (period_type, period_end)
2. each concept is reconciled with its resolution rule (see xbrl_concepts)
3. point-in-time totals are derived from parts (deferred revenue, deposits)
4. secondary metrics are derived (metric_deriver)
5. placeholder periods are dropped and a bounded recent window is kept
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from edgar_fundamentals.services.fact_collector import RawFact, collect_all
from edgar_fundamentals.services.metric_deriver import derive_metrics
from edgar_fundamentals.services.periods import Period
from edgar_fundamentals.services.xbrl_concepts import CONCEPTS_BY_NAME, Concept, Resolution


logger = logging.getLogger("edgar_fundamentals.period_builder")

DEFAULT_QUARTERS_TO_KEEP = 12
DEFAULT_YEARS_TO_KEEP = 4

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def is_ytd_frame(frame: Optional[str]) -> bool:
    return bool(frame) and "YTD" in frame.upper()


def is_better_flow_fact(candidate: RawFact, current: Optional[RawFact], period_type: str) -> bool:
    """
    Decide whether `candidate` should replace `current` for a flow concept.

    Quarters want the true single-quarter window: latest start, not a YTD frame.
    Years want the full fiscal year: earliest start. Ties go to the latest filing.
    """
    if current is None:
        return True
    if candidate.start != current.start:
        if candidate.start is None:
            return False
        if current.start is None:
            return True
        if period_type == "quarter":
            return candidate.start > current.start
        return candidate.start < current.start

    if period_type == "quarter":
        cand_ytd = is_ytd_frame(candidate.frame)
        curr_ytd = is_ytd_frame(current.frame)
        if cand_ytd != curr_ytd:
            return not cand_ytd

    if candidate.filed is not None and (current.filed is None or candidate.filed > current.filed):
        return True
    return False


def _larger_magnitude(current: Optional[float], candidate: float) -> bool:
    return current is None or abs(candidate) > abs(current)


def derive_point_in_time_total(
    total: Optional[float], current: Optional[float], noncurrent: Optional[float]
) -> Optional[float]:
    """Prefer the reported total, else current + noncurrent, else whichever part exists."""
    if total is not None:
        return total
    if current is not None and noncurrent is not None:
        return current + noncurrent
    if current is not None:
        return current
    return noncurrent


def _flow_meta(fact: RawFact) -> Dict[str, Any]:
    return {
        "tag": fact.tag,
        "start": fact.start.isoformat() if fact.start else None,
        "end": fact.end.isoformat(),
        "filed": fact.filed.isoformat() if fact.filed else None,
        "form": fact.form,
        "fy": fact.fiscal_year,
        "fp": fact.fiscal_period,
        "frame": fact.frame,
    }


@dataclass
class _Draft:
    period: Period
    flow_facts: Dict[str, RawFact] = field(default_factory=dict)
    ranked_tags: Dict[str, str] = field(default_factory=dict)
    parts: Dict[str, List[Optional[float]]] = field(default_factory=dict)
    bank_revenue_facts: Dict[str, RawFact] = field(default_factory=dict)

    def apply(self, concept: Concept, fact: RawFact) -> None:
        period = self.period
        name = concept.field
        value = fact.value
        rule = concept.resolution

        if rule is Resolution.FLOW:
            if is_better_flow_fact(fact, self.flow_facts.get(name), fact.period_type):
                self.flow_facts[name] = fact
                setattr(period, name, value)
                period.flow_meta[name] = _flow_meta(fact)
        elif rule is Resolution.POINT_IN_TIME:
            if _larger_magnitude(getattr(period, name), value):
                setattr(period, name, value)
        elif rule is Resolution.RANKED:
            current = getattr(period, name)
            current_tag = self.ranked_tags.get(name)
            if current is None or concept.rank(fact.tag) < concept.rank(current_tag):
                setattr(period, name, value)
                self.ranked_tags[name] = fact.tag
            elif fact.tag == current_tag and abs(value) > abs(current):
                setattr(period, name, value)
        elif rule is Resolution.SUMMED:
            if is_better_flow_fact(fact, self.bank_revenue_facts.get(fact.tag), fact.period_type):
                self.bank_revenue_facts[fact.tag] = fact
        elif rule is Resolution.PARTS:
            slots = self.parts.setdefault(name, [None, None, None])
            idx = min(concept.rank(fact.tag), 2)
            if _larger_magnitude(slots[idx], value):
                slots[idx] = value

        if fact.filed is not None and (period.filed_date is None or fact.filed < period.filed_date):
            period.filed_date = fact.filed
        if period.currency is None and _CURRENCY_RE.match(fact.currency or ""):
            period.currency = fact.currency

    def finish(self) -> Period:
        period = self.period

        for name, (total, current, noncurrent) in self.parts.items():
            setattr(period, name, derive_point_in_time_total(total, current, noncurrent))
        if period.deferred_revenue is None:
            period.deferred_revenue = period.contract_with_customer_liability
        if period.contract_with_customer_liability is None:
            period.contract_with_customer_liability = period.deferred_revenue

        if period.deposits is None:
            for alt in (period.total_deposits, period.customer_deposits, period.deposit_liabilities):
                if alt is not None:
                    period.deposits = alt
                    break

        if period.revenue is None and self.bank_revenue_facts:
            bank_sum = sum(f.value for f in self.bank_revenue_facts.values() if f.value > 0)
            if bank_sum > 0:
                period.revenue = bank_sum
        return period


def build_periods(
    facts_by_concept: Dict[str, List[RawFact]],
    ticker: str,
    cik: Optional[str] = None,
    company_name: Optional[str] = None,
    sector: Optional[str] = None,
    sic: Optional[int] = None,
    sic_description: Optional[str] = None,
) -> List[Period]:
    """Group facts into one Period per (period_type, period_end) and reconcile duplicates."""
    drafts: Dict[Tuple[str, date], _Draft] = {}
    ticker_key = ticker.upper().strip()

    for concept_name, facts in facts_by_concept.items():
        concept = CONCEPTS_BY_NAME.get(concept_name)
        if concept is None:
            continue
        for fact in facts:
            if (
                concept.resolution in (Resolution.FLOW, Resolution.SUMMED)
                and fact.period_type == "year"
                and fact.duration_quarters is not None
                and fact.duration_quarters != 4
            ):
                continue
            key = (fact.period_type, fact.end)
            draft = drafts.get(key)
            if draft is None:
                draft = _Draft(
                    Period(
                        ticker=ticker_key,
                        period_type=fact.period_type,
                        period_end=fact.end,
                        cik=cik,
                        company_name=company_name,
                        sector=sector,
                        sic=sic,
                        sic_description=sic_description,
                    )
                )
                drafts[key] = draft
            draft.apply(concept, fact)

    return [d.finish() for d in drafts.values()]


def select_recent_periods(
    periods: Iterable[Period],
    quarters_to_keep: int = DEFAULT_QUARTERS_TO_KEEP,
    years_to_keep: int = DEFAULT_YEARS_TO_KEEP,
) -> List[Period]:
    """Drop placeholder periods, then keep the most recent quarters and years (newest first)."""
    ordered = sorted(periods, key=lambda p: p.period_end, reverse=True)
    quarters = [p for p in ordered if p.period_type == "quarter" and p.is_meaningful()]
    years = [p for p in ordered if p.period_type == "year" and p.is_meaningful()]
    return quarters[: max(0, quarters_to_keep)] + years[: max(0, years_to_keep)]


def normalize_company_facts(
    company_facts: Dict[str, Any],
    ticker: str,
    cik: Optional[str] = None,
    company_name: Optional[str] = None,
    sector: Optional[str] = None,
    sic: Optional[int] = None,
    sic_description: Optional[str] = None,
    quarters_to_keep: int = DEFAULT_QUARTERS_TO_KEEP,
    years_to_keep: int = DEFAULT_YEARS_TO_KEEP,
) -> List[Period]:
    """companyfacts payload -> windowed, derived Period list."""
    facts = collect_all(company_facts)
    periods = build_periods(
        facts,
        ticker=ticker,
        cik=cik,
        company_name=company_name or company_facts.get("entityName"),
        sector=sector,
        sic=sic,
        sic_description=sic_description,
    )
    for period in periods:
        derive_metrics(period)
    selected = select_recent_periods(periods, quarters_to_keep, years_to_keep)
    logger.info(
        "periods_built",
        extra={"ticker": ticker.upper(), "candidates": len(periods), "kept": len(selected)},
    )
    return selected
