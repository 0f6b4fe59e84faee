"""
Collect reported XBRL facts for the curated concept catalogue.

For every candidate tag of a concept the first taxonomy (us-gaap, ifrs-full, ifrs, dei)
carrying that tag is used; within it the USD unit is preferred, otherwise the first unit
listed. Every observation is returned with its provenance. Choosing between duplicates
is left to the period builder.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from edgar_fundamentals.services.errors import SecMalformedResponseError
from edgar_fundamentals.services.xbrl_concepts import CONCEPTS, TAXONOMY_ORDER, Concept


DAYS_PER_QUARTER = 91.3


@dataclass(frozen=True)
class RawFact:
    tag: str
    concept: str
    period_type: str
    start: Optional[date]
    end: date
    filed: Optional[date]
    form: Optional[str]
    fiscal_year: Optional[int]
    fiscal_period: Optional[str]
    duration_quarters: Optional[int]
    frame: Optional[str]
    value: float
    currency: str
    taxonomy: str


def classify_period(fp: Optional[str]) -> Optional[str]:
    """
    Map a fiscal-period label to "quarter" or "year".

    Half-year labels (HY/H1/H2/6M/SR) used by foreign filers count as interim quarters.
    """
    if not fp:
        return None
    v = str(fp).upper().strip()
    if v.startswith("FY"):
        return "year"
    if v.startswith("Q"):
        return "quarter"
    if v.startswith(("HY", "H1", "H2", "6M", "SR")):
        return "quarter"
    return None


def _parse_date_safe(s: Any) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(str(s)[:10])
    except ValueError:
        return None


def _to_float(val: Any) -> Optional[float]:
    if val is None or isinstance(val, bool):
        return None
    try:
        out = float(val)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _to_int(val: Any) -> Optional[int]:
    if val is None or isinstance(val, bool):
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def duration_in_quarters(start: Optional[date], end: Optional[date]) -> Optional[int]:
    if start is None or end is None or end < start:
        return None
    return int(round((end - start).days / DAYS_PER_QUARTER))


def facts_root(company_facts: Any) -> Dict[str, Any]:
    """Return the taxonomy map of a companyfacts payload."""
    if not isinstance(company_facts, dict):
        raise SecMalformedResponseError("companyfacts payload is not a JSON object")
    root = company_facts.get("facts")
    if not isinstance(root, dict):
        raise SecMalformedResponseError("companyfacts payload has no 'facts' object")
    return root


def _find_tag(root: Dict[str, Any], tag: str) -> Optional[tuple]:
    for taxonomy in TAXONOMY_ORDER:
        space = root.get(taxonomy)
        if not isinstance(space, dict):
            continue
        fact = space.get(tag)
        if isinstance(fact, dict) and isinstance(fact.get("units"), dict) and fact["units"]:
            return taxonomy, fact["units"]
    return None


def collect_facts(company_facts: Dict[str, Any], concept: Concept) -> List[RawFact]:
    """All observations of every candidate tag for one concept, in tag order."""
    root = facts_root(company_facts)
    out: List[RawFact] = []
    for tag in concept.tags:
        found = _find_tag(root, tag)
        if not found:
            continue
        taxonomy, units = found
        unit_key = "USD" if "USD" in units else next(iter(units))
        entries = units.get(unit_key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            period_type = classify_period(entry.get("fp"))
            end = _parse_date_safe(entry.get("end"))
            value = _to_float(entry.get("val"))
            if period_type is None or end is None or value is None:
                continue
            start = _parse_date_safe(entry.get("start"))
            qtrs = _to_int(entry.get("qtrs"))
            if qtrs is None:
                qtrs = duration_in_quarters(start, end)
            out.append(
                RawFact(
                    tag=tag,
                    concept=concept.name,
                    period_type=period_type,
                    start=start,
                    end=end,
                    filed=_parse_date_safe(entry.get("filed")),
                    form=entry.get("form"),
                    fiscal_year=_to_int(entry.get("fy")),
                    fiscal_period=str(entry["fp"]).upper(),
                    duration_quarters=qtrs,
                    frame=str(entry["frame"]) if entry.get("frame") is not None else None,
                    value=value,
                    currency=unit_key,
                    taxonomy=taxonomy,
                )
            )
    return out


def collect_all(
    company_facts: Dict[str, Any], concepts: Iterable[Concept] = CONCEPTS
) -> Dict[str, List[RawFact]]:
    facts_root(company_facts)
    return {c.name: collect_facts(company_facts, c) for c in concepts}
