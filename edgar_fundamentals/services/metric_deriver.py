"""
Derived fundamentals computed from a reconciled Period.

Rules are null-safe: a derived value is only filled when its inputs exist.
We do not fabricate values (no implicit zeros for missing inputs), except that
a missing debt component contributes nothing to a sum when another component
is reported.
"""

from __future__ import annotations

from typing import Optional

from edgar_fundamentals.services.periods import Period


def _sum_present(*values: Optional[float]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return float(sum(present))


def free_cash_flow(operating_cash_flow: Optional[float], capex: Optional[float]) -> Optional[float]:
    """FCF = OCF - |capex| (capex sign varies by filer)."""
    if operating_cash_flow is None or capex is None:
        return None
    return operating_cash_flow - abs(capex)


def derive_debt(period: Period) -> None:
    lt = period.long_term_debt
    st = period.short_term_debt
    lease = period.lease_liabilities
    reported_total = period.total_debt

    # Only a reported total: back out the long-term piece.
    if lt is None and reported_total is not None and st is not None:
        lt = max(0.0, reported_total - (lease or 0.0) - st)
        period.long_term_debt = lt

    period.financial_debt = _sum_present(lt, st)

    component_sum = _sum_present(lt, st, lease)
    if component_sum is None:
        period.total_debt = reported_total
    elif reported_total is None:
        period.total_debt = component_sum
    else:
        period.total_debt = max(component_sum, reported_total)


def derive_metrics(period: Period) -> Period:
    """Fill derivable fields in place and return the period."""
    if period.gross_profit is None and period.revenue is not None and period.cost_of_revenue is not None:
        period.gross_profit = period.revenue - period.cost_of_revenue

    if (
        period.operating_expenses is None
        and period.gross_profit is not None
        and period.operating_income is not None
    ):
        period.operating_expenses = period.gross_profit - period.operating_income

    fcf = free_cash_flow(period.operating_cash_flow, period.capex)
    if fcf is not None:
        period.free_cash_flow = fcf

    derive_debt(period)

    if period.technology_expenses is None:
        period.technology_expenses = _sum_present(
            period.research_and_development_expenses, period.software_expenses
        )

    return period
