"""
Canonical per-period fundamentals record.

A Period is keyed by (ticker, period_type, period_end). Numeric fields are nullable:
a missing fact stays None, it is never defaulted to zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date
from typing import Any, Dict, Optional, Tuple


PERIOD_TYPES = ("quarter", "year")

PERIOD_NUMERIC_FIELDS: Tuple[str, ...] = (
    "revenue",
    "gross_profit",
    "cost_of_revenue",
    "operating_expenses",
    "operating_income",
    "income_before_income_taxes",
    "income_tax_expense_benefit",
    "net_income",
    "eps_basic",
    "eps_diluted",
    "total_assets",
    "current_assets",
    "total_liabilities",
    "current_liabilities",
    "total_equity",
    "total_debt",
    "financial_debt",
    "long_term_debt",
    "short_term_debt",
    "lease_liabilities",
    "cash_and_cash_equivalents",
    "short_term_investments",
    "accounts_receivable",
    "inventories",
    "accounts_payable",
    "interest_income",
    "interest_expense",
    "operating_cash_flow",
    "capex",
    "free_cash_flow",
    "share_based_compensation",
    "research_and_development_expenses",
    "technology_expenses",
    "software_expenses",
    "depreciation_depletion_and_amortization",
    "treasury_stock_repurchased",
    "dividends_paid",
    "shares_outstanding",
    "deposits",
    "customer_deposits",
    "total_deposits",
    "deposit_liabilities",
    "deferred_revenue",
    "contract_with_customer_liability",
)

# A quarter with none of these populated is a placeholder (e.g. shares-only "as of" rows).
MEANINGFUL_QUARTER_FIELDS: Tuple[str, ...] = (
    "revenue",
    "net_income",
    "total_assets",
    "current_assets",
    "current_liabilities",
    "accounts_receivable",
    "operating_expenses",
    "interest_income",
    "interest_expense",
    "deposits",
    "customer_deposits",
    "total_deposits",
    "deposit_liabilities",
    "operating_cash_flow",
    "capex",
    "free_cash_flow",
    "cash_and_cash_equivalents",
)

MEANINGFUL_YEAR_FIELDS: Tuple[str, ...] = ("revenue", "total_assets", "operating_cash_flow")


@dataclass
class Period:
    ticker: str
    period_type: str
    period_end: date
    cik: Optional[str] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None
    sic: Optional[int] = None
    sic_description: Optional[str] = None
    filed_date: Optional[date] = None
    currency: Optional[str] = None

    revenue: Optional[float] = None
    gross_profit: Optional[float] = None
    cost_of_revenue: Optional[float] = None
    operating_expenses: Optional[float] = None
    operating_income: Optional[float] = None
    income_before_income_taxes: Optional[float] = None
    income_tax_expense_benefit: Optional[float] = None
    net_income: Optional[float] = None
    eps_basic: Optional[float] = None
    eps_diluted: Optional[float] = None
    total_assets: Optional[float] = None
    current_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    current_liabilities: Optional[float] = None
    total_equity: Optional[float] = None
    total_debt: Optional[float] = None
    financial_debt: Optional[float] = None
    long_term_debt: Optional[float] = None
    short_term_debt: Optional[float] = None
    lease_liabilities: Optional[float] = None
    cash_and_cash_equivalents: Optional[float] = None
    short_term_investments: Optional[float] = None
    accounts_receivable: Optional[float] = None
    inventories: Optional[float] = None
    accounts_payable: Optional[float] = None
    interest_income: Optional[float] = None
    interest_expense: Optional[float] = None
    operating_cash_flow: Optional[float] = None
    capex: Optional[float] = None
    free_cash_flow: Optional[float] = None
    share_based_compensation: Optional[float] = None
    research_and_development_expenses: Optional[float] = None
    technology_expenses: Optional[float] = None
    software_expenses: Optional[float] = None
    depreciation_depletion_and_amortization: Optional[float] = None
    treasury_stock_repurchased: Optional[float] = None
    dividends_paid: Optional[float] = None
    shares_outstanding: Optional[float] = None
    deposits: Optional[float] = None
    customer_deposits: Optional[float] = None
    total_deposits: Optional[float] = None
    deposit_liabilities: Optional[float] = None
    deferred_revenue: Optional[float] = None
    contract_with_customer_liability: Optional[float] = None

    # field -> {"tag", "start", "end", "filed", "form", "fy", "fp", "frame"} of the winning fact
    flow_meta: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str, date]:
        return (self.ticker, self.period_type, self.period_end)

    def has_any(self, names) -> bool:
        return any(getattr(self, n) is not None for n in names)

    def is_meaningful(self) -> bool:
        if self.period_type == "quarter":
            return self.has_any(MEANINGFUL_QUARTER_FIELDS)
        return self.has_any(MEANINGFUL_YEAR_FIELDS)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict (dates as ISO strings)."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, dict):
                value = {k: dict(v) for k, v in value.items()}
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Period":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for name in ("period_end", "filed_date"):
            if isinstance(kwargs.get(name), str):
                kwargs[name] = date.fromisoformat(kwargs[name][:10])
        kwargs["flow_meta"] = dict(kwargs.get("flow_meta") or {})
        return cls(**kwargs)
