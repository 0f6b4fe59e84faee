"""
Database models for EDGAR fundamentals ingestion.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Text,
    Float,
    JSON,
    Index,
    Boolean,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from edgar_fundamentals.database import Base


class FundamentalsPeriod(Base):
    """
    One canonical fundamentals period per (ticker, period_type, period_end).

    Rows are rewritten in place by re-ingestion of the same key; created_at is kept.
    """

    __tablename__ = "fundamentals"

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String(16), nullable=False, index=True)
    cik = Column(String(10), nullable=True, index=True)
    company_name = Column(String(255), nullable=True)
    sector = Column(String(64), nullable=True)
    sic = Column(Integer, nullable=True)
    sic_description = Column(String(255), nullable=True)

    period_type = Column(String(8), nullable=False)  # quarter | year
    period_end = Column(Date, nullable=False)
    filed_date = Column(Date, nullable=True)
    currency = Column(String(8), nullable=True)

    revenue = Column(Float, nullable=True)
    gross_profit = Column(Float, nullable=True)
    cost_of_revenue = Column(Float, nullable=True)
    operating_expenses = Column(Float, nullable=True)
    operating_income = Column(Float, nullable=True)
    income_before_income_taxes = Column(Float, nullable=True)
    income_tax_expense_benefit = Column(Float, nullable=True)
    net_income = Column(Float, nullable=True)
    eps_basic = Column(Float, nullable=True)
    eps_diluted = Column(Float, nullable=True)

    total_assets = Column(Float, nullable=True)
    current_assets = Column(Float, nullable=True)
    total_liabilities = Column(Float, nullable=True)
    current_liabilities = Column(Float, nullable=True)
    total_equity = Column(Float, nullable=True)
    total_debt = Column(Float, nullable=True)
    financial_debt = Column(Float, nullable=True)
    long_term_debt = Column(Float, nullable=True)
    short_term_debt = Column(Float, nullable=True)
    lease_liabilities = Column(Float, nullable=True)
    cash_and_cash_equivalents = Column(Float, nullable=True)
    short_term_investments = Column(Float, nullable=True)
    accounts_receivable = Column(Float, nullable=True)
    inventories = Column(Float, nullable=True)
    accounts_payable = Column(Float, nullable=True)

    interest_income = Column(Float, nullable=True)
    interest_expense = Column(Float, nullable=True)
    operating_cash_flow = Column(Float, nullable=True)
    capex = Column(Float, nullable=True)
    free_cash_flow = Column(Float, nullable=True)
    share_based_compensation = Column(Float, nullable=True)
    research_and_development_expenses = Column(Float, nullable=True)
    technology_expenses = Column(Float, nullable=True)
    software_expenses = Column(Float, nullable=True)
    depreciation_depletion_and_amortization = Column(Float, nullable=True)
    treasury_stock_repurchased = Column(Float, nullable=True)
    dividends_paid = Column(Float, nullable=True)
    shares_outstanding = Column(Float, nullable=True)

    deposits = Column(Float, nullable=True)
    customer_deposits = Column(Float, nullable=True)
    total_deposits = Column(Float, nullable=True)
    deposit_liabilities = Column(Float, nullable=True)
    deferred_revenue = Column(Float, nullable=True)
    contract_with_customer_liability = Column(Float, nullable=True)

    # Provenance of each flow value: winning tag / frame / filed date
    flow_meta = Column(JSON, nullable=True)
    source = Column(String(32), nullable=False, default="edgar")

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("ticker", "period_type", "period_end", name="ux_fundamentals_ticker_type_end"),
        Index("ix_fundamentals_ticker_period_end", "ticker", "period_end"),
    )


class EdgarTicker(Base):
    """Registry entry driving due-for-refresh scheduling."""

    __tablename__ = "edgar_tickers"

    ticker = Column(String(16), primary_key=True)
    cik = Column(String(10), nullable=True, index=True)
    company_name = Column(String(255), nullable=True)

    last_checked_at = Column(DateTime, nullable=True, index=True)
    last_filing_date = Column(Date, nullable=True, index=True)
    last_filing_type = Column(String(16), nullable=True)

    # 0 = passive universe, 1 = active, >=2 = watched
    priority = Column(Integer, nullable=False, default=0)
    refresh_interval_days = Column(Integer, nullable=True)
    next_check_at = Column(DateTime, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_edgar_tickers_due", "is_active", "priority", "next_check_at"),
    )


class FilingEvent(Base):
    """Append-only log of newly observed filings."""

    __tablename__ = "filing_events"

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String(16), nullable=False, index=True)
    filing_type = Column(String(16), nullable=False)
    filing_date = Column(Date, nullable=False)
    accession = Column(String(32), nullable=True)
    headline = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_filing_events_date", "filing_date", "created_at"),
    )
