"""
Curated XBRL concept catalogue.

Each concept maps an ordered list of candidate tags (US-GAAP and IFRS names mixed)
to one Period field and names the rule used to reconcile competing facts:

- FLOW: duration facts (income statement, cash flow); latest-start wins for quarters,
  earliest-start for years, then most recently filed.
- POINT_IN_TIME: balance-sheet instants; larger magnitude wins.
- RANKED: tag order is precedence (lower index wins); the same tag seen twice keeps
  the larger magnitude. Used for debt components, cash and share counts.
- SUMMED: positive values are added (bank revenue components).
- PARTS: tags are (total, current, noncurrent); the total is preferred, otherwise
  current + noncurrent.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Tuple


TAXONOMY_ORDER: Tuple[str, ...] = ("us-gaap", "ifrs-full", "ifrs", "dei")


class Resolution(enum.Enum):
    FLOW = "flow"
    POINT_IN_TIME = "point_in_time"
    RANKED = "ranked"
    SUMMED = "summed"
    PARTS = "parts"


@dataclass(frozen=True)
class Concept:
    name: str
    field: str
    tags: Tuple[str, ...]
    resolution: Resolution

    def rank(self, tag: str) -> int:
        """Index of `tag` in precedence order; unknown tags rank last."""
        try:
            return self.tags.index(tag)
        except ValueError:
            return len(self.tags)


FLOW = Resolution.FLOW
PIT = Resolution.POINT_IN_TIME
RANKED = Resolution.RANKED

# Debt component precedence. Never summed across tags.
LONG_TERM_DEBT_TAGS: Tuple[str, ...] = (
    "LongTermDebtAndCapitalLeaseObligations",
    "LongTermDebtNoncurrent",
    "DebtNoncurrent",
    "LongTermNotesPayable",
    "NotesPayableNoncurrent",
    "LongTermLoansPayable",
    "ConvertibleDebtNoncurrent",
    "LongTermBorrowings",
    "LongTermDebtFairValue",
    "LongTermDebt",
    "NoncurrentBorrowings",
    "InterestBearingBorrowingsNoncurrent",
)
SHORT_TERM_DEBT_TAGS: Tuple[str, ...] = (
    "DebtCurrent",
    "LongTermDebtCurrent",
    "ShortTermBorrowings",
    "ShortTermDebt",
    "CommercialPaper",
    "NotesPayableCurrent",
    "ConvertibleDebtCurrent",
    "CurrentBorrowings",
    "InterestBearingBorrowingsCurrent",
)
LEASE_LIABILITY_TAGS: Tuple[str, ...] = (
    "LeaseLiabilities",
    "OperatingLeaseLiability",
    "LeaseLiabilitiesNoncurrent",
    "OperatingLeaseLiabilityNoncurrent",
    "FinanceLeaseLiability",
    "FinanceLeaseLiabilityNoncurrent",
    "LeaseLiabilitiesCurrent",
    "OperatingLeaseLiabilityCurrent",
    "FinanceLeaseLiabilityCurrent",
)
TOTAL_DEBT_TAGS: Tuple[str, ...] = (
    "DebtAndCapitalLeaseObligations",
    "LongTermDebtAndCapitalLeaseObligationsIncludingCurrentMaturities",
    "DebtLongtermAndShorttermCombinedAmount",
    "Borrowings",
)


CONCEPTS: Tuple[Concept, ...] = (
    Concept("revenue", "revenue", (
        "Revenues",
        "Revenue",
        "RevenueFromContractWithCustomerExcludingAssessedTax",
        "SalesRevenueNet",
        "SalesRevenueGoodsNet",
        "SalesRevenueServicesNet",
    ), FLOW),
    Concept("bank_revenue", "bank_revenue", (
        "InterestAndDividendIncomeOperating",
        "NoninterestIncome",
        "NonInterestIncome",
    ), Resolution.SUMMED),
    Concept("gross_profit", "gross_profit", ("GrossProfit",), FLOW),
    Concept("cost_of_revenue", "cost_of_revenue", (
        "CostOfRevenue",
        "CostOfGoodsAndServicesSold",
        "CostOfSales",
        "CostOfGoodsSold",
        "CostOfGoodsSoldExcludingDepreciationDepletionAndAmortization",
        "CostOfProductsSold",
        "CostOfServices",
    ), FLOW),
    Concept("operating_expenses", "operating_expenses", (
        "OperatingExpenses",
        "OperatingExpensesTotal",
        "OperatingCostsAndExpenses",
        "CostsAndExpenses",
    ), FLOW),
    Concept("operating_income", "operating_income", (
        "OperatingIncomeLoss",
        "OperatingProfitLoss",
        "OperatingIncomeLossContinuingOperations",
    ), FLOW),
    Concept("pretax_income", "income_before_income_taxes", (
        "IncomeBeforeIncomeTaxes",
        "IncomeLossFromContinuingOperationsBeforeIncomeTaxesExtraordinaryItemsNoncontrollingInterest",
        "ProfitLossBeforeTax",
    ), FLOW),
    Concept("income_tax", "income_tax_expense_benefit", (
        "IncomeTaxExpenseBenefit",
        "IncomeTaxExpenseBenefitContinuingOperations",
    ), FLOW),
    Concept("net_income", "net_income", (
        "NetIncomeLoss",
        "ProfitLoss",
        "ProfitLossAttributableToOwnersOfParent",
        "ProfitLossAttributableToParent",
        "ProfitLossAttributableToEquityHoldersOfParent",
    ), FLOW),
    Concept("eps_basic", "eps_basic", (
        "EarningsPerShareBasic",
        "EarningsPerShareBasicAndDiluted",
        "EarningsPerShareBasicContinuingOperations",
        "BasicEarningsLossPerShare",
        "BasicEarningsLossPerShareContinuingOperations",
    ), FLOW),
    Concept("eps_diluted", "eps_diluted", (
        "EarningsPerShareDiluted",
        "EarningsPerShareDilutedContinuingOperations",
        "DilutedEarningsLossPerShare",
        "DilutedEarningsLossPerShareContinuingOperations",
    ), FLOW),
    Concept("total_assets", "total_assets", ("Assets",), PIT),
    Concept("current_assets", "current_assets", ("AssetsCurrent", "CurrentAssets"), PIT),
    Concept("total_liabilities", "total_liabilities", ("Liabilities",), PIT),
    Concept("current_liabilities", "current_liabilities", ("LiabilitiesCurrent", "CurrentLiabilities"), PIT),
    Concept("total_equity", "total_equity", (
        "StockholdersEquity",
        "StockholdersEquityIncludingPortionAttributableToNoncontrollingInterest",
        "Equity",
        "EquityAttributableToOwnersOfParent",
    ), PIT),
    Concept("total_debt", "total_debt", TOTAL_DEBT_TAGS, PIT),
    Concept("long_term_debt", "long_term_debt", LONG_TERM_DEBT_TAGS, RANKED),
    Concept("short_term_debt", "short_term_debt", SHORT_TERM_DEBT_TAGS, RANKED),
    Concept("lease_liabilities", "lease_liabilities", LEASE_LIABILITY_TAGS, RANKED),
    Concept("operating_cash_flow", "operating_cash_flow", (
        "NetCashProvidedByUsedInOperatingActivities",
        "NetCashProvidedByUsedInOperatingActivitiesContinuingOperations",
        "NetCashFlowsFromUsedInOperatingActivities",
        "NetCashFlowsFromUsedInOperatingActivitiesContinuingOperations",
        "NetCashFromOperatingActivities",
        "NetCashFlowsFromOperatingActivities",
        "NetCashFromUsedInOperatingActivities",
        "CashFlowsFromUsedInOperatingActivities",
    ), FLOW),
    Concept("capex", "capex", (
        "PaymentsToAcquirePropertyPlantAndEquipment",
        "CapitalExpendituresIncurredButNotYetPaid",
        "PaymentsToAcquireProductiveAssets",
        "PaymentsForPropertyPlantAndEquipment",
        "PurchaseOfPropertyPlantAndEquipment",
        "PurchaseOfTangibleAssets",
        "PaymentsForAcquisitionOfPropertyPlantAndEquipment",
        "PurchaseOfPropertyPlantAndEquipmentClassifiedAsInvestingActivities",
    ), FLOW),
    Concept("share_based_compensation", "share_based_compensation", (
        "ShareBasedCompensation",
        "AdjustmentsForSharebasedPayments",
    ), FLOW),
    Concept("research_and_development", "research_and_development_expenses", (
        "ResearchAndDevelopmentExpense",
        "ResearchAndDevelopmentExpenditure",
        "ResearchAndDevelopmentExpenseExcludingAcquiredInProcessCost",
    ), FLOW),
    Concept("technology", "technology_expenses", (
        "InformationTechnologyExpense",
        "InformationTechnologyCosts",
        "CommunicationsAndInformationTechnology",
    ), FLOW),
    Concept("software", "software_expenses", (
        "SoftwareDevelopmentCosts",
        "SoftwareDevelopmentCost",
        "SoftwareDevelopmentCostsIncurred",
        "SoftwareAndWebSiteDevelopmentCosts",
    ), FLOW),
    Concept("depreciation", "depreciation_depletion_and_amortization", (
        "DepreciationDepletionAndAmortization",
        "DepreciationAndAmortization",
        "DepreciationAmortizationAndAccretionNet",
        "Depreciation",
        "DepreciationAmortization",
    ), FLOW),
    Concept("buybacks", "treasury_stock_repurchased", (
        "PaymentsForRepurchaseOfCommonStock",
        "PaymentsForRepurchaseOfEquity",
        "PaymentsForRepurchaseOfCommonStockAndAdditionalPaidInCapital",
        "PaymentsForRepurchaseOfCommonStockAndRelatedTaxes",
        "PaymentsForRepurchaseOfCommonStockIncludingTreasuryStockAcquired",
        "RepurchasesOfCommonStock",
    ), FLOW),
    Concept("dividends_paid", "dividends_paid", (
        "PaymentsOfDividends",
        "PaymentsOfDividendsCommonStock",
        "PaymentsOfDividendsAndDividendEquivalentsOnCommonStock",
        "PaymentsOfDividendsAndDividendEquivalents",
        "DividendsPaid",
    ), FLOW),
    Concept("accounts_receivable", "accounts_receivable", (
        "AccountsReceivableNetCurrent",
        "AccountsReceivableNet",
        "AccountsReceivable",
        "ReceivablesNetCurrent",
        "AccountsReceivableTradeCurrent",
        "Receivables",
        "ReceivablesNet",
        "TradeAndOtherCurrentReceivables",
    ), PIT),
    Concept("inventories", "inventories", (
        "InventoryNet",
        "InventoryFinishedGoods",
        "InventoryFinishedGoodsAndWorkInProcess",
        "InventoryRawMaterialsAndSupplies",
        "Inventories",
    ), PIT),
    Concept("accounts_payable", "accounts_payable", (
        "AccountsPayableCurrent",
        "AccountsPayable",
        "AccountsPayableTradeCurrent",
        "AccountsPayableTrade",
        "TradeAndOtherCurrentPayables",
    ), PIT),
    Concept("shares", "shares_outstanding", (
        "WeightedAverageNumberOfSharesOutstandingBasic",
        "WeightedAverageNumberOfDilutedSharesOutstanding",
        "CommonStockSharesOutstanding",
        "EntityCommonStockSharesOutstanding",
        "WeightedAverageNumberOfOrdinarySharesOutstandingBasic",
        "WeightedAverageNumberOfOrdinarySharesOutstandingDiluted",
        "WeightedAverageShares",
    ), RANKED),
    Concept("cash", "cash_and_cash_equivalents", (
        "CashAndCashEquivalentsAtCarryingValue",
        "CashAndCashEquivalents",
        "CashCashEquivalentsRestrictedCashAndRestrictedCashEquivalents",
        "RestrictedCashAndCashEquivalentsAtCarryingValue",
        "CashAndCashEquivalentsAndShortTermInvestments",
        "CashAndShortTermInvestments",
        "Cash",
    ), RANKED),
    Concept("short_term_investments", "short_term_investments", (
        "ShortTermInvestments",
        "MarketableSecuritiesCurrent",
        "CurrentInvestments",
    ), PIT),
    Concept("interest_expense", "interest_expense", (
        "InterestExpense",
        "InterestExpenseDebt",
        "InterestExpenseNet",
        "InterestAndDebtExpense",
        "InterestExpenseBorrowings",
        "FinanceCosts",
    ), FLOW),
    Concept("interest_income", "interest_income", (
        "InterestIncomeOperating",
        "InterestAndDividendIncomeOperating",
        "InvestmentIncomeInterest",
        "InterestIncome",
        "RevenueFromInterest",
    ), FLOW),
    Concept("deposits", "deposits", ("Deposits", "DepositsTotal", "TotalDeposits"), PIT),
    Concept("total_deposits", "total_deposits", ("TotalDeposits", "DepositsTotal"), PIT),
    Concept("customer_deposits", "customer_deposits", ("CustomerDeposits", "DepositsFromCustomers"), PIT),
    Concept("deposit_liabilities", "deposit_liabilities", ("DepositLiabilities",), PIT),
    Concept("deferred_revenue", "deferred_revenue", (
        "DeferredRevenue",
        "DeferredRevenueCurrent",
        "DeferredRevenueNoncurrent",
    ), Resolution.PARTS),
    Concept("contract_liability", "contract_with_customer_liability", (
        "ContractWithCustomerLiability",
        "ContractWithCustomerLiabilityCurrent",
        "ContractWithCustomerLiabilityNoncurrent",
    ), Resolution.PARTS),
)

CONCEPTS_BY_NAME: Dict[str, Concept] = {c.name: c for c in CONCEPTS}
