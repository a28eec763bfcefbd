"""
Balance sheet and profit & loss extraction.

Each metric is described by a ``LabelRule``: keywords the enclosing section
title must contain and keywords the row label must match. ``find_amount``
walks the row tree depth first and returns the amount of the first row that
satisfies the rule.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple

from bookkeeper.reports.rows import DataRow, ReportRow, SectionRow, SummaryRow, parse_amount

logger = logging.getLogger(__name__)


class MatchMode(str, Enum):
    CONTAINS = "contains"
    EXACT = "exact"


@dataclass(frozen=True)
class LabelRule:
    """
    Where a metric lives in a report.

    ``section`` keywords must appear in at least one enclosing section title
    (no keywords means any section, including the top level). ``row`` keywords
    are compared with the row's first cell using ``mode``. Matching is case
    insensitive.
    """
    row: Tuple[str, ...]
    section: Tuple[str, ...] = ()
    mode: MatchMode = MatchMode.CONTAINS

    def matches_section(self, titles: Sequence[str]) -> bool:
        if not self.section:
            return True
        lowered = [title.lower() for title in titles]
        return any(keyword in title for keyword in self.section for title in lowered)

    def matches_label(self, label: str) -> bool:
        label = " ".join(label.lower().split())
        if not label:
            return False
        if self.mode == MatchMode.EXACT:
            return label in self.row
        # Whole words only, so "vat" does not match "private"
        return any(re.search(rf"\b{re.escape(keyword)}\b", label) for keyword in self.row)


BALANCE_SHEET_LABELS: Dict[str, LabelRule] = {
    "cash": LabelRule(section=("bank",), row=("total bank",)),
    "accounts_receivable": LabelRule(section=("current assets",), row=("accounts receivable", "debtors")),
    "accounts_payable": LabelRule(section=("current liabilities",), row=("accounts payable", "creditors")),
    "vat_liability": LabelRule(
        section=("liabilities",),
        row=("vat", "gst", "tax payable", "tax collected"),
    ),
    "total_assets": LabelRule(row=("total assets",), mode=MatchMode.EXACT),
    "total_liabilities": LabelRule(row=("total liabilities",), mode=MatchMode.EXACT),
    "net_assets": LabelRule(row=("net assets",), mode=MatchMode.EXACT),
}

PROFIT_AND_LOSS_LABELS: Dict[str, LabelRule] = {
    "revenue": LabelRule(
        section=("income", "revenue"),
        row=("total income", "total trading income", "total revenue", "total sales"),
        mode=MatchMode.EXACT,
    ),
    "cost_of_sales": LabelRule(section=("cost of sales",), row=("total cost of sales",), mode=MatchMode.EXACT),
    "gross_profit": LabelRule(row=("gross profit",), mode=MatchMode.EXACT),
    "operating_expenses": LabelRule(
        section=("expense",),
        row=("total operating expenses", "total expenses", "total overheads"),
        mode=MatchMode.EXACT,
    ),
    "net_profit": LabelRule(row=("net profit", "net profit (loss)", "net loss"), mode=MatchMode.EXACT),
}


def _row_amount(row) -> Optional[Decimal]:
    # Last numeric cell is the amount column
    if len(row.cells) < 2:
        return None
    return parse_amount(row.cells[-1])


def _walk(rows: Iterable[ReportRow], titles: Tuple[str, ...]):
    for row in rows:
        if isinstance(row, SectionRow):
            yield from _walk(row.rows, titles + (row.title,))
        else:
            yield row, titles


def find_amount(rows: Iterable[ReportRow], rule: LabelRule) -> Optional[Decimal]:
    """Amount of the first row matching ``rule``, or None."""
    for row, titles in _walk(rows, ()):
        if not isinstance(row, (DataRow, SummaryRow)):
            continue
        if rule.matches_section(titles) and rule.matches_label(row.label):
            amount = _row_amount(row)
            if amount is not None:
                return amount
    return None


def sum_amounts(rows: Iterable[ReportRow], rule: LabelRule) -> Optional[Decimal]:
    """Total of every row matching ``rule``, or None when nothing matches."""
    total = None
    for row, titles in _walk(rows, ()):
        if not isinstance(row, DataRow):
            continue
        if rule.matches_section(titles) and rule.matches_label(row.label):
            amount = _row_amount(row)
            if amount is not None:
                total = (total or Decimal("0")) + amount
    return total


def _abs(value: Optional[Decimal]) -> Optional[Decimal]:
    return abs(value) if value is not None else None


@dataclass
class BalanceSheetSummary:
    cash: Optional[Decimal] = None
    accounts_receivable: Optional[Decimal] = None
    accounts_payable: Optional[Decimal] = None
    vat_liability: Optional[Decimal] = None
    total_assets: Optional[Decimal] = None
    total_liabilities: Optional[Decimal] = None
    net_assets: Optional[Decimal] = None


@dataclass
class ProfitAndLossSummary:
    revenue: Optional[Decimal] = None
    cost_of_sales: Optional[Decimal] = None
    gross_profit: Optional[Decimal] = None
    operating_expenses: Optional[Decimal] = None
    net_profit: Optional[Decimal] = None


def extract_balance_sheet(rows: Sequence[ReportRow]) -> BalanceSheetSummary:
    """Pull headline balance sheet figures. Liabilities are reported positive."""
    labels = BALANCE_SHEET_LABELS
    summary = BalanceSheetSummary(
        cash=find_amount(rows, labels["cash"]),
        accounts_receivable=find_amount(rows, labels["accounts_receivable"]),
        accounts_payable=_abs(find_amount(rows, labels["accounts_payable"])),
        # A company can hold several VAT control accounts
        vat_liability=_abs(sum_amounts(rows, labels["vat_liability"])),
        total_assets=find_amount(rows, labels["total_assets"]),
        total_liabilities=_abs(find_amount(rows, labels["total_liabilities"])),
        net_assets=find_amount(rows, labels["net_assets"]),
    )
    if summary.net_assets is None and summary.total_assets is not None and summary.total_liabilities is not None:
        summary.net_assets = summary.total_assets - summary.total_liabilities
    return summary


def extract_profit_and_loss(rows: Sequence[ReportRow]) -> ProfitAndLossSummary:
    """Pull headline P&L figures. Net profit is derived when the report has no such row."""
    labels = PROFIT_AND_LOSS_LABELS
    summary = ProfitAndLossSummary(
        revenue=find_amount(rows, labels["revenue"]),
        cost_of_sales=_abs(find_amount(rows, labels["cost_of_sales"])),
        gross_profit=find_amount(rows, labels["gross_profit"]),
        operating_expenses=_abs(find_amount(rows, labels["operating_expenses"])),
        net_profit=find_amount(rows, labels["net_profit"]),
    )

    if summary.gross_profit is None and summary.revenue is not None:
        summary.gross_profit = summary.revenue - (summary.cost_of_sales or Decimal("0"))
    if summary.net_profit is None and summary.revenue is not None:
        summary.net_profit = (
            summary.revenue
            - (summary.cost_of_sales or Decimal("0"))
            - (summary.operating_expenses or Decimal("0"))
        )
        logger.debug(f"Net profit row missing from report, derived {summary.net_profit}")
    return summary


def extract_bank_balances(rows: Sequence[ReportRow]) -> Dict[str, Decimal]:
    """Closing balance per bank account name, from the bank summary report."""
    balances: Dict[str, Decimal] = {}
    for row, _titles in _walk(rows, ()):
        if not isinstance(row, DataRow):
            continue
        label = row.label.strip()
        amount = _row_amount(row)
        if label and amount is not None and not label.lower().startswith("total"):
            balances[label] = amount
    return balances
