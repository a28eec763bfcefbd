"""Xero report parsing."""
from bookkeeper.reports.parser import (
    BALANCE_SHEET_LABELS,
    PROFIT_AND_LOSS_LABELS,
    BalanceSheetSummary,
    LabelRule,
    MatchMode,
    ProfitAndLossSummary,
    extract_balance_sheet,
    extract_bank_balances,
    extract_profit_and_loss,
    find_amount,
)
from bookkeeper.reports.rows import DataRow, SectionRow, SummaryRow, parse_rows

__all__ = [
    "BALANCE_SHEET_LABELS",
    "PROFIT_AND_LOSS_LABELS",
    "BalanceSheetSummary",
    "DataRow",
    "LabelRule",
    "MatchMode",
    "ProfitAndLossSummary",
    "SectionRow",
    "SummaryRow",
    "extract_balance_sheet",
    "extract_bank_balances",
    "extract_profit_and_loss",
    "find_amount",
    "parse_rows",
]
