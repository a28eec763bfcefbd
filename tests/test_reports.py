"""Tests for Xero report parsing and label extraction."""
from decimal import Decimal
from types import SimpleNamespace

from bookkeeper.reports import (
    DataRow,
    LabelRule,
    MatchMode,
    SectionRow,
    SummaryRow,
    extract_balance_sheet,
    extract_bank_balances,
    extract_profit_and_loss,
    parse_rows,
)
from bookkeeper.reports.rows import parse_amount


def row(label, amount):
    return {"RowType": "Row", "Cells": [{"Value": label}, {"Value": amount}]}


def summary(label, amount):
    return {"RowType": "SummaryRow", "Cells": [{"Value": label}, {"Value": amount}]}


def section(title, *rows):
    return {"RowType": "Section", "Title": title, "Rows": list(rows)}


HEADER = {"RowType": "Header", "Cells": [{"Value": ""}, {"Value": "30 Jun 2024"}]}

BALANCE_SHEET = [
    HEADER,
    section("Assets"),
    section("Bank", row("Business Account", "12,000.00"), summary("Total Bank", "12,000.00")),
    section(
        "Current Assets",
        row("Accounts Receivable", "5000.00"),
        summary("Total Current Assets", "5000.00"),
    ),
    section("", row("Total Assets", "17000.00")),
    section("Liabilities"),
    section(
        "Current Liabilities",
        row("Accounts Payable", "3000.00"),
        row("VAT", "1500.00"),
        row("PAYE Payable", "800.00"),
        summary("Total Current Liabilities", "5300.00"),
    ),
    section("", row("Total Liabilities", "5300.00")),
    section("", row("Net Assets", "11700.00")),
]

PROFIT_AND_LOSS = [
    HEADER,
    section("Income", row("Sales", "50000.00"), summary("Total Income", "50000.00")),
    section("Less Cost of Sales", row("Purchases", "20000.00"), summary("Total Cost of Sales", "20000.00")),
    section("", row("Gross Profit", "30000.00")),
    section(
        "Less Operating Expenses",
        row("Rent", "12000.00"),
        row("Wages and Salaries", "6000.00"),
        summary("Total Operating Expenses", "18000.00"),
    ),
    section("", row("Net Profit", "12000.00")),
]


class TestParseAmount:
    """Cell values to Decimal."""

    def test_plain_and_grouped(self):
        assert parse_amount("1250.50") == Decimal("1250.50")
        assert parse_amount("1,250.50") == Decimal("1250.50")

    def test_bracketed_negative(self):
        assert parse_amount("(1,250.00)") == Decimal("-1250.00")

    def test_blank_and_text(self):
        assert parse_amount(None) is None
        assert parse_amount("  ") is None
        assert parse_amount("n/a") is None


class TestParseRows:
    """Raw payloads to typed rows."""

    def test_drops_header_and_nests_sections(self):
        rows = parse_rows([HEADER, section("Bank", row("Cheque", "10"), summary("Total Bank", "10"))])

        assert rows == [
            SectionRow(title="Bank", rows=(DataRow(("Cheque", "10")), SummaryRow(("Total Bank", "10")))),
        ]

    def test_sdk_objects_with_enum_row_type(self):
        cell = lambda value: SimpleNamespace(value=value)
        raw = SimpleNamespace(
            row_type=SimpleNamespace(value="Row"),
            cells=[cell("Cheque"), cell(25)],
        )

        assert parse_rows([raw]) == [DataRow(("Cheque", "25"))]

    def test_none_rows(self):
        assert parse_rows(None) == []


class TestLabelRule:
    """Label and section matching."""

    def test_word_boundary(self):
        rule = LabelRule(row=("vat",))

        assert rule.matches_label("VAT on sales")
        assert not rule.matches_label("Private medical")

    def test_exact_normalises_whitespace(self):
        rule = LabelRule(row=("total assets",), mode=MatchMode.EXACT)

        assert rule.matches_label("  Total   Assets ")
        assert not rule.matches_label("Total Assets (restated)")

    def test_section_required(self):
        rule = LabelRule(row=("vat",), section=("liabilities",))

        assert rule.matches_section(("Liabilities", "Current Liabilities"))
        assert not rule.matches_section(("Assets",))
        assert not rule.matches_section(())


class TestExtractBalanceSheet:
    """Headline balance sheet figures."""

    def test_extracts_figures(self):
        result = extract_balance_sheet(parse_rows(BALANCE_SHEET))

        assert result.cash == Decimal("12000.00")
        assert result.accounts_receivable == Decimal("5000.00")
        assert result.accounts_payable == Decimal("3000.00")
        assert result.vat_liability == Decimal("1500.00")
        assert result.total_assets == Decimal("17000.00")
        assert result.total_liabilities == Decimal("5300.00")
        assert result.net_assets == Decimal("11700.00")

    def test_sums_vat_accounts_and_reports_positive(self):
        rows = parse_rows([
            section(
                "Current Liabilities",
                row("VAT", "(1000.00)"),
                row("GST", "(200.00)"),
                summary("Total Current Liabilities", "(1200.00)"),
            ),
        ])

        assert extract_balance_sheet(rows).vat_liability == Decimal("1200.00")

    def test_derives_net_assets(self):
        rows = parse_rows([
            section("", row("Total Assets", "900")),
            section("", row("Total Liabilities", "400")),
        ])

        assert extract_balance_sheet(rows).net_assets == Decimal("500")

    def test_missing_figures_are_none(self):
        result = extract_balance_sheet([])

        assert result.cash is None
        assert result.vat_liability is None


class TestExtractProfitAndLoss:
    """Headline P&L figures."""

    def test_extracts_figures(self):
        result = extract_profit_and_loss(parse_rows(PROFIT_AND_LOSS))

        assert result.revenue == Decimal("50000.00")
        assert result.cost_of_sales == Decimal("20000.00")
        assert result.gross_profit == Decimal("30000.00")
        assert result.operating_expenses == Decimal("18000.00")
        assert result.net_profit == Decimal("12000.00")

    def test_derives_missing_profit_rows(self):
        rows = parse_rows([
            section("Income", summary("Total Income", "1000")),
            section("Less Cost of Sales", summary("Total Cost of Sales", "300")),
            section("Less Operating Expenses", summary("Total Operating Expenses", "200")),
        ])

        result = extract_profit_and_loss(rows)

        assert result.gross_profit == Decimal("700")
        assert result.net_profit == Decimal("500")


class TestExtractBankBalances:
    """Closing balance per account from the bank summary."""

    def test_last_column_per_account(self):
        rows = parse_rows([
            HEADER,
            section(
                "",
                {"RowType": "Row", "Cells": [
                    {"Value": "Business Account"}, {"Value": "100"}, {"Value": "50"}, {"Value": "30"}, {"Value": "120"},
                ]},
                {"RowType": "Row", "Cells": [
                    {"Value": "Savings"}, {"Value": "900"}, {"Value": "0"}, {"Value": "0"}, {"Value": "900"},
                ]},
                {"RowType": "Row", "Cells": [
                    {"Value": "Total"}, {"Value": "1000"}, {"Value": "50"}, {"Value": "30"}, {"Value": "1020"},
                ]},
            ),
        ])

        assert extract_bank_balances(rows) == {
            "Business Account": Decimal("120"),
            "Savings": Decimal("900"),
        }
