"""
Typed report rows.

Xero reports (balance sheet, profit and loss) arrive as a tree of rows: a
``Section`` holds a title and child rows, a ``Row`` holds cells, a
``SummaryRow`` holds the section total. ``parse_rows`` turns either SDK
objects or plain dicts into the dataclasses below so the label matching in
``bookkeeper.reports.parser`` never touches raw payloads.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Tuple, Union


@dataclass(frozen=True)
class DataRow:
    cells: Tuple[Optional[str], ...]

    @property
    def label(self) -> str:
        return (self.cells[0] or "") if self.cells else ""


@dataclass(frozen=True)
class SummaryRow:
    cells: Tuple[Optional[str], ...]

    @property
    def label(self) -> str:
        return (self.cells[0] or "") if self.cells else ""


@dataclass(frozen=True)
class SectionRow:
    title: str
    rows: Tuple["ReportRow", ...] = field(default_factory=tuple)


ReportRow = Union[DataRow, SummaryRow, SectionRow]


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """Parse a report cell into a Decimal; blank or non-numeric cells give None."""
    if value is None:
        return None
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    # Accounting negatives, e.g. "(1,250.00)"
    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def _get(raw: Any, *names: str) -> Any:
    for name in names:
        if isinstance(raw, dict):
            if name in raw:
                return raw[name]
        elif hasattr(raw, name):
            return getattr(raw, name)
    return None


def _row_type(raw: Any) -> str:
    row_type = _get(raw, "row_type", "rowType", "RowType")
    # SDK rows carry a RowType enum
    return str(getattr(row_type, "value", row_type) or "")


def _cells(raw: Any) -> Tuple[Optional[str], ...]:
    cells = _get(raw, "cells", "Cells") or []
    values = []
    for cell in cells:
        value = _get(cell, "value", "Value")
        values.append(None if value is None else str(value))
    return tuple(values)


def parse_rows(raw_rows: Optional[Iterable[Any]]) -> List[ReportRow]:
    """
    Convert raw report rows into typed rows.

    Header rows and rows of unknown type are dropped.
    """
    parsed: List[ReportRow] = []
    for raw in raw_rows or []:
        row_type = _row_type(raw)
        if row_type == "Section":
            parsed.append(SectionRow(
                title=str(_get(raw, "title", "Title") or ""),
                rows=tuple(parse_rows(_get(raw, "rows", "Rows"))),
            ))
        elif row_type == "Row":
            parsed.append(DataRow(cells=_cells(raw)))
        elif row_type == "SummaryRow":
            parsed.append(SummaryRow(cells=_cells(raw)))
    return parsed
