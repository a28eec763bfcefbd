"""
Cash events - the dated, signed amounts a forecast is built from.

A ``CashEvent`` is one of four variants. Each knows the date it lands on,
its signed amount (positive in, negative out), the breakdown bucket it is
reported under and its confidence constant, so the projection loop can
accumulate them without caring which source produced them.

The ``*_events`` builders are pure functions from synced rows to events.
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import ClassVar, Dict, Iterable, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from bookkeeper.forecast.confidence import CONFIDENCE_WEIGHTS, ConfidenceSource

CENT = Decimal("0.01")

RECEIVABLE = "ACCREC"
PAYABLE = "ACCPAY"


class FlowCategory(str, Enum):
    """Breakdown bucket of a forecast day."""
    FROM_INVOICES = "from_invoices"
    FROM_REPEATING = "from_repeating"
    TO_BILLS = "to_bills"
    TO_REPEATING = "to_repeating"
    TO_TAXES = "to_taxes"
    TO_PATTERNS = "to_patterns"
    TO_BUDGETS = "to_budgets"


INFLOW_CATEGORIES = frozenset({FlowCategory.FROM_INVOICES, FlowCategory.FROM_REPEATING})


class _CashEventMixin:
    """Behaviour shared by every event variant."""

    source: ClassVar[ConfidenceSource]
    amount: Decimal

    @property
    def category(self) -> FlowCategory:
        raise NotImplementedError

    @property
    def is_inflow(self) -> bool:
        return self.category in INFLOW_CATEGORIES

    @property
    def confidence(self) -> Decimal:
        return CONFIDENCE_WEIGHTS[self.source]

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    def signed_amount(self) -> Decimal:
        return self.magnitude if self.is_inflow else -self.magnitude


@dataclass(frozen=True)
class InvoiceEvent(_CashEventMixin):
    """An open receivable or payable, possibly shifted by a payment pattern."""
    invoice_id: str
    invoice_type: str  # ACCREC | ACCPAY
    due_date: date
    amount: Decimal
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    invoice_number: Optional[str] = None
    days_shift: int = 0

    kind: ClassVar[str] = "invoice"
    source: ClassVar[ConfidenceSource] = ConfidenceSource.CONFIRMED_INVOICE

    @property
    def receivable(self) -> bool:
        return self.invoice_type == RECEIVABLE

    @property
    def category(self) -> FlowCategory:
        return FlowCategory.FROM_INVOICES if self.receivable else FlowCategory.TO_BILLS

    def effective_date(self) -> date:
        return self.due_date + timedelta(days=self.days_shift)


@dataclass(frozen=True)
class RecurringEvent(_CashEventMixin):
    """One occurrence of a repeating invoice or bill template."""
    template_id: str
    transaction_type: str  # ACCREC | ACCPAY
    scheduled_date: date
    amount: Decimal
    contact_name: Optional[str] = None

    kind: ClassVar[str] = "recurring"
    source: ClassVar[ConfidenceSource] = ConfidenceSource.REPEATING_INVOICE

    @property
    def category(self) -> FlowCategory:
        if self.transaction_type == RECEIVABLE:
            return FlowCategory.FROM_REPEATING
        return FlowCategory.TO_REPEATING

    def effective_date(self) -> date:
        return self.scheduled_date


@dataclass(frozen=True)
class BudgetEvent(_CashEventMixin):
    """One day's share of a monthly expense budget."""
    budget_id: str
    day: date
    amount: Decimal
    name: Optional[str] = None

    kind: ClassVar[str] = "budget"
    source: ClassVar[ConfidenceSource] = ConfidenceSource.BUDGETED

    @property
    def category(self) -> FlowCategory:
        return FlowCategory.TO_BUDGETS

    def effective_date(self) -> date:
        return self.day


@dataclass(frozen=True)
class TaxEvent(_CashEventMixin):
    """A pending tax payment."""
    obligation_id: str
    tax_type: str  # VAT | PAYE_NI | CORPORATION_TAX
    due_date: date
    amount: Decimal
    reference: Optional[str] = None

    kind: ClassVar[str] = "tax"
    source: ClassVar[ConfidenceSource] = ConfidenceSource.TAX_OBLIGATION

    @property
    def category(self) -> FlowCategory:
        return FlowCategory.TO_TAXES

    def effective_date(self) -> date:
        return self.due_date


CashEvent = Union[InvoiceEvent, RecurringEvent, BudgetEvent, TaxEvent]


# ============================================================================
# BUILDERS
# ============================================================================

def pattern_type_for(invoice_type: str) -> str:
    """Customers pay our receivables; we pay suppliers' bills."""
    return "CUSTOMER" if invoice_type == RECEIVABLE else "SUPPLIER"


def whole_days(value) -> int:
    """Round a (possibly fractional) day count to whole days, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def invoice_events(invoices: Iterable, patterns: Iterable) -> List[InvoiceEvent]:
    """
    Build invoice events, shifting each expected date by the counterparty's
    average days-to-pay when a payment pattern exists.

    Invoices without a due date or with nothing left to pay are skipped.
    """
    pattern_index: Dict[Tuple[str, str], object] = {
        (p.contact_id, p.type): p for p in patterns
    }

    events = []
    for invoice in invoices:
        amount_due = Decimal(str(invoice.amount_due or 0))
        if invoice.due_date is None or amount_due <= 0:
            continue

        pattern = pattern_index.get((invoice.contact_id, pattern_type_for(invoice.type)))
        shift = whole_days(pattern.average_days_to_pay) if pattern is not None else 0

        events.append(InvoiceEvent(
            invoice_id=invoice.id,
            invoice_type=invoice.type,
            due_date=invoice.due_date,
            amount=amount_due,
            contact_id=invoice.contact_id,
            contact_name=invoice.contact_name,
            invoice_number=invoice.invoice_number,
            days_shift=shift,
        ))
    return events


def _next_occurrence(current: date, unit: Optional[str], interval: Optional[int]) -> date:
    step = max(interval or 1, 1)
    if (unit or "MONTHLY").upper() == "WEEKLY":
        return current + timedelta(weeks=step)
    return current + relativedelta(months=step)


def recurring_events(
    templates: Iterable,
    start_date: date,
    end_date: date,
    expand: bool = False,
) -> List[RecurringEvent]:
    """
    Build events from repeating templates.

    By default only each template's next scheduled date is used. With
    ``expand`` every occurrence before ``end_date`` (and the template's own
    end date) is projected from the schedule unit and interval.
    """
    events = []
    for template in templates:
        scheduled = template.next_scheduled_date
        amount = Decimal(str(template.amount or 0))
        if scheduled is None or amount == 0:
            continue

        while scheduled < end_date:
            if template.end_date is not None and scheduled > template.end_date:
                break
            if scheduled >= start_date:
                events.append(RecurringEvent(
                    template_id=template.id,
                    transaction_type=template.type,
                    scheduled_date=scheduled,
                    amount=abs(amount),
                    contact_name=template.contact_name,
                ))
            if not expand:
                break
            scheduled = _next_occurrence(scheduled, template.schedule_unit, template.schedule_interval)
    return events


def month_bounds(month_year: str) -> Tuple[date, int]:
    """Return the first day and length of a ``YYYY-MM`` month."""
    year, month = (int(part) for part in month_year.split("-"))
    return date(year, month, 1), calendar.monthrange(year, month)[1]


def budget_events(budgets: Iterable, start_date: date, end_date: date) -> List[BudgetEvent]:
    """
    Amortise each monthly expense budget evenly over the days of its month,
    keeping only the days inside ``[start_date, end_date)``.
    """
    events = []
    for budget in budgets:
        if (budget.category or "EXPENSE").upper() != "EXPENSE":
            continue

        first_day, days_in_month = month_bounds(budget.month_year)
        if days_in_month <= 0:
            continue

        daily_amount = (Decimal(str(budget.budgeted_amount)) / days_in_month).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        if daily_amount == 0:
            continue

        for offset in range(days_in_month):
            day = first_day + timedelta(days=offset)
            if start_date <= day < end_date:
                events.append(BudgetEvent(
                    budget_id=budget.id,
                    day=day,
                    amount=abs(daily_amount),
                    name=budget.name,
                ))
    return events


def tax_events(obligations: Iterable) -> List[TaxEvent]:
    """Build events from pending tax obligations."""
    return [
        TaxEvent(
            obligation_id=obligation.id,
            tax_type=obligation.type,
            due_date=obligation.due_date,
            amount=abs(Decimal(str(obligation.amount))),
            reference=obligation.reference,
        )
        for obligation in obligations
        if obligation.due_date is not None and obligation.amount
    ]


def place_events(
    events: Iterable[CashEvent],
    start_date: date,
    end_date: date,
) -> Dict[date, List[CashEvent]]:
    """Group events by effective date, dropping any outside ``[start_date, end_date)``."""
    placed: Dict[date, List[CashEvent]] = {}
    for event in events:
        when = event.effective_date()
        if start_date <= when < end_date:
            placed.setdefault(when, []).append(event)
    return placed
