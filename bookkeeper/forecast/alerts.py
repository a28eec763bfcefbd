"""
Alert evaluation for a single forecast day.

Rules are independent, so one day can carry several alerts:

- LOW_BALANCE: closing balance under the threshold but not negative (warning)
- NEGATIVE_BALANCE: closing balance below zero (critical)
- TAX_DUE: one per tax payment landing that day (warning, critical when the
  payment alone takes the opening balance negative)
- LARGE_OUTFLOW: one per outgoing payment bigger than a fraction of the
  opening balance (warning)
- OVERDUE_INVOICE: receivables overdue past the configured age, reported
  once on the first forecast day (warning)
"""
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Sequence

from bookkeeper.config import Settings
from bookkeeper.forecast.events import CashEvent, InvoiceEvent, TaxEvent
from bookkeeper.forecast.types import Alert, AlertSeverity, AlertType, ForecastDay


def _money(amount: Decimal) -> str:
    return f"£{amount:,.2f}"


class AlertEvaluator:
    """Stateless evaluator of one day's projected state."""

    def __init__(
        self,
        low_balance_threshold: Decimal = Decimal("5000"),
        large_outflow_fraction: Decimal = Decimal("0.25"),
        overdue_invoice_days: int = 30,
    ):
        self.low_balance_threshold = low_balance_threshold
        self.large_outflow_fraction = large_outflow_fraction
        self.overdue_invoice_days = overdue_invoice_days

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertEvaluator":
        return cls(
            low_balance_threshold=settings.LOW_BALANCE_THRESHOLD,
            large_outflow_fraction=settings.LARGE_OUTFLOW_FRACTION,
            overdue_invoice_days=settings.OVERDUE_INVOICE_DAYS,
        )

    def evaluate(
        self,
        day: ForecastDay,
        events: Sequence[CashEvent],
        overdue_receivables: Iterable[InvoiceEvent] = (),
    ) -> List[Alert]:
        alerts: List[Alert] = []
        alerts.extend(self._balance_alerts(day))
        alerts.extend(self._tax_alerts(day, events))
        alerts.extend(self._large_outflow_alerts(day, events))
        alerts.extend(self._overdue_alerts(day.date, overdue_receivables))
        return alerts

    def _balance_alerts(self, day: ForecastDay) -> List[Alert]:
        closing = day.closing_balance
        if closing < 0:
            return [Alert(
                type=AlertType.NEGATIVE_BALANCE,
                severity=AlertSeverity.CRITICAL,
                message=f"Cash balance projected to be negative at {_money(closing)}",
                amount=closing,
            )]
        if closing < self.low_balance_threshold:
            return [Alert(
                type=AlertType.LOW_BALANCE,
                severity=AlertSeverity.WARNING,
                message=f"Cash balance projected to be low at {_money(closing)}",
                amount=closing,
            )]
        return []

    def _tax_alerts(self, day: ForecastDay, events: Sequence[CashEvent]) -> List[Alert]:
        alerts = []
        for event in events:
            if not isinstance(event, TaxEvent):
                continue
            tips_negative = day.opening_balance - event.magnitude < 0
            alerts.append(Alert(
                type=AlertType.TAX_DUE,
                severity=AlertSeverity.CRITICAL if tips_negative else AlertSeverity.WARNING,
                message=f"{event.tax_type} payment of {_money(event.magnitude)} due",
                amount=event.magnitude,
            ))
        return alerts

    def _large_outflow_alerts(self, day: ForecastDay, events: Sequence[CashEvent]) -> List[Alert]:
        # Relative to a positive opening balance only
        if day.opening_balance <= 0:
            return []

        limit = day.opening_balance * self.large_outflow_fraction
        return [
            Alert(
                type=AlertType.LARGE_OUTFLOW,
                severity=AlertSeverity.WARNING,
                message=(
                    f"Large {event.kind} payment of {_money(event.magnitude)} scheduled "
                    f"({event.magnitude / day.opening_balance:.0%} of opening balance)"
                ),
                amount=event.magnitude,
            )
            for event in events
            if not event.is_inflow and event.magnitude > limit
        ]

    def _overdue_alerts(self, on: date, receivables: Iterable[InvoiceEvent]) -> List[Alert]:
        overdue = [
            invoice for invoice in receivables
            if invoice.receivable and (on - invoice.due_date).days > self.overdue_invoice_days
        ]
        if not overdue:
            return []

        total = sum((invoice.magnitude for invoice in overdue), Decimal("0"))
        return [Alert(
            type=AlertType.OVERDUE_INVOICE,
            severity=AlertSeverity.WARNING,
            message=f"{len(overdue)} invoices overdue totaling {_money(total)}",
            amount=total,
        )]
