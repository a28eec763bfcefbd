"""Value types produced by the cash flow engine."""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

ZERO = Decimal("0")


class AlertType(str, Enum):
    """Kinds of forecast alert."""
    LOW_BALANCE = "LOW_BALANCE"
    NEGATIVE_BALANCE = "NEGATIVE_BALANCE"
    TAX_DUE = "TAX_DUE"
    LARGE_OUTFLOW = "LARGE_OUTFLOW"
    OVERDUE_INVOICE = "OVERDUE_INVOICE"


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Alert:
    """A warning attached to a forecast day."""
    type: AlertType
    severity: AlertSeverity
    message: str
    amount: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "amount": str(self.amount) if self.amount is not None else None,
        }


@dataclass
class Inflows:
    """Money expected in on a day, by source."""
    from_invoices: Decimal = ZERO
    from_repeating: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.from_invoices + self.from_repeating


@dataclass
class Outflows:
    """Money expected out on a day, by source."""
    to_bills: Decimal = ZERO
    to_repeating: Decimal = ZERO
    to_taxes: Decimal = ZERO
    to_patterns: Decimal = ZERO
    to_budgets: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.to_bills + self.to_repeating + self.to_taxes + self.to_patterns + self.to_budgets


@dataclass(frozen=True)
class ScenarioBand:
    """Optimistic and pessimistic closing balance for a single day."""
    best_case: Decimal
    worst_case: Decimal


@dataclass
class ForecastDay:
    """One projected calendar day."""
    date: date
    opening_balance: Decimal
    closing_balance: Decimal
    inflows: Inflows
    outflows: Outflows
    confidence_level: Decimal
    alerts: List[Alert] = field(default_factory=list)
    scenarios: Optional[ScenarioBand] = None


@dataclass
class ForecastSummary:
    """Aggregates over the whole horizon."""
    days: int
    lowest_balance: Decimal
    lowest_balance_date: date
    total_inflows: Decimal
    total_outflows: Decimal
    average_confidence: Decimal
    critical_alerts: int


@dataclass
class ForecastResult:
    """What ``CashFlowEngine.generate_forecast`` returns."""
    forecast: List[ForecastDay]
    summary: ForecastSummary
    persisted: bool = True
    persistence_error: Optional[str] = None
