"""
Confidence weighting for projected cash movements.

Every cash event carries a fixed confidence constant determined by where it
comes from. A day's confidence level is the average of those constants,
weighted by how much money each event moves.
"""
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Protocol


class ConfidenceSource(str, Enum):
    """Where a projected amount comes from."""
    BANK_BALANCE = "bank_balance"
    REPEATING_INVOICE = "repeating_invoice"
    CONFIRMED_INVOICE = "confirmed_invoice"
    TAX_OBLIGATION = "tax_obligation"
    INFERRED_PATTERN = "inferred_pattern"
    BUDGETED = "budgeted"


CONFIDENCE_WEIGHTS = {
    ConfidenceSource.BANK_BALANCE: Decimal("1.0"),        # Reported by the bank
    ConfidenceSource.REPEATING_INVOICE: Decimal("0.98"),  # Confirmed schedule
    ConfidenceSource.CONFIRMED_INVOICE: Decimal("0.95"),  # Might be paid late
    ConfidenceSource.TAX_OBLIGATION: Decimal("1.0"),      # Statutory due date
    ConfidenceSource.INFERRED_PATTERN: Decimal("0.75"),   # Learned from history
    ConfidenceSource.BUDGETED: Decimal("0.60"),           # An estimate/goal
}

FULL_CONFIDENCE = Decimal("1.0")
_TWO_PLACES = Decimal("0.01")


class Weighted(Protocol):
    """Anything with a magnitude and a confidence constant."""

    @property
    def magnitude(self) -> Decimal: ...

    @property
    def confidence(self) -> Decimal: ...


def weighted_confidence(items: Iterable[Weighted]) -> Decimal:
    """
    Amount-weighted confidence of a set of cash events.

    Returns 1.0 when nothing moves (nothing uncertain happened). The result
    is rounded to two places and kept within [0, 1].
    """
    total = Decimal("0")
    weighted = Decimal("0")
    for item in items:
        magnitude = item.magnitude
        total += magnitude
        weighted += magnitude * item.confidence

    if total == 0:
        return FULL_CONFIDENCE

    level = (weighted / total).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    return min(max(level, Decimal("0")), FULL_CONFIDENCE)
