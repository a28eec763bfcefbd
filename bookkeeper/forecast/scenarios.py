"""Best/worst case estimates for a single forecast day."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from bookkeeper.forecast.types import ScenarioBand

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ScenarioEstimator:
    """
    Perturbs one day's inflow and outflow totals by fixed percentages.

    Each band starts from the day's actual opening balance, so the bands show
    how sensitive that day is, not an alternative running balance.
    """
    best_inflow_factor: Decimal = Decimal("1.2")    # 20% more income
    best_outflow_factor: Decimal = Decimal("0.9")   # 10% less expense
    worst_inflow_factor: Decimal = Decimal("0.8")   # 20% less income
    worst_outflow_factor: Decimal = Decimal("1.1")  # 10% more expense

    def estimate(self, opening_balance: Decimal, inflows: Decimal, outflows: Decimal) -> ScenarioBand:
        best = opening_balance + inflows * self.best_inflow_factor - outflows * self.best_outflow_factor
        worst = opening_balance + inflows * self.worst_inflow_factor - outflows * self.worst_outflow_factor
        return ScenarioBand(
            best_case=best.quantize(CENT, rounding=ROUND_HALF_UP),
            worst_case=worst.quantize(CENT, rounding=ROUND_HALF_UP),
        )
