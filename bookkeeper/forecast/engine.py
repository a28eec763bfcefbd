"""
Cash flow projection engine.

Builds a day-by-day forecast from the current cash position and every
future-dated cash event (invoices, repeating transactions, budgets and tax),
annotates each day with alerts and optional best/worst case bands, persists
the rows and returns them with a summary.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from bookkeeper.config import Settings
from bookkeeper.forecast.alerts import AlertEvaluator
from bookkeeper.forecast.confidence import weighted_confidence
from bookkeeper.forecast.events import (
    CashEvent,
    FlowCategory,
    InvoiceEvent,
    budget_events,
    invoice_events,
    place_events,
    recurring_events,
    tax_events,
)
from bookkeeper.forecast.scenarios import ScenarioEstimator
from bookkeeper.forecast.sources import ForecastDataSource, ForecastRepository, ForecastSnapshot
from bookkeeper.forecast.types import (
    AlertSeverity,
    ForecastDay,
    ForecastResult,
    ForecastSummary,
    Inflows,
    Outflows,
)

logger = logging.getLogger(__name__)

MIN_FORECAST_DAYS = 1
DEFAULT_MAX_FORECAST_DAYS = 365


class InvalidForecastHorizon(ValueError):
    """Requested horizon is outside the supported range."""

    def __init__(self, days, max_days: int):
        super().__init__(f"days must be between {MIN_FORECAST_DAYS} and {max_days}, got {days}")
        self.days = days
        self.max_days = max_days


def build_breakdown(events: Sequence[CashEvent]) -> tuple[Inflows, Outflows]:
    """Sum a day's events into their inflow and outflow buckets."""
    buckets: Dict[FlowCategory, Decimal] = {category: Decimal("0") for category in FlowCategory}
    for event in events:
        buckets[event.category] += event.magnitude

    inflows = Inflows(
        from_invoices=buckets[FlowCategory.FROM_INVOICES],
        from_repeating=buckets[FlowCategory.FROM_REPEATING],
    )
    outflows = Outflows(
        to_bills=buckets[FlowCategory.TO_BILLS],
        to_repeating=buckets[FlowCategory.TO_REPEATING],
        to_taxes=buckets[FlowCategory.TO_TAXES],
        to_patterns=buckets[FlowCategory.TO_PATTERNS],
        to_budgets=buckets[FlowCategory.TO_BUDGETS],
    )
    return inflows, outflows


def summarize(days: Sequence[ForecastDay]) -> ForecastSummary:
    """Aggregate a projected horizon. The earliest day wins a tie on lowest balance."""
    lowest = min(days, key=lambda day: day.closing_balance)
    average = sum((day.confidence_level for day in days), Decimal("0")) / len(days)

    return ForecastSummary(
        days=len(days),
        lowest_balance=lowest.closing_balance,
        lowest_balance_date=lowest.date,
        total_inflows=sum((day.inflows.total for day in days), Decimal("0")),
        total_outflows=sum((day.outflows.total for day in days), Decimal("0")),
        average_confidence=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        critical_alerts=sum(
            1 for day in days for alert in day.alerts
            if alert.severity == AlertSeverity.CRITICAL
        ),
    )


class CashFlowEngine:
    """
    Projects daily cash balances over a horizon starting today.

    Data is read fresh on every call; nothing is cached between runs. The
    only write is the final batch upsert of forecast rows keyed by date.
    """

    def __init__(
        self,
        source: ForecastDataSource,
        repository: ForecastRepository,
        alert_evaluator: Optional[AlertEvaluator] = None,
        scenario_estimator: Optional[ScenarioEstimator] = None,
        max_days: int = DEFAULT_MAX_FORECAST_DAYS,
        expand_recurring: bool = False,
    ):
        self.source = source
        self.repository = repository
        self.alert_evaluator = alert_evaluator or AlertEvaluator()
        self.scenario_estimator = scenario_estimator or ScenarioEstimator()
        # Capped at one year
        self.max_days = min(max_days, DEFAULT_MAX_FORECAST_DAYS)
        self.expand_recurring = expand_recurring

    @classmethod
    def from_settings(
        cls,
        session_factory,
        settings: Settings,
        repository: Optional[ForecastRepository] = None,
    ) -> "CashFlowEngine":
        """Engine reading from and writing to the database behind ``session_factory``."""
        return cls(
            source=ForecastDataSource(session_factory),
            repository=repository or ForecastRepository(session_factory),
            alert_evaluator=AlertEvaluator.from_settings(settings),
            scenario_estimator=ScenarioEstimator(),
            max_days=settings.FORECAST_MAX_DAYS,
            expand_recurring=settings.FORECAST_EXPAND_RECURRING,
        )

    def validate_horizon(self, days) -> int:
        if isinstance(days, bool) or not isinstance(days, int):
            raise InvalidForecastHorizon(days, self.max_days)
        if days < MIN_FORECAST_DAYS or days > self.max_days:
            raise InvalidForecastHorizon(days, self.max_days)
        return days

    def build_events(self, snapshot: ForecastSnapshot, start_date: date, end_date: date) -> List[CashEvent]:
        """Turn loaded rows into cash events, with payment patterns applied."""
        events: List[CashEvent] = []
        events.extend(invoice_events(snapshot.invoices, snapshot.payment_patterns))
        events.extend(recurring_events(
            snapshot.repeating_transactions, start_date, end_date, expand=self.expand_recurring
        ))
        events.extend(budget_events(snapshot.budgets, start_date, end_date))
        events.extend(tax_events(snapshot.tax_obligations))
        return events

    def overdue_receivables(self, events: Sequence[CashEvent], today: date) -> List[InvoiceEvent]:
        """Receivables whose contractual due date has already passed."""
        return [
            event for event in events
            if isinstance(event, InvoiceEvent) and event.receivable and event.due_date < today
        ]

    def project(
        self,
        snapshot: ForecastSnapshot,
        days: int,
        today: date,
        include_scenarios: bool = True,
    ) -> List[ForecastDay]:
        """
        Run the sequential day loop over an already-loaded snapshot.

        Pure computation: no I/O happens here.
        """
        end_date = today + timedelta(days=days)
        events = self.build_events(snapshot, today, end_date)
        placed = place_events(events, today, end_date)
        overdue = self.overdue_receivables(events, today)

        forecast: List[ForecastDay] = []
        balance = Decimal(str(snapshot.cash_position))

        for offset in range(days):
            current = today + timedelta(days=offset)
            day_events = placed.get(current, [])

            inflows, outflows = build_breakdown(day_events)
            opening = balance
            closing = opening + inflows.total - outflows.total

            day = ForecastDay(
                date=current,
                opening_balance=opening,
                closing_balance=closing,
                inflows=inflows,
                outflows=outflows,
                confidence_level=weighted_confidence(day_events),
            )
            day.alerts = self.alert_evaluator.evaluate(
                day,
                day_events,
                overdue_receivables=overdue if offset == 0 else (),
            )
            if include_scenarios:
                day.scenarios = self.scenario_estimator.estimate(opening, inflows.total, outflows.total)

            forecast.append(day)
            balance = closing

        return forecast

    async def generate_forecast(
        self,
        days: int,
        include_scenarios: bool = True,
        today: Optional[date] = None,
        regenerate: bool = False,
    ) -> ForecastResult:
        """
        Generate and persist a forecast of ``days`` days starting today.

        With ``regenerate``, stored rows from today onwards are replaced in
        the same transaction as the upsert. Nothing is deleted if loading
        or writing fails.

        Raises:
            InvalidForecastHorizon: before any data is read
            ForecastDataError: when any input fails to load
        """
        days = self.validate_horizon(days)
        today = today or date.today()
        end_date = today + timedelta(days=days)

        snapshot = await self.source.load_snapshot(today, end_date)
        logger.info(
            f"Generating {days}-day forecast from {today.isoformat()}: "
            f"cash {snapshot.cash_position}, {len(snapshot.invoices)} open invoices, "
            f"{len(snapshot.repeating_transactions)} repeating, "
            f"{len(snapshot.budgets)} budgets, {len(snapshot.tax_obligations)} tax obligations"
        )

        forecast = self.project(snapshot, days, today, include_scenarios=include_scenarios)

        persisted = True
        persistence_error = None
        try:
            await self.repository.upsert_days(forecast, replace_from=today if regenerate else None)
        except (SQLAlchemyError, OSError) as e:
            persisted = False
            persistence_error = str(e)
            logger.error(f"Failed to persist {len(forecast)} forecast days: {e}")

        return ForecastResult(
            forecast=forecast,
            summary=summarize(forecast),
            persisted=persisted,
            persistence_error=persistence_error,
        )
