"""
Data loading for the cash flow engine.

Each loader opens its own session so ``load_snapshot`` can run them all at
once. If any loader fails the whole snapshot fails: a forecast built with a
silently missing category (e.g. no tax) would look healthier than it is.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookkeeper.forecast.types import ForecastDay
from bookkeeper.models import (
    BankAccount,
    CashFlowBudget,
    CashFlowForecast,
    PaymentPattern,
    RepeatingTransaction,
    SyncedInvoice,
    TaxObligation,
    generate_id,
)

logger = logging.getLogger(__name__)

OPEN_INVOICE_STATUSES = ("OPEN", "AUTHORISED")


class ForecastDataError(RuntimeError):
    """A forecast input could not be loaded."""

    def __init__(self, source: str, error: BaseException):
        super().__init__(f"Failed to load {source}: {error}")
        self.source = source
        self.error = error


@dataclass
class ForecastSnapshot:
    """Everything a forecast run reads, loaded fresh per run."""
    cash_position: Decimal
    invoices: List[SyncedInvoice] = field(default_factory=list)
    payment_patterns: List[PaymentPattern] = field(default_factory=list)
    repeating_transactions: List[RepeatingTransaction] = field(default_factory=list)
    budgets: List[CashFlowBudget] = field(default_factory=list)
    tax_obligations: List[TaxObligation] = field(default_factory=list)


def months_between(start_date: date, end_date: date) -> List[str]:
    """``YYYY-MM`` keys of every month overlapping ``[start_date, end_date)``."""
    months = []
    current = start_date.replace(day=1)
    while current < end_date:
        months.append(current.strftime("%Y-%m"))
        current = (current + timedelta(days=32)).replace(day=1)
    return months


class ForecastDataSource:
    """Reads forecast inputs from the persistent store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def cash_position(self) -> Decimal:
        """Sum of balances across active bank accounts."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.sum(BankAccount.balance))
                .where(BankAccount.status == "ACTIVE")
            )
            return result.scalar() or Decimal("0")

    async def open_invoices(self) -> List[SyncedInvoice]:
        """
        All unsettled receivables and payables.

        Not filtered by date here: a payment pattern can move an overdue
        invoice into the horizon, so the window is applied after shifting.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                select(SyncedInvoice)
                .where(
                    SyncedInvoice.status.in_(OPEN_INVOICE_STATUSES),
                    SyncedInvoice.amount_due > 0,
                    SyncedInvoice.due_date.is_not(None),
                )
                .order_by(SyncedInvoice.due_date)
            )
            return list(result.scalars().all())

    async def payment_patterns(self) -> List[PaymentPattern]:
        async with self._session_factory() as db:
            result = await db.execute(select(PaymentPattern))
            return list(result.scalars().all())

    async def repeating_transactions(self, start_date: date, end_date: date) -> List[RepeatingTransaction]:
        """Authorised templates still running and scheduled before the horizon ends."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(RepeatingTransaction)
                .where(
                    RepeatingTransaction.status == "AUTHORISED",
                    RepeatingTransaction.next_scheduled_date.is_not(None),
                    RepeatingTransaction.next_scheduled_date < end_date,
                    or_(
                        RepeatingTransaction.end_date.is_(None),
                        RepeatingTransaction.end_date >= start_date,
                    ),
                )
            )
            return list(result.scalars().all())

    async def budgets(self, start_date: date, end_date: date) -> List[CashFlowBudget]:
        """Expense budgets for every month the horizon touches."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(CashFlowBudget)
                .where(
                    CashFlowBudget.month_year.in_(months_between(start_date, end_date)),
                    CashFlowBudget.category == "EXPENSE",
                )
            )
            return list(result.scalars().all())

    async def tax_obligations(self, start_date: date, end_date: date) -> List[TaxObligation]:
        """Pending tax obligations due inside the horizon."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(TaxObligation)
                .where(
                    TaxObligation.status == "PENDING",
                    TaxObligation.due_date >= start_date,
                    TaxObligation.due_date < end_date,
                )
                .order_by(TaxObligation.due_date)
            )
            return list(result.scalars().all())

    async def load_snapshot(self, start_date: date, end_date: date) -> ForecastSnapshot:
        """Run every loader concurrently and join the results."""
        loaders = {
            "cash position": self.cash_position(),
            "open invoices": self.open_invoices(),
            "payment patterns": self.payment_patterns(),
            "repeating transactions": self.repeating_transactions(start_date, end_date),
            "budgets": self.budgets(start_date, end_date),
            "tax obligations": self.tax_obligations(start_date, end_date),
        }
        results = await asyncio.gather(*loaders.values(), return_exceptions=True)

        for name, result in zip(loaders, results):
            if isinstance(result, Exception):
                logger.error(f"Forecast data load failed for {name}: {result}")
                raise ForecastDataError(name, result) from result

        cash, invoices, patterns, repeating, budgets, taxes = results
        return ForecastSnapshot(
            cash_position=cash,
            invoices=invoices,
            payment_patterns=patterns,
            repeating_transactions=repeating,
            budgets=budgets,
            tax_obligations=taxes,
        )


# ============================================================================
# FORECAST PERSISTENCE
# ============================================================================

def forecast_day_to_row(day: ForecastDay) -> dict:
    """Flatten a forecast day into ``cash_flow_forecasts`` columns."""
    return {
        "id": generate_id("fc"),
        "date": day.date,
        "opening_balance": day.opening_balance,
        "from_invoices": day.inflows.from_invoices,
        "from_repeating": day.inflows.from_repeating,
        "total_inflows": day.inflows.total,
        "to_bills": day.outflows.to_bills,
        "to_repeating": day.outflows.to_repeating,
        "to_taxes": day.outflows.to_taxes,
        "to_patterns": day.outflows.to_patterns,
        "to_budgets": day.outflows.to_budgets,
        "total_outflows": day.outflows.total,
        "closing_balance": day.closing_balance,
        "best_case": day.scenarios.best_case if day.scenarios else None,
        "worst_case": day.scenarios.worst_case if day.scenarios else None,
        "confidence_level": day.confidence_level,
        "alerts": [alert.to_dict() for alert in day.alerts],
    }


def forecast_upsert(days: Sequence[ForecastDay]):
    """``INSERT ... ON CONFLICT (date) DO UPDATE`` for a batch of days.

    ``id`` and ``created_at`` of an existing row are kept.
    """
    stmt = pg_insert(CashFlowForecast).values([forecast_day_to_row(day) for day in days])
    updatable = [
        column.name for column in CashFlowForecast.__table__.columns
        if column.name not in ("id", "date", "created_at", "updated_at")
    ]
    return stmt.on_conflict_do_update(
        index_elements=[CashFlowForecast.date],
        set_={
            **{name: stmt.excluded[name] for name in updatable},
            "updated_at": func.now(),
        },
    )


class ForecastRepository:
    """Stores forecast rows keyed by calendar date."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert_days(self, days: Sequence[ForecastDay], replace_from: Optional[date] = None) -> int:
        """
        Insert or overwrite one row per day in a single transaction.

        With ``replace_from``, stored rows dated on or after it are deleted in
        the same transaction first, so a failed write leaves the old rows in
        place.
        """
        if not days:
            return 0

        async with self._session_factory() as db:
            async with db.begin():
                if replace_from is not None:
                    result = await db.execute(
                        delete(CashFlowForecast).where(CashFlowForecast.date >= replace_from)
                    )
                    logger.info(f"Replacing {result.rowcount or 0} stored forecast rows from {replace_from}")
                await db.execute(forecast_upsert(days))
        return len(days)

    async def list_range(self, start_date: date, end_date: date) -> List[CashFlowForecast]:
        """Stored rows in ``[start_date, end_date]``, ordered by date."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(CashFlowForecast)
                .where(
                    CashFlowForecast.date >= start_date,
                    CashFlowForecast.date <= end_date,
                )
                .order_by(CashFlowForecast.date)
            )
            return list(result.scalars().all())
