"""Cash flow budgets, tax obligations, persisted forecast rows and sync logs."""
from sqlalchemy import Column, String, DateTime, Date, Numeric, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from bookkeeper.database import Base
from bookkeeper.models.base import MONEY, generate_id


class CashFlowBudget(Base):
    """Monthly budget line; EXPENSE budgets are amortised into the forecast."""

    __tablename__ = "cash_flow_budgets"
    __table_args__ = (
        UniqueConstraint("month_year", "account_code", "category", name="uq_cash_flow_budgets_month_account"),
    )

    id = Column(String, primary_key=True, default=lambda: generate_id("bud"))
    month_year = Column(String, nullable=False, index=True)  # "YYYY-MM"
    category = Column(String, nullable=False, default="EXPENSE")  # "EXPENSE" | "INCOME"
    account_code = Column(String, nullable=False, default="")
    name = Column(String, nullable=True)
    budgeted_amount = Column(MONEY, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class TaxObligation(Base):
    """A tax payment (VAT, PAYE/NI, corporation tax) due on a fixed date."""

    __tablename__ = "tax_obligations"

    id = Column(String, primary_key=True, default=lambda: generate_id("tax"))
    type = Column(String, nullable=False)  # "VAT" | "PAYE_NI" | "CORPORATION_TAX"
    due_date = Column(Date, nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    status = Column(String, nullable=False, default="PENDING")  # "PENDING" | "PAID"
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CashFlowForecast(Base):
    """One projected day. Re-running a forecast overwrites rows by date."""

    __tablename__ = "cash_flow_forecasts"

    id = Column(String, primary_key=True, default=lambda: generate_id("fc"))
    date = Column(Date, nullable=False, unique=True, index=True)
    opening_balance = Column(MONEY, nullable=False)

    # Inflows
    from_invoices = Column(MONEY, nullable=False, default=0)
    from_repeating = Column(MONEY, nullable=False, default=0)
    total_inflows = Column(MONEY, nullable=False, default=0)

    # Outflows
    to_bills = Column(MONEY, nullable=False, default=0)
    to_repeating = Column(MONEY, nullable=False, default=0)
    to_taxes = Column(MONEY, nullable=False, default=0)
    to_patterns = Column(MONEY, nullable=False, default=0)
    to_budgets = Column(MONEY, nullable=False, default=0)
    total_outflows = Column(MONEY, nullable=False, default=0)

    closing_balance = Column(MONEY, nullable=False)
    best_case = Column(MONEY, nullable=True)
    worst_case = Column(MONEY, nullable=True)
    confidence_level = Column(Numeric(precision=3, scale=2), nullable=False)
    alerts = Column(JSONB, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class CashFlowSyncLog(Base):
    """Log of cash flow data syncs; the last successful DELTA drives incremental fetches."""

    __tablename__ = "cash_flow_sync_logs"

    id = Column(String, primary_key=True, default=lambda: generate_id("cfsync"))
    sync_type = Column(String, nullable=False)  # "DELTA" | "FULL_RECONCILIATION"
    entity_type = Column(String, nullable=False, default="all")
    status = Column(String, nullable=False)  # "IN_PROGRESS" | "SUCCESS" | "FAILED"
    items_synced = Column(Integer, nullable=False, default=0)
    items_created = Column(Integer, nullable=False, default=0)
    items_updated = Column(Integer, nullable=False, default=0)
    items_deleted = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
