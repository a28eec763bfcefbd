"""Receivables, payables, repeating templates and payment patterns."""
from sqlalchemy import Column, String, DateTime, Date, Numeric, Integer, UniqueConstraint
from sqlalchemy.sql import func

from bookkeeper.database import Base
from bookkeeper.models.base import MONEY, generate_id


class SyncedInvoice(Base):
    """
    Invoice or bill synced from Xero.

    The primary key is the Xero InvoiceID so re-syncs update in place.
    """

    __tablename__ = "synced_invoices"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False, index=True)  # "ACCREC" (receivable) | "ACCPAY" (payable)
    contact_id = Column(String, nullable=True, index=True)
    contact_name = Column(String, nullable=True)
    invoice_number = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    amount_due = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False, default=0)
    status = Column(String, nullable=False, index=True)
    # Options: "OPEN", "AUTHORISED", "PAID", "VOIDED", "PENDING_VERIFICATION"
    currency_code = Column(String, nullable=False, default="GBP")
    fully_paid_on_date = Column(Date, nullable=True)
    last_modified_utc = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class RepeatingTransaction(Base):
    """Repeating invoice/bill template from Xero."""

    __tablename__ = "repeating_transactions"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)  # "ACCREC" | "ACCPAY"
    contact_id = Column(String, nullable=True)
    contact_name = Column(String, nullable=True)
    schedule_unit = Column(String, nullable=False, default="MONTHLY")  # "WEEKLY" | "MONTHLY"
    schedule_interval = Column(Integer, nullable=False, default=1)
    next_scheduled_date = Column(Date, nullable=True, index=True)
    end_date = Column(Date, nullable=True)
    amount = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False, default=0)
    status = Column(String, nullable=False)  # "AUTHORISED" | "CANCELLED" | "PENDING_VERIFICATION"
    reference = Column(String, nullable=True)
    last_modified_utc = Column(DateTime(timezone=True), nullable=True)


class PaymentPattern(Base):
    """Empirical payment timing for one contact, learned from paid invoices."""

    __tablename__ = "payment_patterns"
    __table_args__ = (
        UniqueConstraint("contact_id", "type", name="uq_payment_patterns_contact_type"),
    )

    id = Column(String, primary_key=True, default=lambda: generate_id("ppat"))
    contact_id = Column(String, nullable=False)
    contact_name = Column(String, nullable=True)
    type = Column(String, nullable=False)  # "CUSTOMER" | "SUPPLIER"
    average_days_to_pay = Column(Numeric(precision=8, scale=2), nullable=False, default=0)
    on_time_rate = Column(Numeric(precision=5, scale=2), nullable=False, default=0)
    early_rate = Column(Numeric(precision=5, scale=2), nullable=False, default=0)
    late_rate = Column(Numeric(precision=5, scale=2), nullable=False, default=0)
    sample_size = Column(Integer, nullable=False, default=0)
    last_calculated = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
