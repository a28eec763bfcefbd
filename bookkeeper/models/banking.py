"""Bank account, bank transaction and GL account models synced from Xero."""
from sqlalchemy import Column, String, DateTime, Date, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookkeeper.database import Base
from bookkeeper.models.base import MONEY, generate_id


class BankAccount(Base):
    """Bank account - the only source of the forecast's opening cash position."""

    __tablename__ = "bank_accounts"

    id = Column(String, primary_key=True, default=lambda: generate_id("bank"))
    xero_account_id = Column(String, nullable=True, unique=True, index=True)
    name = Column(String, nullable=False)
    code = Column(String, nullable=True)
    currency = Column(String, nullable=False, default="GBP")
    balance = Column(MONEY, nullable=False, default=0)
    status = Column(String, nullable=False, default="ACTIVE")  # "ACTIVE" | "ARCHIVED"
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    transactions = relationship("BankTransaction", back_populates="bank_account", cascade="all, delete-orphan")


class BankTransaction(Base):
    """Bank transaction (spend or receive money) from Xero."""

    __tablename__ = "bank_transactions"

    id = Column(String, primary_key=True, default=lambda: generate_id("btx"))
    bank_account_id = Column(String, ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(String, nullable=False)  # "RECEIVE" | "SPEND"
    date = Column(Date, nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    contact_name = Column(String, nullable=True)
    description = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    account_code = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="AUTHORISED")
    is_reconciled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    bank_account = relationship("BankAccount", back_populates="transactions")


class GLAccount(Base):
    """General ledger account from the Xero chart of accounts."""

    __tablename__ = "gl_accounts"

    id = Column(String, primary_key=True, default=lambda: generate_id("gl"))
    code = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=True)  # Xero account type, e.g. "CURRLIAB"
    account_class = Column("class", String, nullable=True)  # "ASSET" | "LIABILITY" | "EXPENSE" | ...
    status = Column(String, nullable=False, default="ACTIVE")
