"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
Use string-based forward references in relationships: relationship("BankAccount", ...)
"""

# Base utilities
from bookkeeper.models.base import generate_id

# Banking models
from bookkeeper.models.banking import BankAccount, BankTransaction, GLAccount

# Ledger models
from bookkeeper.models.ledger import SyncedInvoice, RepeatingTransaction, PaymentPattern

# Cash flow models
from bookkeeper.models.cashflow import (
    CashFlowBudget,
    TaxObligation,
    CashFlowForecast,
    CashFlowSyncLog,
)

# Xero models
from bookkeeper.models.xero import XeroConnection


__all__ = [
    # Utilities
    "generate_id",
    # Banking
    "BankAccount",
    "BankTransaction",
    "GLAccount",
    # Ledger
    "SyncedInvoice",
    "RepeatingTransaction",
    "PaymentPattern",
    # Cash flow
    "CashFlowBudget",
    "TaxObligation",
    "CashFlowForecast",
    "CashFlowSyncLog",
    # Xero
    "XeroConnection",
]
