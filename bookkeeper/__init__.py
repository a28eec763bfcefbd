"""Bookkeeper backend - Xero-synced bookkeeping and cash flow forecasting."""

__version__ = "0.3.0"
