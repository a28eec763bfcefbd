"""Xero integration: API client, rate limiting and cash flow data sync."""
