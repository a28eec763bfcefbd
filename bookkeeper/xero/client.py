"""Xero API client wrapper.

This module wraps the xero-python SDK and maps its objects to plain dicts
for the sync layer. Calls are synchronous; run them through
``XeroRateLimiter.execute`` so they stay inside the tenant's limits.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from xero_python.accounting import AccountingApi
from xero_python.api_client import ApiClient, Configuration
from xero_python.api_client.oauth2 import OAuth2Token

from bookkeeper.config import settings
from bookkeeper.models import XeroConnection

PAGE_SIZE = 100


# ============================================================================
# API CLIENT FACTORY
# ============================================================================

def create_api_client(access_token: str) -> ApiClient:
    """Create a configured Xero API client."""
    configuration = Configuration()

    oauth2_token = OAuth2Token(
        client_id=settings.XERO_CLIENT_ID,
        client_secret=settings.XERO_CLIENT_SECRET
    )
    oauth2_token.access_token = access_token

    return ApiClient(configuration, oauth2_token=oauth2_token)


def _value(field: Any) -> Any:
    """SDK enums carry their wire value in ``.value``."""
    return getattr(field, "value", field)


def _as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)[:10]).date()


def report_rows_to_dicts(rows: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Convert SDK report rows into nested dicts."""
    return [
        {
            "row_type": _value(row.row_type),
            "title": getattr(row, "title", None),
            "cells": [{"value": cell.value} for cell in (row.cells or [])],
            "rows": report_rows_to_dicts(row.rows),
        }
        for row in (rows or [])
    ]


# ============================================================================
# XERO API WRAPPER CLASS
# ============================================================================

class XeroClient:
    """High-level Xero API client for one connected organisation."""

    def __init__(self, connection: XeroConnection, accounting_api: Optional[AccountingApi] = None):
        self.connection = connection
        self.tenant_id = connection.tenant_id
        self.accounting_api = accounting_api or AccountingApi(create_api_client(connection.access_token))

    # -------------------------------------------------------------------------
    # Organisation
    # -------------------------------------------------------------------------

    def get_organisation(self) -> Dict[str, Any]:
        """Get organisation details, including its tax calendar."""
        response = self.accounting_api.get_organisations(self.tenant_id)
        if not response.organisations:
            return {}

        org = response.organisations[0]
        return {
            "organisation_id": org.organisation_id,
            "name": org.name,
            "base_currency": _value(org.base_currency),
            "country_code": _value(org.country_code),
            "financial_year_end_day": org.financial_year_end_day,
            "financial_year_end_month": org.financial_year_end_month,
            "sales_tax_period": _value(org.sales_tax_period),
        }

    # -------------------------------------------------------------------------
    # Bank accounts
    # -------------------------------------------------------------------------

    def get_bank_accounts(self) -> List[Dict[str, Any]]:
        """Get bank accounts from the chart of accounts."""
        response = self.accounting_api.get_accounts(self.tenant_id, where='Type=="BANK"')
        return [
            {
                "account_id": account.account_id,
                "code": account.code,
                "name": account.name,
                "currency_code": _value(account.currency_code),
                "status": _value(account.status),
            }
            for account in (response.accounts or [])
        ]

    # -------------------------------------------------------------------------
    # Invoices and bills
    # -------------------------------------------------------------------------

    def get_invoices(
        self,
        page: int = 1,
        statuses: Optional[List[str]] = None,
        where: Optional[str] = None,
        if_modified_since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get one page of invoices (ACCREC) and bills (ACCPAY).

        Args:
            page: Page number; Xero returns up to 100 per page
            statuses: Filter by status (AUTHORISED, PAID, VOIDED, ...)
            where: Xero filter expression, e.g. 'Type=="ACCPAY"'
            if_modified_since: Only return invoices changed after this time
        """
        response = self.accounting_api.get_invoices(
            self.tenant_id,
            if_modified_since=if_modified_since,
            where=where,
            statuses=statuses,
            page=page,
        )

        return [
            {
                "invoice_id": inv.invoice_id,
                "invoice_number": inv.invoice_number,
                "reference": inv.reference,
                "contact_id": inv.contact.contact_id if inv.contact else None,
                "contact_name": inv.contact.name if inv.contact else None,
                "type": _value(inv.type),
                "status": _value(inv.status),
                "amount_due": inv.amount_due or 0,
                "total": inv.total or 0,
                "currency_code": _value(inv.currency_code),
                "date": _as_date(inv.date),
                "due_date": _as_date(inv.due_date),
                "fully_paid_on_date": _as_date(inv.fully_paid_on_date),
                "updated_date_utc": inv.updated_date_utc,
            }
            for inv in (response.invoices or [])
        ]

    # -------------------------------------------------------------------------
    # Repeating Invoices
    # -------------------------------------------------------------------------

    def get_repeating_invoices(self, where: Optional[str] = 'Status=="AUTHORISED"') -> List[Dict[str, Any]]:
        """Get repeating invoice and bill templates (scheduled future cash flows)."""
        response = self.accounting_api.get_repeating_invoices(self.tenant_id, where=where)

        templates = []
        for inv in response.repeating_invoices or []:
            schedule = inv.schedule
            templates.append({
                "repeating_invoice_id": inv.repeating_invoice_id,
                "contact_id": inv.contact.contact_id if inv.contact else None,
                "contact_name": inv.contact.name if inv.contact else None,
                "type": _value(inv.type),
                "status": _value(inv.status),
                "reference": inv.reference,
                "amount": sum((li.line_amount or 0) for li in (inv.line_items or [])),
                "total": inv.total or 0,
                "schedule_unit": _value(schedule.unit) if schedule else None,
                "schedule_interval": schedule.period if schedule else None,
                "next_scheduled_date": _as_date(schedule.next_scheduled_date) if schedule else None,
                "end_date": _as_date(schedule.end_date) if schedule else None,
            })

        return templates

    # -------------------------------------------------------------------------
    # Credit Notes
    # -------------------------------------------------------------------------

    def get_credit_notes(
        self,
        page: int = 1,
        if_modified_since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Get one page of credit notes with their invoice allocations."""
        response = self.accounting_api.get_credit_notes(
            self.tenant_id,
            if_modified_since=if_modified_since,
            page=page,
        )

        return [
            {
                "credit_note_id": note.credit_note_id,
                "status": _value(note.status),
                "allocations": [
                    {
                        "invoice_id": allocation.invoice.invoice_id if allocation.invoice else None,
                        "amount": allocation.amount or 0,
                    }
                    for allocation in (note.allocations or [])
                ],
            }
            for note in (response.credit_notes or [])
        ]

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def get_balance_sheet_rows(self, report_date: Optional[date] = None) -> List[Dict[str, Any]]:
        """Get the balance sheet report as nested row dicts."""
        response = self.accounting_api.get_report_balance_sheet(self.tenant_id, date=report_date)
        return report_rows_to_dicts(response.reports[0].rows if response.reports else [])

    def get_profit_and_loss_rows(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Get the profit and loss report as nested row dicts."""
        response = self.accounting_api.get_report_profit_and_loss(
            self.tenant_id,
            from_date=from_date,
            to_date=to_date,
            standard_layout=True,
        )
        return report_rows_to_dicts(response.reports[0].rows if response.reports else [])

    def get_bank_summary_rows(self) -> List[Dict[str, Any]]:
        """Get the bank summary report (closing balance per bank account)."""
        response = self.accounting_api.get_report_bank_summary(self.tenant_id)
        return report_rows_to_dicts(response.reports[0].rows if response.reports else [])
