"""Cash flow data sync from Xero.

Pulls everything the cash flow forecast reads into local tables:

1. Invoices and bills (paged, delta since the last successful sync)
2. Repeating invoice/bill templates
3. Credit note allocations, which reduce the amount due on invoices
4. Bank accounts and their closing balances
5. Payment patterns, recalculated from paid invoices
6. Tax obligations, estimated from the balance sheet, P&L and ledger

Xero calls are fetched concurrently through the tenant's rate limiter;
database writes then run sequentially on the one session and commit
together. Every run writes a ``CashFlowSyncLog`` row.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeper.config import Settings, settings as default_settings
from bookkeeper.models import (
    BankAccount,
    CashFlowSyncLog,
    RepeatingTransaction,
    SyncedInvoice,
)
from bookkeeper.reports import extract_balance_sheet, extract_bank_balances, extract_profit_and_loss, parse_rows
from bookkeeper.tax import OrganisationTaxProfile, UKTaxCalculator, estimate_liabilities, store_tax_obligations
from bookkeeper.xero.client import PAGE_SIZE, XeroClient
from bookkeeper.xero.patterns import refresh_payment_patterns
from bookkeeper.xero.rate_limiter import XeroRateLimiter

logger = logging.getLogger(__name__)

SYNCED_INVOICE_STATUSES = ["AUTHORISED", "PAID", "VOIDED"]
PENDING_VERIFICATION = "PENDING_VERIFICATION"


@dataclass
class SyncResult:
    """Counts reported by a sync run."""
    items_synced: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    tax_obligations_created: int = 0

    def add(self, other: "SyncResult") -> "SyncResult":
        self.items_synced += other.items_synced
        self.items_created += other.items_created
        self.items_updated += other.items_updated
        self.items_deleted += other.items_deleted
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items_synced": self.items_synced,
            "items_created": self.items_created,
            "items_updated": self.items_updated,
            "items_deleted": self.items_deleted,
            "tax_obligations_created": self.tax_obligations_created,
        }


class CashFlowDataSync:
    """Syncs forecast inputs for one Xero organisation."""

    def __init__(
        self,
        db: AsyncSession,
        client: XeroClient,
        limiter: XeroRateLimiter,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.client = client
        self.limiter = limiter
        self.settings = settings or default_settings

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def perform_daily_sync(self) -> SyncResult:
        """Incremental sync of everything changed since the last successful run."""
        log = await self._start_log("DELTA")
        try:
            last_sync = await self._last_successful_sync()
            logger.info(f"Starting delta sync for tenant {self.client.tenant_id} (since {last_sync})")

            result = await self._sync_ledger(last_sync)
            await self.db.commit()
            await self._refresh_derived_data(result)

            await self._finish_log(log, result)
            logger.info(f"Delta sync complete for tenant {self.client.tenant_id}: {result.to_dict()}")
            return result
        except Exception as e:
            await self._fail_log(log, e)
            raise

    async def perform_full_reconciliation(self) -> SyncResult:
        """
        Re-sync everything and retire rows Xero no longer returns.

        Every invoice and template is marked PENDING_VERIFICATION, the full
        data set is re-fetched (which resets the status of rows still in
        Xero), and whatever is left unverified is voided or cancelled. All of
        this commits as one transaction.
        """
        log = await self._start_log("FULL_RECONCILIATION")
        try:
            logger.info(f"Starting full reconciliation for tenant {self.client.tenant_id}")
            await self.db.execute(update(SyncedInvoice).values(status=PENDING_VERIFICATION))
            await self.db.execute(update(RepeatingTransaction).values(status=PENDING_VERIFICATION))

            result = await self._sync_ledger(last_sync=None)

            voided = await self.db.execute(
                update(SyncedInvoice)
                .where(SyncedInvoice.status == PENDING_VERIFICATION)
                .values(status="VOIDED")
            )
            cancelled = await self.db.execute(
                update(RepeatingTransaction)
                .where(RepeatingTransaction.status == PENDING_VERIFICATION)
                .values(status="CANCELLED")
            )
            result.items_deleted = (voided.rowcount or 0) + (cancelled.rowcount or 0)
            await self.db.commit()

            await self._refresh_derived_data(result)
            await self._finish_log(log, result)
            logger.info(f"Full reconciliation complete for tenant {self.client.tenant_id}: {result.to_dict()}")
            return result
        except Exception as e:
            await self._fail_log(log, e)
            raise

    # =========================================================================
    # SYNC LOG
    # =========================================================================

    async def _start_log(self, sync_type: str) -> CashFlowSyncLog:
        log = CashFlowSyncLog(sync_type=sync_type, entity_type="all", status="IN_PROGRESS")
        self.db.add(log)
        await self.db.commit()
        return log

    async def _finish_log(self, log: CashFlowSyncLog, result: SyncResult) -> None:
        now = datetime.now(timezone.utc)
        log.status = "SUCCESS"
        log.completed_at = now
        log.items_synced = result.items_synced
        log.items_created = result.items_created
        log.items_updated = result.items_updated
        log.items_deleted = result.items_deleted

        self.client.connection.last_sync_at = now
        self.client.connection.sync_error = None
        await self.db.commit()

    async def _fail_log(self, log: CashFlowSyncLog, error: BaseException) -> None:
        logger.error(f"{log.sync_type} sync failed for tenant {self.client.tenant_id}: {error}")
        await self.db.rollback()
        log.status = "FAILED"
        log.completed_at = datetime.now(timezone.utc)
        log.error_message = str(error)
        self.client.connection.sync_error = str(error)
        await self.db.commit()

    async def _last_successful_sync(self) -> Optional[datetime]:
        result = await self.db.execute(
            select(CashFlowSyncLog.completed_at)
            .where(
                CashFlowSyncLog.sync_type == "DELTA",
                CashFlowSyncLog.status == "SUCCESS",
            )
            .order_by(CashFlowSyncLog.completed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # FETCH
    # =========================================================================

    async def _fetch_pages(self, fetch: Callable[..., List[Dict[str, Any]]], **kwargs) -> List[Dict[str, Any]]:
        """Fetch pages until one comes back short."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self.limiter.execute(fetch, page=page, **kwargs)
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                return items
            page += 1

    async def _sync_ledger(self, last_sync: Optional[datetime]) -> SyncResult:
        """Fetch from Xero in parallel, then apply the writes. Does not commit."""
        invoices, bills, templates, credit_notes, bank_accounts, bank_summary = await asyncio.gather(
            self._fetch_pages(
                self.client.get_invoices,
                statuses=SYNCED_INVOICE_STATUSES,
                where='Type=="ACCREC"',
                if_modified_since=last_sync,
            ),
            self._fetch_pages(
                self.client.get_invoices,
                statuses=SYNCED_INVOICE_STATUSES,
                where='Type=="ACCPAY"',
                if_modified_since=last_sync,
            ),
            self.limiter.execute(self.client.get_repeating_invoices),
            self._fetch_pages(self.client.get_credit_notes, if_modified_since=last_sync),
            self.limiter.execute(self.client.get_bank_accounts),
            self.limiter.execute(self.client.get_bank_summary_rows),
        )

        result = SyncResult()
        result.add(await self._apply_invoices(invoices + bills))
        result.add(await self._apply_repeating(templates))
        # Allocations must land after the invoices they reduce
        result.add(await self._apply_credit_notes(credit_notes))
        result.add(await self._apply_bank_accounts(bank_accounts, extract_bank_balances(parse_rows(bank_summary))))
        return result

    # =========================================================================
    # APPLY
    # =========================================================================

    async def _apply_invoices(self, invoices: List[Dict[str, Any]]) -> SyncResult:
        result = SyncResult()
        for data in invoices:
            invoice_id = data.get("invoice_id")
            if not invoice_id:
                continue

            values = {
                "type": data.get("type") or "ACCREC",
                "contact_id": data.get("contact_id"),
                "contact_name": data.get("contact_name"),
                "invoice_number": data.get("invoice_number"),
                "reference": data.get("reference"),
                "date": data.get("date"),
                "due_date": data.get("due_date"),
                "amount_due": Decimal(str(data.get("amount_due") or 0)),
                "total": Decimal(str(data.get("total") or 0)),
                "status": data.get("status") or "AUTHORISED",
                "currency_code": data.get("currency_code") or "GBP",
                "fully_paid_on_date": data.get("fully_paid_on_date"),
                "last_modified_utc": data.get("updated_date_utc"),
            }

            existing = await self.db.get(SyncedInvoice, invoice_id)
            if existing:
                for key, value in values.items():
                    setattr(existing, key, value)
                result.items_updated += 1
            else:
                self.db.add(SyncedInvoice(id=invoice_id, **values))
                result.items_created += 1
            result.items_synced += 1

        await self.db.flush()
        return result

    async def _apply_repeating(self, templates: List[Dict[str, Any]]) -> SyncResult:
        result = SyncResult()
        for data in templates:
            template_id = data.get("repeating_invoice_id")
            if not template_id:
                continue

            values = {
                "type": data.get("type") or "ACCREC",
                "contact_id": data.get("contact_id"),
                "contact_name": data.get("contact_name"),
                "schedule_unit": data.get("schedule_unit") or "MONTHLY",
                "schedule_interval": data.get("schedule_interval") or 1,
                "next_scheduled_date": data.get("next_scheduled_date"),
                "end_date": data.get("end_date"),
                "amount": Decimal(str(data.get("amount") or 0)),
                "total": Decimal(str(data.get("total") or 0)),
                "status": data.get("status") or "AUTHORISED",
                "reference": data.get("reference"),
                "last_modified_utc": datetime.now(timezone.utc),
            }

            existing = await self.db.get(RepeatingTransaction, template_id)
            if existing:
                for key, value in values.items():
                    setattr(existing, key, value)
                result.items_updated += 1
            else:
                self.db.add(RepeatingTransaction(id=template_id, **values))
                result.items_created += 1
            result.items_synced += 1

        await self.db.flush()
        return result

    async def _apply_credit_notes(self, credit_notes: List[Dict[str, Any]]) -> SyncResult:
        result = SyncResult()
        for note in credit_notes:
            if not note.get("credit_note_id") or note.get("status") != "AUTHORISED":
                continue

            for allocation in note.get("allocations") or []:
                invoice_id = allocation.get("invoice_id")
                if not invoice_id:
                    continue
                invoice = await self.db.get(SyncedInvoice, invoice_id)
                if invoice is None:
                    continue
                amount = Decimal(str(allocation.get("amount") or 0))
                invoice.amount_due = max(Decimal("0"), Decimal(invoice.amount_due or 0) - amount)
                result.items_updated += 1
            result.items_synced += 1

        await self.db.flush()
        return result

    async def _apply_bank_accounts(
        self,
        accounts: List[Dict[str, Any]],
        balances: Dict[str, Decimal],
    ) -> SyncResult:
        result = SyncResult()
        for data in accounts:
            account_id = data.get("account_id")
            if not account_id:
                continue

            status = "ARCHIVED" if data.get("status") == "ARCHIVED" else "ACTIVE"
            row = await self.db.execute(
                select(BankAccount).where(BankAccount.xero_account_id == account_id)
            )
            account = row.scalar_one_or_none()
            if account is None:
                account = BankAccount(xero_account_id=account_id, name=data.get("name") or account_id)
                self.db.add(account)
                result.items_created += 1
            else:
                result.items_updated += 1

            account.name = data.get("name") or account.name
            account.code = data.get("code")
            account.currency = data.get("currency_code") or account.currency or "GBP"
            account.status = status
            if account.name in balances:
                account.balance = balances[account.name]
            result.items_synced += 1

        await self.db.flush()
        return result

    # =========================================================================
    # DERIVED DATA
    # =========================================================================

    async def _refresh_derived_data(self, result: SyncResult) -> None:
        await refresh_payment_patterns(self.db)
        result.tax_obligations_created = await self._refresh_tax_obligations()

    async def _refresh_tax_obligations(self) -> int:
        """
        Re-estimate tax obligations for the forecast window.

        Report figures are preferred; the ledger-based estimate fills any
        figure the reports do not provide.
        """
        today = date.today()
        organisation, balance_sheet_rows, profit_and_loss_rows = await asyncio.gather(
            self.limiter.execute(self.client.get_organisation),
            self.limiter.execute(self.client.get_balance_sheet_rows),
            self.limiter.execute(
                self.client.get_profit_and_loss_rows,
                from_date=today - relativedelta(months=12),
                to_date=today,
            ),
        )
        if organisation:
            self.client.connection.remember_organisation(organisation)
        balance_sheet = extract_balance_sheet(parse_rows(balance_sheet_rows))
        profit_and_loss = extract_profit_and_loss(parse_rows(profit_and_loss_rows))

        liabilities = await estimate_liabilities(self.db, today)
        if balance_sheet.vat_liability is not None:
            liabilities.vat_liability = balance_sheet.vat_liability
        if profit_and_loss.net_profit is not None:
            liabilities.annual_profit = max(profit_and_loss.net_profit, Decimal("0"))

        calculator = UKTaxCalculator.from_settings(
            self.settings,
            liabilities,
            organisation=OrganisationTaxProfile.from_organisation(organisation) if organisation else None,
        )
        obligations = calculator.calculate_upcoming(self.settings.FORECAST_MAX_DAYS, today=today)
        return await store_tax_obligations(self.db, obligations)
