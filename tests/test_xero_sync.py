"""Tests for the Xero cash flow sync."""
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookkeeper.models import XeroConnection
from bookkeeper.xero.client import PAGE_SIZE
from bookkeeper.xero.sync import CashFlowDataSync, SyncResult


@pytest.fixture
def db():
    db = AsyncMock()
    db.add = MagicMock()
    db.get = AsyncMock(return_value=None)
    return db


@pytest.fixture
def client():
    client = MagicMock()
    client.tenant_id = "tenant-1"
    client.connection = SimpleNamespace(last_sync_at=None, sync_error=None)
    return client


@pytest.fixture
def limiter():
    limiter = MagicMock()

    async def execute(fn, *args, **kwargs):
        return fn(*args, **kwargs)

    limiter.execute = AsyncMock(side_effect=execute)
    return limiter


@pytest.fixture
def sync(db, client, limiter):
    return CashFlowDataSync(db=db, client=client, limiter=limiter)


class TestSyncResult:
    def test_add_and_dict(self):
        result = SyncResult(items_synced=1, items_created=1).add(SyncResult(items_synced=2, items_updated=2))

        assert result.to_dict() == {
            "items_synced": 3,
            "items_created": 1,
            "items_updated": 2,
            "items_deleted": 0,
            "tax_obligations_created": 0,
        }


class TestFetchPages:
    """Paging through Xero list endpoints."""

    @pytest.mark.asyncio
    async def test_stops_on_short_page(self, sync, client):
        client.get_invoices.side_effect = [
            [{"invoice_id": str(i)} for i in range(PAGE_SIZE)],
            [{"invoice_id": "last"}],
        ]

        items = await sync._fetch_pages(client.get_invoices, where='Type=="ACCREC"')

        assert len(items) == PAGE_SIZE + 1
        assert [call.kwargs["page"] for call in client.get_invoices.call_args_list] == [1, 2]


class TestApply:
    """Writing fetched records."""

    @pytest.mark.asyncio
    async def test_invoices_created_and_updated(self, sync, db):
        existing = SimpleNamespace(amount_due=Decimal("10"))
        db.get = AsyncMock(side_effect=[None, existing])

        result = await sync._apply_invoices([
            {"invoice_id": "inv-new", "type": "ACCREC", "amount_due": 100, "status": "AUTHORISED"},
            {"invoice_id": "inv-old", "type": "ACCPAY", "amount_due": "55.50", "status": "PAID"},
            {"type": "ACCREC"},
        ])

        assert (result.items_created, result.items_updated, result.items_synced) == (1, 1, 2)
        assert db.add.call_args[0][0].id == "inv-new"
        assert existing.amount_due == Decimal("55.50")
        assert existing.status == "PAID"

    @pytest.mark.asyncio
    async def test_credit_note_reduces_amount_due(self, sync, db):
        invoice = SimpleNamespace(amount_due=Decimal("100"))
        db.get = AsyncMock(return_value=invoice)

        await sync._apply_credit_notes([{
            "credit_note_id": "cn-1",
            "status": "AUTHORISED",
            "allocations": [{"invoice_id": "inv-1", "amount": "30"}],
        }])

        assert invoice.amount_due == Decimal("70")

    @pytest.mark.asyncio
    async def test_credit_note_floors_at_zero(self, sync, db):
        invoice = SimpleNamespace(amount_due=Decimal("20"))
        db.get = AsyncMock(return_value=invoice)

        await sync._apply_credit_notes([{
            "credit_note_id": "cn-1",
            "status": "AUTHORISED",
            "allocations": [{"invoice_id": "inv-1", "amount": "30"}],
        }])

        assert invoice.amount_due == Decimal("0")

    @pytest.mark.asyncio
    async def test_draft_credit_notes_ignored(self, sync, db):
        result = await sync._apply_credit_notes([{"credit_note_id": "cn-1", "status": "DRAFT", "allocations": []}])

        assert result.items_synced == 0
        db.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bank_balance_from_summary(self, sync, db):
        lookup = MagicMock()
        lookup.scalar_one_or_none.return_value = None
        db.execute = AsyncMock(return_value=lookup)

        result = await sync._apply_bank_accounts(
            [
                {"account_id": "acc-1", "name": "Business Account", "code": "090", "status": "ACTIVE"},
                {"account_id": "acc-2", "name": "Old Account", "status": "ARCHIVED"},
            ],
            {"Business Account": Decimal("1200.50")},
        )

        created = [call.args[0] for call in db.add.call_args_list]
        assert result.items_created == 2
        assert created[0].balance == Decimal("1200.50")
        assert created[0].status == "ACTIVE"
        assert created[1].status == "ARCHIVED"


class TestDailySyncFailure:
    """A failed run is logged and re-raised."""

    @pytest.mark.asyncio
    async def test_marks_log_failed(self, sync, db, client):
        db.execute = AsyncMock(side_effect=RuntimeError("database unavailable"))

        with pytest.raises(RuntimeError):
            await sync.perform_daily_sync()

        log = db.add.call_args_list[0].args[0]
        assert log.status == "FAILED"
        assert log.sync_type == "DELTA"
        assert log.error_message == "database unavailable"
        assert client.connection.sync_error == "database unavailable"
        db.rollback.assert_awaited_once()


class TestRememberOrganisation:
    """The connection keeps a copy of the organisation's tax calendar."""

    def test_copies_calendar_fields(self):
        connection = XeroConnection(tenant_id="tenant-1", tenant_name="Old Name")

        connection.remember_organisation({
            "name": "Acme Ltd",
            "base_currency": "GBP",
            "sales_tax_period": "MONTHLY",
            "financial_year_end_month": 12,
            "financial_year_end_day": 31,
        })

        assert connection.tenant_name == "Acme Ltd"
        assert connection.sales_tax_period == "MONTHLY"
        assert connection.financial_year_end_month == 12

    def test_keeps_name_when_missing(self):
        connection = XeroConnection(tenant_id="tenant-1", tenant_name="Acme Ltd")

        connection.remember_organisation({"sales_tax_period": "QUARTERLY"})

        assert connection.tenant_name == "Acme Ltd"
        assert connection.financial_year_end_day is None
