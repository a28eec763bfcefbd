"""Tests for the HTTP surface, with the database replaced by fakes."""
import asyncio
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from bookkeeper.config import settings
from bookkeeper.database import get_db
from bookkeeper.forecast.engine import CashFlowEngine
from bookkeeper.forecast.routes import get_cashflow_engine, get_forecast_repository
from bookkeeper.forecast.sources import ForecastDataError, ForecastSnapshot
from bookkeeper.locks.manager import LockResource, SyncLockManager, get_lock_manager
from bookkeeper.main import app
from bookkeeper.middleware.rate_limit import client_address
from bookkeeper.xero.rate_limiter import RateLimiterRegistry
from bookkeeper.xero.routes import get_rate_limiters
from tests.factories import FakeDataSource, FakeRepository, make_invoice

PREFIX = "/api/v1/cashflow"


@pytest.fixture
def lock_manager():
    return SyncLockManager()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def source():
    tomorrow = date.today() + timedelta(days=1)
    return FakeDataSource(ForecastSnapshot(
        cash_position=Decimal("10000"),
        invoices=[
            make_invoice(id="ar", due_date=tomorrow, amount_due="1000"),
            make_invoice(id="ap", type="ACCPAY", due_date=tomorrow, amount_due="500", contact_id="c2"),
        ],
    ))


@pytest.fixture
def client(source, repository, lock_manager):
    app.dependency_overrides[get_cashflow_engine] = lambda: CashFlowEngine(source, repository)
    app.dependency_overrides[get_forecast_repository] = lambda: repository
    app.dependency_overrides[get_lock_manager] = lambda: lock_manager
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestGetForecast:
    """GET /cashflow/forecast"""

    def test_returns_days_and_summary(self, client):
        response = client.get(f"{PREFIX}/forecast", params={"days": 2, "scenarios": True})

        assert response.status_code == 200
        body = response.json()
        assert len(body["forecast"]) == 2
        day1 = body["forecast"][1]
        assert Decimal(day1["closing_balance"]) == Decimal("10500")
        assert Decimal(day1["inflows"]["from_invoices"]) == Decimal("1000")
        assert Decimal(day1["scenarios"]["best_case"]) == Decimal("10750")
        assert body["summary"]["days"] == 2
        assert body["persisted"] is True

    def test_scenarios_off_by_default(self, client):
        body = client.get(f"{PREFIX}/forecast", params={"days": 1}).json()

        assert body["forecast"][0]["scenarios"] is None

    @pytest.mark.parametrize("days", [0, 366])
    def test_invalid_horizon(self, client, days):
        response = client.get(f"{PREFIX}/forecast", params={"days": days})

        assert response.status_code == 400

    def test_data_unavailable(self, client, source):
        source.error = ForecastDataError("budgets", RuntimeError("timeout"))

        response = client.get(f"{PREFIX}/forecast", params={"days": 5})

        assert response.status_code == 503
        assert "budgets" in response.json()["detail"]


class TestRegenerateForecast:
    """POST /cashflow/forecast"""

    def test_regenerates_and_clears(self, client, repository):
        response = client.post(f"{PREFIX}/forecast", json={"days": 3, "regenerate": True})

        assert response.status_code == 200
        assert response.json()["days_generated"] == 3
        assert repository.deleted_from == [date.today()]
        assert len(repository.saved) == 3

    def test_replaces_rows_from_today(self, client, repository):
        yesterday = date.today() - timedelta(days=1)
        later = date.today() + timedelta(days=30)
        repository.stored = {yesterday: "kept", later: "stale"}

        client.post(f"{PREFIX}/forecast", json={"days": 3, "regenerate": True})

        assert repository.stored[yesterday] == "kept"
        assert later not in repository.stored
        assert len(repository.stored) == 4

    def test_failed_load_keeps_stored_rows(self, client, source, repository):
        repository.stored = {date.today(): "previous"}
        source.error = ForecastDataError("open invoices", RuntimeError("timeout"))

        response = client.post(f"{PREFIX}/forecast", json={"days": 3, "regenerate": True})

        assert response.status_code == 503
        assert repository.stored == {date.today(): "previous"}

    def test_failed_write_keeps_stored_rows(self, client, repository):
        repository.stored = {date.today(): "previous"}
        repository.error = OperationalError("upsert", {}, Exception("db down"))

        response = client.post(f"{PREFIX}/forecast", json={"days": 3, "regenerate": True})

        assert response.status_code == 200
        assert response.json()["persisted"] is False
        assert repository.stored == {date.today(): "previous"}

    def test_keeps_stored_rows_without_regenerate(self, client, repository):
        client.post(f"{PREFIX}/forecast", json={"days": 3})

        assert repository.deleted_from == []

    def test_conflict_while_locked(self, client, lock_manager, repository):
        asyncio.run(lock_manager.acquire(LockResource.CASHFLOW_FORECAST, "someone-else"))

        response = client.post(f"{PREFIX}/forecast", json={"days": 3, "regenerate": True})

        assert response.status_code == 409
        assert repository.deleted_from == []

    def test_invalid_horizon(self, client):
        response = client.post(f"{PREFIX}/forecast", json={"days": 0})

        assert response.status_code == 400


class TestStoredForecast:
    """GET /cashflow/forecast/stored"""

    def test_end_before_start(self, client):
        response = client.get(
            f"{PREFIX}/forecast/stored",
            params={"start": "2024-06-10", "end": "2024-06-01"},
        )

        assert response.status_code == 400


class TestBudgets:
    """Budget validation and deletion."""

    @pytest.fixture
    def db(self):
        db = AsyncMock()
        db.get = AsyncMock(return_value=None)
        app.dependency_overrides[get_db] = lambda: db
        yield db
        app.dependency_overrides.pop(get_db, None)

    def test_rejects_bad_month(self, client, db):
        response = client.put(f"{PREFIX}/budgets", json={"month_year": "2024-13", "budgeted_amount": "100"})

        assert response.status_code == 422

    def test_rejects_negative_amount(self, client, db):
        response = client.put(f"{PREFIX}/budgets", json={"month_year": "2024-06", "budgeted_amount": "-1"})

        assert response.status_code == 422

    def test_delete_missing(self, client, db):
        response = client.delete(f"{PREFIX}/budgets/bud_missing")

        assert response.status_code == 404

    def test_delete_existing(self, client, db):
        db.get = AsyncMock(return_value=MagicMock())

        response = client.delete(f"{PREFIX}/budgets/bud_1")

        assert response.status_code == 200
        db.delete.assert_awaited_once()
        db.commit.assert_awaited_once()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestXeroSyncStatus:
    """GET /xero/sync/status and the not-connected path of POST /xero/sync"""

    @pytest.fixture
    def connection(self):
        return SimpleNamespace(
            tenant_id="tenant-1",
            tenant_name="Acme Ltd",
            base_currency="GBP",
            sales_tax_period="QUARTERLY",
            last_sync_at=None,
            sync_error="Xero API unavailable",
        )

    def _override_db(self, connection):
        result = MagicMock()
        result.scalars.return_value.first.return_value = connection
        result.scalar_one_or_none.return_value = None
        db = AsyncMock()
        db.execute = AsyncMock(return_value=result)
        app.dependency_overrides[get_db] = lambda: db
        app.dependency_overrides[get_rate_limiters] = lambda: RateLimiterRegistry(settings)

    def test_reports_connection_details(self, client, connection):
        self._override_db(connection)

        body = client.get("/api/v1/xero/sync/status").json()

        assert body["connected"] is True
        assert body["tenant_name"] == "Acme Ltd"
        assert body["base_currency"] == "GBP"
        assert body["last_error"] == "Xero API unavailable"
        assert body["sync_in_progress"] is False
        assert body["last_sync"] is None
        assert body["rate_limit"]["tenant_id"] == "tenant-1"

    def test_lock_held_shows_in_progress(self, client, connection, lock_manager):
        self._override_db(connection)
        asyncio.run(lock_manager.acquire(LockResource.XERO_SYNC, "scheduler"))

        body = client.get("/api/v1/xero/sync/status").json()

        assert body["sync_in_progress"] is True

    def test_sync_without_connection(self, client):
        self._override_db(None)

        response = client.post("/api/v1/xero/sync", json={"full": False})

        assert response.status_code == 400


class TestClientAddress:
    """Inbound rate limit key."""

    def test_prefers_forwarded_for(self):
        request = MagicMock()
        request.headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1"}

        assert client_address(request) == "203.0.113.7"

    def test_falls_back_to_peer(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "198.51.100.2"

        assert client_address(request) == "198.51.100.2"
