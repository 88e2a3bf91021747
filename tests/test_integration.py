"""Integration tests running the API against a real ledger database."""

import pytest
import httpx
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_gateway_transaction
from payment_sync.api import app
from payment_sync.auth import limiter
from payment_sync.database import (
    Payment,
    PaymentRepository,
    PaymentStatus,
    close_db,
    create_async_engine,
    get_db_context,
    init_db,
)
from payment_sync.errors import GatewayUnavailable
from payment_sync.reconciliation import TransactionListing
from payment_sync.reconciliation.api import get_gateway, get_repository


@pytest.fixture
async def client(db_session, gateway):
    """Async client whose requests share the test session and gateway double."""
    limiter.reset()
    app.dependency_overrides[get_repository] = lambda: PaymentRepository(db_session)
    app.dependency_overrides[get_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestCheckStatusFlow:
    """Checkout left a pending record; the patient returns from PayOS."""

    async def test_paid_order_completes_once(self, client, repository, gateway):
        await repository.create(order_code="ORD1", amount=300000)
        gateway.get_order_status.return_value = make_gateway_transaction("ORD1", reference="TXN1")

        first = await client.get("/payment/check-status", params={"orderCode": "ORD1"})
        second = await client.post("/payment/force-sync", json={"orderCode": "ORD1"})

        assert first.status_code == 200
        assert first.json()["updated"] is True
        assert first.json()["data"]["status"] == "completed"
        assert first.json()["data"]["transaction_id"] == "TXN1"

        assert second.status_code == 200
        assert second.json()["updated"] is False
        assert second.json()["data"] == first.json()["data"]

    async def test_gateway_down_returns_pending_record(self, client, repository, gateway):
        await repository.create(order_code="ORD2", amount=300000)
        gateway.get_order_status.side_effect = GatewayUnavailable("PayOS request timed out")

        response = await client.get("/payment/check-status", params={"orderCode": "ORD2"})

        assert response.status_code == 200
        assert response.json()["updated"] is False
        assert response.json()["data"]["status"] == "pending"

    async def test_unknown_order(self, client):
        response = await client.get("/payment/check-status", params={"orderCode": "ghost"})
        assert response.status_code == 404


class TestRecoveryFlow:
    """The nightly job sweeps the last day of gateway activity."""

    async def test_recover_then_nothing_left(self, client, repository, gateway, sync_headers):
        await repository.create(order_code="ORD1", amount=300000)
        paid = make_gateway_transaction("ORD1", reference="TXN1")
        lost = make_gateway_transaction("X", reference="FT1")
        gateway.list_transactions.return_value = TransactionListing(transactions=[paid, lost])
        gateway.get_order_status.return_value = paid

        check = await client.get("/payment/recovery", params={"action": "check"}, headers=sync_headers)
        first = await client.get("/payment/recovery", headers=sync_headers)
        second = await client.get("/payment/recovery", headers=sync_headers)

        assert check.json()["data"]["missing"] == ["X"]
        assert check.json()["data"]["mismatched"] == ["ORD1"]
        assert first.json()["data"]["recovered"] == 1
        assert first.json()["data"]["updated"] == 1
        assert second.json()["data"]["total"] == 0

        recovered = await repository.get_by_order_code("X")
        assert recovered.status == PaymentStatus.COMPLETED.value
        assert recovered.transaction_id == "FT1"

    async def test_listing_failure_is_reported(self, client, repository, gateway, sync_headers):
        await repository.create(order_code="ORD1", amount=300000)
        gateway.list_transactions.side_effect = GatewayUnavailable("PayOS returned HTTP 503")

        response = await client.get("/payment/recovery", headers=sync_headers)

        assert response.status_code == 502
        assert response.json()["success"] is False
        payment = await repository.get_by_order_code("ORD1")
        assert payment.status == PaymentStatus.PENDING.value

    async def test_auto_sync(self, client, repository, gateway, sync_headers):
        await repository.create(order_code="ORD1", amount=300000)
        gateway.get_order_status.return_value = make_gateway_transaction("ORD1")

        response = await client.post("/payment/auto-sync", headers=sync_headers)

        assert response.status_code == 200
        assert response.json()["data"]["updated"] == 1


@pytest.fixture
async def ledger_url(tmp_path):
    """File-backed ledger opened through init_db, as the app lifespan does."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    await init_db(url)
    yield url
    await close_db()


@pytest.fixture
async def live_client(ledger_url, gateway):
    """Async client whose requests use the real request-scoped session."""
    limiter.reset()
    app.dependency_overrides[get_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def stored_status(url, order_code):
    """Read a status through a separate engine, outside any request session."""
    engine = create_async_engine(url)
    try:
        async with engine.connect() as conn:
            result = await conn.execute(
                select(Payment.status).where(Payment.order_code == order_code)
            )
            return result.scalar_one_or_none()
    finally:
        await engine.dispose()


def fail_commit_number(monkeypatch, failing_call):
    """Make the n-th AsyncSession.commit from now on raise a database error."""
    original = AsyncSession.commit
    calls = {"count": 0}

    async def commit(self):
        calls["count"] += 1
        if calls["count"] == failing_call:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        await original(self)

    monkeypatch.setattr(AsyncSession, "commit", commit)


class TestRequestSessionCommits:
    """Writes must be durable before a response reports them."""

    async def test_force_sync_completion_is_stored(self, live_client, ledger_url, gateway):
        async with get_db_context() as db:
            await PaymentRepository(db).create(order_code="ORD1", amount=300000)
        gateway.get_order_status.return_value = make_gateway_transaction("ORD1", reference="TXN1")

        response = await live_client.post("/payment/force-sync", json={"orderCode": "ORD1"})

        assert response.status_code == 200
        assert response.json()["updated"] is True
        assert await stored_status(ledger_url, "ORD1") == PaymentStatus.COMPLETED.value

    async def test_failed_completion_commit_is_not_reported_as_success(
        self, live_client, ledger_url, gateway, monkeypatch
    ):
        async with get_db_context() as db:
            await PaymentRepository(db).create(order_code="ORD1", amount=300000)
        gateway.get_order_status.return_value = make_gateway_transaction("ORD1", reference="TXN1")
        # First commit ends the read before the gateway call; the second is the completion
        fail_commit_number(monkeypatch, 2)

        response = await live_client.post("/payment/force-sync", json={"orderCode": "ORD1"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to update payment record"}
        assert await stored_status(ledger_url, "ORD1") == PaymentStatus.PENDING.value

    async def test_failed_recovery_commit_is_counted_as_failure(
        self, live_client, ledger_url, gateway, sync_headers, monkeypatch
    ):
        lost = make_gateway_transaction("X", reference="FT1")
        gateway.list_transactions.return_value = TransactionListing(transactions=[lost])
        fail_commit_number(monkeypatch, 1)

        response = await live_client.get("/payment/recovery", headers=sync_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["recovered"] == 0
        assert [f["order_code"] for f in data["failed"]] == ["X"]
        assert "commit failed" in data["failed"][0]["reason"]
        assert await stored_status(ledger_url, "X") is None
