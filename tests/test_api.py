"""Tests for the HTTP API."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from payment_sync.api import app
from payment_sync.auth import limiter
from payment_sync.errors import GatewayUnavailable, LedgerWriteError, OrderNotFound
from payment_sync.reconciliation import (
    PendingSyncEntry,
    PendingSyncOutcome,
    PendingSyncResult,
    ReconcileResult,
    RecoveryResult,
    SweepAnalysis,
    SweepSummary,
)
from payment_sync.reconciliation.api import get_reconciler, get_recovery_sweep


RECORD = {
    "id": "pay_1",
    "order_code": "ORD1",
    "amount": 300000,
    "status": "completed",
    "transaction_id": "TXN1",
    "paid_at": "2026-10-19T08:00:00",
}


@pytest.fixture
def reconciler():
    mock = AsyncMock()
    mock.reconcile.return_value = ReconcileResult(
        order_code="ORD1",
        updated=True,
        record=RECORD,
        gateway_status="PAID",
    )
    return mock


@pytest.fixture
def sweep():
    mock = AsyncMock()
    mock.recover.return_value = RecoveryResult(
        window_hours=24,
        summary=SweepSummary(payos_total=10, database_total=9, missing_count=1, mismatch_count=1),
        recovered=1,
        updated=1,
        started_at=datetime(2026, 10, 19, 2, 0, 0),
    )
    return mock


@pytest.fixture
def client(reconciler, sweep):
    """Client with the reconciliation dependencies replaced by doubles."""
    limiter.reset()
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    app.dependency_overrides[get_recovery_sweep] = lambda: sweep
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "payment-sync"}


class TestCheckStatus:
    """Tests for GET /payment/check-status."""

    def test_returns_reconciled_record(self, client, reconciler):
        response = client.get("/payment/check-status", params={"orderCode": "ORD1"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": RECORD,
            "updated": True,
            "payos_status": "PAID",
            "message": "Payment status updated to completed",
        }
        reconciler.reconcile.assert_awaited_once_with("ORD1")

    def test_missing_order_code(self, client):
        response = client.get("/payment/check-status")
        assert response.status_code == 422

    def test_blank_order_code(self, client, reconciler):
        response = client.get("/payment/check-status", params={"orderCode": "   "})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "orderCode is required"}
        reconciler.reconcile.assert_not_awaited()

    def test_unknown_order(self, client, reconciler):
        reconciler.reconcile.side_effect = OrderNotFound("nope")

        response = client.get("/payment/check-status", params={"orderCode": "nope"})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Payment not found in database"}

    def test_gateway_unavailable_still_returns_record(self, client, reconciler):
        reconciler.reconcile.return_value = ReconcileResult(
            order_code="ORD1",
            record=dict(RECORD, status="pending"),
            gateway_available=False,
        )

        response = client.get("/payment/check-status", params={"orderCode": "ORD1"})

        assert response.status_code == 200
        body = response.json()
        assert body["updated"] is False
        assert body["data"]["status"] == "pending"
        assert body["payos_status"] is None

    def test_ledger_write_failure_hides_details(self, client, reconciler):
        reconciler.reconcile.side_effect = LedgerWriteError("ORD1", "UNIQUE constraint failed: secret")

        response = client.get("/payment/check-status", params={"orderCode": "ORD1"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to update payment record"}


class TestForceSync:
    """Tests for POST /payment/force-sync."""

    def test_force_sync(self, client, reconciler):
        response = client.post("/payment/force-sync", json={"orderCode": " ORD1 "})

        assert response.status_code == 200
        assert response.json()["success"] is True
        reconciler.reconcile.assert_awaited_once_with("ORD1")

    def test_missing_body_field(self, client):
        response = client.post("/payment/force-sync", json={})
        assert response.status_code == 422

    def test_rate_limited(self, client):
        statuses = [
            client.post("/payment/force-sync", json={"orderCode": "ORD1"}).status_code
            for _ in range(11)
        ]
        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429


class TestRecovery:
    """Tests for GET /payment/recovery."""

    def test_requires_token(self, client, sweep):
        response = client.get("/payment/recovery")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Missing bearer token"}
        sweep.recover.assert_not_awaited()

    def test_rejects_wrong_token(self, client, sweep):
        response = client.get(
            "/payment/recovery",
            headers={"Authorization": "Bearer wrong-token"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid bearer token"
        sweep.recover.assert_not_awaited()

    def test_token_not_configured(self, client, sync_headers, monkeypatch):
        monkeypatch.delenv("SYNC_JOB_TOKEN", raising=False)

        response = client.get("/payment/recovery", headers=sync_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "Server configuration error"

    def test_recover(self, client, sweep, sync_headers):
        response = client.get(
            "/payment/recovery",
            params={"action": "recover", "hours": 12},
            headers=sync_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["summary"] == {
            "payosTotal": 10,
            "databaseTotal": 9,
            "missingCount": 1,
            "mismatchCount": 1,
        }
        assert body["data"]["recovered"] == 1
        assert body["data"]["updated"] == 1
        assert body["data"]["total"] == 2
        sweep.recover.assert_awaited_once_with(12)

    def test_default_action_is_recover(self, client, sweep, sync_headers):
        response = client.get("/payment/recovery", headers=sync_headers)

        assert response.status_code == 200
        sweep.recover.assert_awaited_once_with(24)

    def test_check_only_analyzes(self, client, sweep, sync_headers):
        sweep.analyze.return_value = SweepAnalysis(
            window_hours=24,
            start_time=datetime(2026, 10, 18, 2, 0, 0),
            end_time=datetime(2026, 10, 19, 2, 0, 0),
            summary=SweepSummary(payos_total=3, database_total=3),
        )

        response = client.get(
            "/payment/recovery",
            params={"action": "check"},
            headers=sync_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["missing"] == []
        sweep.analyze.assert_awaited_once_with(24)
        sweep.recover.assert_not_awaited()

    def test_unknown_action(self, client, sync_headers):
        response = client.get(
            "/payment/recovery",
            params={"action": "delete"},
            headers=sync_headers,
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("hours", [0, 721])
    def test_hours_out_of_range(self, client, sync_headers, hours):
        response = client.get(
            "/payment/recovery",
            params={"hours": hours},
            headers=sync_headers,
        )
        assert response.status_code == 422

    def test_gateway_failure(self, client, sweep, sync_headers):
        sweep.recover.side_effect = GatewayUnavailable("PayOS returned HTTP 503")

        response = client.get("/payment/recovery", headers=sync_headers)

        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "Payment gateway unavailable"}


class TestAutoSync:
    """Tests for POST /payment/auto-sync."""

    def test_requires_token(self, client):
        assert client.post("/payment/auto-sync").status_code == 401

    def test_auto_sync(self, client, sweep, sync_headers):
        sweep.sync_pending.return_value = PendingSyncResult(
            checked=1,
            updated=1,
            results=[PendingSyncEntry(
                order_code="ORD1",
                outcome=PendingSyncOutcome.UPDATED,
                payos_status="PAID",
            )],
        )

        response = client.post("/payment/auto-sync", headers=sync_headers)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": {
                "checked": 1,
                "updated": 1,
                "results": [{"order_code": "ORD1", "outcome": "updated", "payos_status": "PAID"}],
            },
        }
        sweep.sync_pending.assert_awaited_once_with(hours=48, limit=25)
