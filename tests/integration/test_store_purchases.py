"""Integration: mobile store purchases reported by the app and by server notifications."""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ascend.config import get_settings
from ascend.database import get_session_factory
from ascend.ledger import service as ledger
from ascend.main import create_app
from ascend.progression.seed import seed_achievements


@pytest_asyncio.fixture
async def dev_client(monkeypatch, engine):
    """App with development payment verification: store transactions travel inline."""
    monkeypatch.setenv("ASCEND_PAYMENT_VERIFICATION_MODE", "dev")
    get_settings.cache_clear()
    app = create_app()
    async with get_session_factory()() as session:
        await seed_achievements(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await app.state.http_client.aclose()


def store_transaction(account_id: int, transaction_id: str = "3000", product: str = "app.ascend.ios.coins.500") -> dict:
    return {
        "transactionId": transaction_id,
        "originalTransactionId": transaction_id,
        "productId": product,
        "bundleId": "app.ascend.ios",
        "purchaseDate": "2026-01-05T10:00:00Z",
        "price": 4990,
        "currency": "USD",
        "appAccountToken": str(account_id),
    }


async def balance_of(account_id: int) -> int:
    async with get_session_factory()() as session:
        return await ledger.get_balance(session, account_id)


class TestClientReportedPurchase:
    @pytest.mark.asyncio
    async def test_verified_purchase_credits_coins(self, dev_client, account, auth_headers):
        response = await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3000", "transaction_info": store_transaction(account.id)},
            headers=auth_headers(account.id),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "applied"
        assert data["duplicate"] is False
        assert data["outcome"]["coins"] == 500
        assert await balance_of(account.id) == 500

    @pytest.mark.asyncio
    async def test_resubmission_is_duplicate(self, dev_client, account, auth_headers):
        body = {"transaction_id": "3001", "transaction_info": store_transaction(account.id, "3001")}
        await dev_client.post("/api/v1/payments/apple/verify", json=body, headers=auth_headers(account.id))
        again = await dev_client.post("/api/v1/payments/apple/verify", json=body, headers=auth_headers(account.id))

        assert again.json()["duplicate"] is True
        assert await balance_of(account.id) == 500

    @pytest.mark.asyncio
    async def test_server_notification_after_client_report_is_duplicate(self, dev_client, account, auth_headers):
        await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3002", "transaction_info": store_transaction(account.id, "3002")},
            headers=auth_headers(account.id),
        )
        notification = {
            "notificationType": "ONE_TIME_CHARGE",
            "notificationUUID": "b3d1c0de-0000-0000-0000-000000000001",
            "transactionId": "3002",
            "transactionInfo": store_transaction(account.id, "3002"),
        }
        response = await dev_client.post("/api/v1/webhooks/apple", content=json.dumps(notification).encode())

        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert await balance_of(account.id) == 500

    @pytest.mark.asyncio
    async def test_transaction_of_another_account(self, dev_client, account, other_account, auth_headers):
        response = await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3003", "transaction_info": store_transaction(other_account.id, "3003")},
            headers=auth_headers(account.id),
        )
        assert response.status_code == 422
        assert await balance_of(account.id) == 0
        assert await balance_of(other_account.id) == 0

    @pytest.mark.asyncio
    async def test_transaction_without_account_token_is_refused(self, dev_client, account, auth_headers):
        info = store_transaction(account.id, "3006")
        del info["appAccountToken"]
        response = await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3006", "transaction_info": info},
            headers=auth_headers(account.id),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "account_correlation_failed"
        assert await balance_of(account.id) == 0

    @pytest.mark.asyncio
    async def test_subscription_purchase(self, dev_client, account, auth_headers):
        info = store_transaction(account.id, "3004", "app.ascend.ios.sub.pro.monthly")
        info["expiresDate"] = "2099-01-01T00:00:00Z"
        response = await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3004", "transaction_info": info},
            headers=auth_headers(account.id),
        )
        assert response.json()["status"] == "applied"

        subscription = await dev_client.get("/api/v1/me/subscription", headers=auth_headers(account.id))
        assert subscription.json()["tier"] == "pro"
        assert subscription.json()["provider"] == "apple"


class TestStoreRefund:
    @pytest.mark.asyncio
    async def test_refund_notification_claws_back(self, dev_client, account, auth_headers):
        await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3005", "transaction_info": store_transaction(account.id, "3005")},
            headers=auth_headers(account.id),
        )
        refunded = store_transaction(account.id, "3005")
        refunded["revocationDate"] = "2026-01-07T00:00:00Z"
        notification = {"notificationType": "REFUND", "transactionId": "3005", "transactionInfo": refunded}

        response = await dev_client.post("/api/v1/webhooks/apple", content=json.dumps(notification).encode())

        assert response.json()["status"] == "applied"
        assert await balance_of(account.id) == 0

    @pytest.mark.asyncio
    async def test_subscription_refund_revokes_plan(self, dev_client, account, auth_headers):
        info = store_transaction(account.id, "3010", "app.ascend.ios.sub.pro.monthly")
        info["expiresDate"] = "2099-01-01T00:00:00Z"
        await dev_client.post(
            "/api/v1/payments/apple/verify",
            json={"transaction_id": "3010", "transaction_info": info},
            headers=auth_headers(account.id),
        )
        gate = await dev_client.get("/api/v1/me/features/data_export", headers=auth_headers(account.id))
        assert gate.json()["allowed"] is True

        refunded = dict(info, revocationDate="2026-01-07T00:00:00Z")
        notification = {"notificationType": "REFUND", "transactionId": "3010", "transactionInfo": refunded}
        response = await dev_client.post("/api/v1/webhooks/apple", content=json.dumps(notification).encode())

        assert response.json()["status"] == "applied"
        subscription = (await dev_client.get("/api/v1/me/subscription", headers=auth_headers(account.id))).json()
        assert subscription["status"] == "cancelled"
        assert subscription["tier"] == "free"
        gate = await dev_client.get("/api/v1/me/features/data_export", headers=auth_headers(account.id))
        assert gate.json()["allowed"] is False
