"""Notification verifiers: HMAC signatures and the receipt verification service."""

from __future__ import annotations

import json

import httpx
import pytest

from ascend.errors import TransientProviderError, VerificationError
from ascend.payments.verifiers import (
    DevVerifier,
    ReceiptServiceVerifier,
    paddle_signature_verifier,
    stripe_signature_verifier,
)

SECRET = "whsec_unit"
NOW = 1_760_000_000
BODY = json.dumps({"id": "evt_1", "type": "invoice.paid"}).encode()


def _stripe(**kwargs):
    return stripe_signature_verifier(SECRET, clock=lambda: NOW, **kwargs)


class TestHmacSignatureVerifier:
    @pytest.mark.asyncio
    async def test_valid_signature(self):
        verifier = _stripe()
        header = f"t={NOW},v1={verifier.sign(BODY, NOW)}"
        payload = await verifier.verify(BODY, {"Stripe-Signature": header})
        assert payload["id"] == "evt_1"

    @pytest.mark.asyncio
    async def test_header_lookup_is_case_insensitive(self):
        verifier = _stripe()
        header = f"t={NOW},v1={verifier.sign(BODY, NOW)}"
        assert await verifier.verify(BODY, {"stripe-signature": header})

    @pytest.mark.asyncio
    async def test_any_of_several_signatures_may_match(self):
        verifier = _stripe()
        header = f"t={NOW},v1=deadbeef,v1={verifier.sign(BODY, NOW)}"
        assert await verifier.verify(BODY, {"Stripe-Signature": header})

    @pytest.mark.asyncio
    async def test_tampered_body(self):
        verifier = _stripe()
        header = f"t={NOW},v1={verifier.sign(BODY, NOW)}"
        with pytest.raises(VerificationError, match="mismatch"):
            await verifier.verify(BODY.replace(b"evt_1", b"evt_2"), {"Stripe-Signature": header})

    @pytest.mark.asyncio
    async def test_wrong_secret(self):
        other = stripe_signature_verifier("whsec_other", clock=lambda: NOW)
        header = f"t={NOW},v1={other.sign(BODY, NOW)}"
        with pytest.raises(VerificationError):
            await _stripe().verify(BODY, {"Stripe-Signature": header})

    @pytest.mark.asyncio
    async def test_stale_timestamp(self):
        verifier = _stripe()
        old = NOW - 301
        header = f"t={old},v1={verifier.sign(BODY, old)}"
        with pytest.raises(VerificationError, match="tolerance"):
            await verifier.verify(BODY, {"Stripe-Signature": header})

    @pytest.mark.asyncio
    async def test_missing_header(self):
        with pytest.raises(VerificationError, match="Missing"):
            await _stripe().verify(BODY, {})

    @pytest.mark.asyncio
    async def test_malformed_header(self):
        with pytest.raises(VerificationError, match="Malformed"):
            await _stripe().verify(BODY, {"Stripe-Signature": "garbage"})

    @pytest.mark.asyncio
    async def test_signed_non_json_body(self):
        verifier = _stripe()
        body = b"not json"
        header = f"t={NOW},v1={verifier.sign(body, NOW)}"
        with pytest.raises(VerificationError, match="JSON"):
            await verifier.verify(body, {"Stripe-Signature": header})

    @pytest.mark.asyncio
    async def test_paddle_header_shape(self):
        verifier = paddle_signature_verifier("pdl_secret", clock=lambda: NOW)
        header = f"ts={NOW};h1={verifier.sign(BODY, NOW)}"
        assert await verifier.verify(BODY, {"Paddle-Signature": header})

    def test_empty_secret_is_a_configuration_error(self):
        with pytest.raises(ValueError, match="not configured"):
            stripe_signature_verifier("")


def _transaction(**overrides):
    transaction = {
        "transactionId": "2000000001",
        "originalTransactionId": "2000000001",
        "productId": "app.ascend.ios.coins.500",
        "bundleId": "app.ascend.ios",
        "purchaseDate": "2026-01-05T10:00:00Z",
        "price": 4990,
        "currency": "USD",
    }
    transaction.update(overrides)
    return transaction


def _receipt_verifier(handler) -> ReceiptServiceVerifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ReceiptServiceVerifier(
        "https://receipts.test/verify", "key", "app.ascend.ios", timeout_seconds=1.0, client=client
    )


class TestReceiptServiceVerifier:
    @pytest.mark.asyncio
    async def test_returns_notification_and_verified_transaction(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": 0, "transaction": _transaction()})

        body = json.dumps({"notificationType": "ONE_TIME_CHARGE", "transactionId": "2000000001"}).encode()
        payload = await _receipt_verifier(handler).verify(body, {})

        assert payload["notification"]["notificationType"] == "ONE_TIME_CHARGE"
        assert payload["transaction"]["product_id"] == "app.ascend.ios.coins.500"
        assert seen["auth"] == "Bearer key"
        assert seen["body"] == {"transactionId": "2000000001", "bundleId": "app.ascend.ios"}

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientProviderError):
            await _receipt_verifier(handler).fetch_transaction("2000000001")

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        verifier = _receipt_verifier(lambda request: httpx.Response(503))
        with pytest.raises(TransientProviderError):
            await verifier.fetch_transaction("2000000001")

    @pytest.mark.asyncio
    async def test_client_error_is_verification_failure(self):
        verifier = _receipt_verifier(lambda request: httpx.Response(404))
        with pytest.raises(VerificationError):
            await verifier.fetch_transaction("2000000001")

    @pytest.mark.asyncio
    async def test_non_zero_status(self):
        verifier = _receipt_verifier(lambda request: httpx.Response(200, json={"status": 21004}))
        with pytest.raises(VerificationError, match="21004"):
            await verifier.fetch_transaction("2000000001")

    @pytest.mark.asyncio
    async def test_other_bundle(self):
        verifier = _receipt_verifier(
            lambda request: httpx.Response(200, json={"status": 0, "transaction": _transaction(bundleId="com.other")})
        )
        with pytest.raises(VerificationError, match="different app"):
            await verifier.fetch_transaction("2000000001")

    @pytest.mark.asyncio
    async def test_mismatched_transaction_id(self):
        verifier = _receipt_verifier(
            lambda request: httpx.Response(200, json={"status": 0, "transaction": _transaction(transactionId="9")})
        )
        with pytest.raises(VerificationError, match="does not match"):
            await verifier.fetch_transaction("2000000001")

    @pytest.mark.asyncio
    async def test_notification_without_transaction(self):
        verifier = _receipt_verifier(lambda request: httpx.Response(500))
        with pytest.raises(VerificationError, match="does not name"):
            await verifier.verify(b'{"notificationType": "REFUND"}', {})


class TestDevVerifier:
    @pytest.mark.asyncio
    async def test_accepts_unsigned_json(self):
        assert await DevVerifier().verify(b'{"a": 1}', {}) == {"a": 1}

    @pytest.mark.asyncio
    async def test_receipt_mode_requires_transaction_info(self):
        with pytest.raises(VerificationError):
            await DevVerifier(receipt_mode=True).verify(b'{"transactionId": "1"}', {})
