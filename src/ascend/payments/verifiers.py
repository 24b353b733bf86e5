"""Payment notification verifiers.

Each provider adapter is constructed with one ``PaymentVerifier``. Which
implementation is used is decided by configuration at startup, never by
inspecting credential values at request time.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from ascend.errors import TransientProviderError, VerificationError
from ascend.payments.events import VerifiedAppleTransaction

logger = structlog.get_logger()


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise VerificationError("Payload is not valid JSON") from e
    if not isinstance(payload, dict):
        raise VerificationError("Payload must be a JSON object")
    return payload


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


class PaymentVerifier(ABC):
    """Establishes that a notification was really sent by the provider."""

    @abstractmethod
    async def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """Return the authenticated payload, or raise VerificationError."""


class HmacSignatureVerifier(PaymentVerifier):
    """Shared-secret HMAC-SHA256 over ``{timestamp}{separator}{body}``.

    Header shape is provider specific, e.g. ``t=123,v1=abc`` or ``ts=123;h1=abc``.
    """

    def __init__(
        self,
        secret: str,
        header_name: str,
        *,
        pair_separator: str,
        timestamp_key: str,
        signature_key: str,
        signed_separator: str,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            msg = f"{header_name}: webhook secret is not configured"
            raise ValueError(msg)
        self._secret = secret.encode()
        self.header_name = header_name
        self._pair_separator = pair_separator
        self._timestamp_key = timestamp_key
        self._signature_key = signature_key
        self._signed_separator = signed_separator
        self._tolerance = tolerance_seconds
        self._clock = clock

    def _parse_header(self, value: str) -> tuple[str, list[str]]:
        timestamp = None
        signatures: list[str] = []
        for part in value.split(self._pair_separator):
            key, _, item = part.strip().partition("=")
            if key == self._timestamp_key:
                timestamp = item
            elif key == self._signature_key:
                signatures.append(item)
        if timestamp is None or not signatures:
            raise VerificationError(f"Malformed {self.header_name} header")
        return timestamp, signatures

    def sign(self, raw_body: bytes, timestamp: int | str) -> str:
        signed = f"{timestamp}{self._signed_separator}".encode() + raw_body
        return hmac.new(self._secret, signed, hashlib.sha256).hexdigest()

    async def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        value = _header(headers, self.header_name)
        if not value:
            raise VerificationError(f"Missing {self.header_name} header")

        timestamp, signatures = self._parse_header(value)
        try:
            ts = int(timestamp)
        except ValueError as e:
            raise VerificationError("Signature timestamp is not an integer") from e
        if abs(self._clock() - ts) > self._tolerance:
            raise VerificationError("Signature timestamp outside tolerance")

        expected = self.sign(raw_body, ts)
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise VerificationError("Signature mismatch")
        return parse_json_body(raw_body)


def stripe_signature_verifier(secret: str, tolerance_seconds: int = 300, **kwargs: Any) -> HmacSignatureVerifier:  # noqa: ANN401
    return HmacSignatureVerifier(
        secret,
        "Stripe-Signature",
        pair_separator=",",
        timestamp_key="t",
        signature_key="v1",
        signed_separator=".",
        tolerance_seconds=tolerance_seconds,
        **kwargs,
    )


def paddle_signature_verifier(secret: str, tolerance_seconds: int = 300, **kwargs: Any) -> HmacSignatureVerifier:  # noqa: ANN401
    return HmacSignatureVerifier(
        secret,
        "Paddle-Signature",
        pair_separator=";",
        timestamp_key="ts",
        signature_key="h1",
        signed_separator=":",
        tolerance_seconds=tolerance_seconds,
        **kwargs,
    )


class ReceiptServiceVerifier(PaymentVerifier):
    """Server-to-server transaction lookup for the mobile store.

    The notification body only names a transaction; the authoritative
    transaction comes back from the verification service. Calls are bounded
    by ``timeout_seconds``; timeouts and 5xx are transient (provider retries),
    4xx and invalid transactions are verification failures.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        bundle_id: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._bundle_id = bundle_id
        self._timeout = timeout_seconds
        self._client = client

    async def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        notification = parse_json_body(raw_body)
        transaction_id = notification.get("transactionId")
        if not transaction_id:
            raise VerificationError("Notification does not name a transaction")
        transaction = await self.fetch_transaction(str(transaction_id))
        return {"notification": notification, "transaction": transaction.model_dump()}

    async def fetch_transaction(self, transaction_id: str) -> VerifiedAppleTransaction:
        request_body = {"transactionId": transaction_id, "bundleId": self._bundle_id}
        request_headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._url, json=request_body, headers=request_headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=request_body, headers=request_headers)
        except httpx.TimeoutException as e:
            logger.warning("receipt_verification_timeout", transaction_id=transaction_id)
            raise TransientProviderError("Receipt verification timed out") from e
        except httpx.TransportError as e:
            logger.warning("receipt_verification_unreachable", transaction_id=transaction_id, error=str(e))
            raise TransientProviderError("Receipt verification service unreachable") from e

        if response.status_code >= 500:
            raise TransientProviderError(f"Receipt verification service returned {response.status_code}")
        if response.status_code >= 400:
            raise VerificationError(f"Receipt verification rejected transaction ({response.status_code})")

        try:
            body = response.json()
        except ValueError as e:
            raise TransientProviderError("Receipt verification returned a non-JSON body") from e
        if body.get("status", 0) != 0:
            raise VerificationError(f"Receipt verification status {body.get('status')}")

        try:
            transaction = VerifiedAppleTransaction.model_validate(body.get("transaction") or {})
        except ValidationError as e:
            raise VerificationError("Receipt verification returned an incomplete transaction") from e
        if transaction.bundle_id != self._bundle_id:
            raise VerificationError("Transaction belongs to a different app")
        if transaction.transaction_id != transaction_id:
            raise VerificationError("Verified transaction id does not match the notification")
        return transaction


class DevVerifier(PaymentVerifier):
    """Accepts unsigned payloads. Only selectable outside production.

    With ``receipt_mode`` the embedded ``transactionInfo`` stands in for the
    verification service response.
    """

    def __init__(self, receipt_mode: bool = False) -> None:
        self._receipt_mode = receipt_mode

    async def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        payload = parse_json_body(raw_body)
        if not self._receipt_mode:
            return payload
        try:
            transaction = VerifiedAppleTransaction.model_validate(payload.get("transactionInfo") or {})
        except ValidationError as e:
            raise VerificationError("Development payload lacks transactionInfo") from e
        return {"notification": payload, "transaction": transaction.model_dump()}
