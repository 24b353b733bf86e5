"""Mobile store adapter.

The store's notification is only a hint: the event type is decided by
cross-checking it against the transaction returned by the verification
service. A refund must carry a verified revocation date; a purchase or
renewal must not.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from ascend.errors import UnsupportedEvent, VerificationError
from ascend.payments.adapters.base import ProviderAdapter, parse_account_id
from ascend.payments.events import (
    AppleNotificationPayload,
    EventType,
    PaymentEvent,
    Provider,
    VerifiedAppleTransaction,
)

# Pseudo notification type for purchases submitted by the app itself.
CLIENT_PURCHASE = "CLIENT_PURCHASE"


class AppleAdapter(ProviderAdapter):
    provider = Provider.APPLE

    def translate(self, payload: dict[str, Any]) -> PaymentEvent:
        try:
            notification = AppleNotificationPayload.model_validate(payload["notification"])
            transaction = VerifiedAppleTransaction.model_validate(payload["transaction"])
        except (KeyError, ValidationError) as e:
            raise VerificationError("Unparseable mobile store notification") from e

        kind = notification.notification_type
        state_key = notification.notification_uuid or f"{transaction.transaction_id}:{kind}"
        if kind == "REFUND":
            return self._refund(transaction)

        if transaction.revocation_date is not None:
            raise VerificationError(f"{kind}: transaction {transaction.transaction_id} has been revoked")

        if kind in ("ONE_TIME_CHARGE", CLIENT_PURCHASE):
            product = self.catalog.resolve("apple", transaction.product_id)
            if product.kind != "subscription":
                return self._purchase(transaction, product, EventType.COIN_PURCHASE, notification)
            kind = "SUBSCRIBED" if transaction.transaction_id == transaction.original_transaction_id else "DID_RENEW"

        if kind == "SUBSCRIBED":
            return self._purchase(
                transaction,
                self.catalog.resolve("apple", transaction.product_id),
                EventType.SUBSCRIPTION_CREATED,
                notification,
            )
        if kind == "DID_RENEW":
            return self._purchase(
                transaction,
                self.catalog.resolve("apple", transaction.product_id),
                EventType.SUBSCRIPTION_RENEWED,
                notification,
            )
        if kind == "DID_FAIL_TO_RENEW":
            return self._state_change(EventType.PAYMENT_FAILED, state_key, transaction, notification)
        if kind == "DID_CHANGE_RENEWAL_STATUS":
            if notification.subtype == "AUTO_RENEW_DISABLED":
                return self._state_change(EventType.SUBSCRIPTION_CANCELLED, state_key, transaction, notification)
            if notification.subtype == "AUTO_RENEW_ENABLED":
                return self._state_change(EventType.SUBSCRIPTION_RESUMED, state_key, transaction, notification)
            raise UnsupportedEvent(f"apple: renewal status subtype {notification.subtype}")
        if kind in ("EXPIRED", "GRACE_PERIOD_EXPIRED"):
            expires = transaction.expires_date
            if expires is None or expires > datetime.now(timezone.utc):
                raise VerificationError(f"{kind}: verified transaction has not expired")
            return self._state_change(EventType.SUBSCRIPTION_CANCELLED, state_key, transaction, notification)
        raise UnsupportedEvent(f"apple: unhandled notification type {kind}")

    @staticmethod
    def _account(notification: AppleNotificationPayload, transaction: VerifiedAppleTransaction) -> int | None:
        return parse_account_id(transaction.app_account_token or notification.app_account_token)

    def _purchase(self, transaction, product, event_type, notification) -> PaymentEvent:  # noqa: ANN001
        return self._event(
            event_type,
            transaction.transaction_id,
            transaction.purchase_date,
            product=product,
            account_id=self._account(notification, transaction),
            provider_subscription_id=(
                transaction.original_transaction_id if product.kind == "subscription" else None
            ),
            amount=transaction.price // 10,
            currency=transaction.currency,
            period_end=transaction.expires_date,
        )

    def _state_change(self, event_type, state_key, transaction, notification) -> PaymentEvent:  # noqa: ANN001
        return self._event(
            event_type,
            state_key,
            datetime.now(timezone.utc),
            account_id=self._account(notification, transaction),
            provider_subscription_id=transaction.original_transaction_id,
            period_end=transaction.expires_date,
        )

    def _refund(self, transaction: VerifiedAppleTransaction) -> PaymentEvent:
        if transaction.revocation_date is None:
            raise VerificationError("REFUND: verified transaction carries no revocation date")
        return self._event(
            EventType.REFUND,
            f"{transaction.transaction_id}:refund",
            transaction.revocation_date,
            original_transaction_id=transaction.transaction_id,
            amount=transaction.price // 10,
            currency=transaction.currency,
        )
