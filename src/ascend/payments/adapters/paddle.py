"""Checkout platform webhook adapter.

Account correlation travels in ``custom_data.account_id``, set when the
checkout is opened. Amounts arrive as strings in minor units.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import ValidationError

from ascend.errors import UnsupportedEvent, VerificationError
from ascend.payments.adapters.base import ProviderAdapter, parse_account_id
from ascend.payments.events import EventType, PaddleEventPayload, PaymentEvent, Provider

_SUBSCRIPTION_EVENTS = {
    "subscription.activated": EventType.SUBSCRIPTION_CREATED,
    "subscription.created": EventType.SUBSCRIPTION_CREATED,
    "subscription.canceled": EventType.SUBSCRIPTION_CANCELLED,
    "subscription.past_due": EventType.PAYMENT_FAILED,
    "subscription.paused": EventType.SUBSCRIPTION_PAUSED,
    "subscription.resumed": EventType.SUBSCRIPTION_RESUMED,
}


def _parse_datetime(value: Any) -> datetime | None:  # noqa: ANN401
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise VerificationError(f"Malformed timestamp {value!r}") from e


def _minor_units(value: Any) -> int:  # noqa: ANN401
    try:
        return int(value or 0)
    except (TypeError, ValueError) as e:
        raise VerificationError(f"Malformed amount {value!r}") from e


class PaddleAdapter(ProviderAdapter):
    provider = Provider.PADDLE

    def translate(self, payload: dict[str, Any]) -> PaymentEvent:
        try:
            envelope = PaddleEventPayload.model_validate(payload)
        except ValidationError as e:
            raise VerificationError("Unparseable checkout platform event") from e

        if envelope.event_type == "transaction.completed":
            return self._transaction_completed(envelope)
        if envelope.event_type == "adjustment.created":
            return self._adjustment_created(envelope)
        if envelope.event_type == "subscription.updated":
            return self._subscription_updated(envelope)
        if envelope.event_type in _SUBSCRIPTION_EVENTS:
            return self._subscription_event(envelope, _SUBSCRIPTION_EVENTS[envelope.event_type])
        raise UnsupportedEvent(f"paddle: unhandled event type {envelope.event_type}")

    def _product(self, data: dict[str, Any]):  # noqa: ANN202
        items = data.get("items") or []
        price_id = ((items[0].get("price") or {}).get("id") or items[0].get("price_id")) if items else None
        return self.catalog.resolve("paddle", price_id)

    @staticmethod
    def _account(data: dict[str, Any]) -> int | None:
        return parse_account_id((data.get("custom_data") or {}).get("account_id"))

    def _transaction_completed(self, envelope: PaddleEventPayload) -> PaymentEvent:
        data = envelope.data
        totals = (data.get("details") or {}).get("totals") or {}
        subscription_id = data.get("subscription_id")
        common = {
            "account_id": self._account(data),
            "amount": _minor_units(totals.get("grand_total") or totals.get("total")),
            "currency": data.get("currency_code") or "USD",
        }
        if subscription_id:
            return self._event(
                EventType.SUBSCRIPTION_RENEWED,
                data["id"],
                envelope.occurred_at,
                product=self._product(data),
                provider_subscription_id=subscription_id,
                period_end=_parse_datetime((data.get("billing_period") or {}).get("ends_at")),
                **common,
            )
        return self._event(
            EventType.COIN_PURCHASE,
            data["id"],
            envelope.occurred_at,
            product=self._product(data),
            **common,
        )

    def _subscription_event(self, envelope: PaddleEventPayload, event_type: EventType) -> PaymentEvent:
        data = envelope.data
        subscription_id = data.get("id")
        if not subscription_id:
            raise VerificationError("Subscription event without a subscription id")

        period_end = _parse_datetime((data.get("current_billing_period") or {}).get("ends_at"))
        product = None
        if event_type == EventType.SUBSCRIPTION_CREATED:
            product = self._product(data)
            # Activation and creation describe the same lineage start.
            transaction_id = f"{subscription_id}:created"
        else:
            transaction_id = envelope.event_id
        if event_type == EventType.SUBSCRIPTION_CANCELLED:
            period_end = _parse_datetime(data.get("canceled_at")) or envelope.occurred_at

        return self._event(
            event_type,
            transaction_id,
            envelope.occurred_at,
            product=product,
            account_id=self._account(data),
            provider_subscription_id=subscription_id,
            period_end=period_end,
            currency=data.get("currency_code") or "USD",
        )

    def _subscription_updated(self, envelope: PaddleEventPayload) -> PaymentEvent:
        """Scheduled cancel set -> cancelled; cleared on a live subscription -> resumed.

        Updates carry no diff, so an active subscription without a scheduled
        change is reported as resumed; the reconciler records it as a no-op
        when the lineage was never cancelling.
        """
        data = envelope.data
        scheduled = data.get("scheduled_change") or {}
        if scheduled.get("action") == "cancel":
            event_type = EventType.SUBSCRIPTION_CANCELLED
            period_end = _parse_datetime(scheduled.get("effective_at"))
        elif not scheduled and data.get("status") in ("active", "trialing"):
            event_type = EventType.SUBSCRIPTION_RESUMED
            period_end = _parse_datetime((data.get("current_billing_period") or {}).get("ends_at"))
        else:
            raise UnsupportedEvent("paddle: subscription update without a lifecycle change")
        return self._event(
            event_type,
            envelope.event_id,
            envelope.occurred_at,
            account_id=self._account(data),
            provider_subscription_id=data.get("id"),
            period_end=period_end,
        )

    def _adjustment_created(self, envelope: PaddleEventPayload) -> PaymentEvent:
        data = envelope.data
        if data.get("action") != "refund":
            raise UnsupportedEvent(f"paddle: adjustment action {data.get('action')}")
        if data.get("status") not in ("approved", None):
            raise UnsupportedEvent(f"paddle: refund not approved ({data.get('status')})")
        return self._event(
            EventType.REFUND,
            data["id"],
            envelope.occurred_at,
            original_transaction_id=data.get("transaction_id"),
            provider_subscription_id=data.get("subscription_id"),
            amount=_minor_units((data.get("totals") or {}).get("total")),
            currency=data.get("currency_code") or "USD",
        )
