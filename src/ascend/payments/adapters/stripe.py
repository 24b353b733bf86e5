"""Card processor webhook adapter.

Overlapping notifications for one logical effect share a transaction id so
the idempotency guard collapses them: ``checkout.session.completed`` and
``payment_intent.succeeded`` for a coin pack are both keyed by the payment
intent, a renewal by its invoice.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from ascend.errors import UnsupportedEvent, VerificationError
from ascend.payments.adapters.base import ProviderAdapter, from_timestamp, parse_account_id
from ascend.payments.events import EventType, PaymentEvent, Provider, StripeEventPayload


class StripeAdapter(ProviderAdapter):
    provider = Provider.STRIPE

    def translate(self, payload: dict[str, Any]) -> PaymentEvent:
        try:
            envelope = StripeEventPayload.model_validate(payload)
        except ValidationError as e:
            raise VerificationError("Unparseable card processor event") from e

        handler = {
            "checkout.session.completed": self._checkout_completed,
            "payment_intent.succeeded": self._payment_intent_succeeded,
            "invoice.paid": self._invoice_paid,
            "invoice.payment_failed": self._invoice_payment_failed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "charge.refunded": self._charge_refunded,
        }.get(envelope.type)
        if handler is None:
            raise UnsupportedEvent(f"stripe: unhandled event type {envelope.type}")
        return handler(envelope)

    # --- one-time purchases ---

    def _checkout_completed(self, envelope: StripeEventPayload) -> PaymentEvent:
        obj = envelope.object
        metadata = obj.get("metadata") or {}
        account_id = parse_account_id(metadata.get("account_id") or obj.get("client_reference_id"))
        product = self.catalog.resolve("stripe", metadata.get("price_id"))
        occurred_at = from_timestamp(envelope.created)

        if obj.get("mode") == "subscription":
            subscription_id = obj.get("subscription")
            if not subscription_id:
                raise VerificationError("Subscription checkout without a subscription id")
            return self._event(
                EventType.SUBSCRIPTION_CREATED,
                f"{subscription_id}:created",
                occurred_at,
                product=product,
                account_id=account_id,
                provider_subscription_id=subscription_id,
                amount=obj.get("amount_total") or 0,
                currency=(obj.get("currency") or "usd").upper(),
            )

        if obj.get("payment_status") != "paid":
            raise UnsupportedEvent("stripe: checkout completed without payment")
        payment_intent = obj.get("payment_intent")
        if not payment_intent:
            raise VerificationError("Paid checkout without a payment intent")
        return self._event(
            EventType.COIN_PURCHASE,
            payment_intent,
            occurred_at,
            product=product,
            account_id=account_id,
            amount=obj.get("amount_total") or 0,
            currency=(obj.get("currency") or "usd").upper(),
        )

    def _payment_intent_succeeded(self, envelope: StripeEventPayload) -> PaymentEvent:
        obj = envelope.object
        metadata = obj.get("metadata") or {}
        if not metadata.get("price_id"):
            # Intents created by invoices; the invoice events carry the effect.
            raise UnsupportedEvent("stripe: payment intent without one-time product")
        return self._event(
            EventType.COIN_PURCHASE,
            obj["id"],
            from_timestamp(envelope.created),
            product=self.catalog.resolve("stripe", metadata["price_id"]),
            account_id=parse_account_id(metadata.get("account_id")),
            amount=obj.get("amount_received") or obj.get("amount") or 0,
            currency=(obj.get("currency") or "usd").upper(),
        )

    # --- subscription billing ---

    @staticmethod
    def _first_line(invoice: dict[str, Any]) -> dict[str, Any]:
        lines = (invoice.get("lines") or {}).get("data") or []
        return lines[0] if lines else {}

    def _invoice_paid(self, envelope: StripeEventPayload) -> PaymentEvent:
        invoice = envelope.object
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            raise UnsupportedEvent("stripe: invoice not tied to a subscription")
        line = self._first_line(invoice)
        metadata = (invoice.get("subscription_details") or {}).get("metadata") or invoice.get("metadata") or {}
        return self._event(
            EventType.SUBSCRIPTION_RENEWED,
            invoice["id"],
            from_timestamp(envelope.created),
            product=self.catalog.resolve("stripe", (line.get("price") or {}).get("id")),
            account_id=parse_account_id(metadata.get("account_id")),
            provider_subscription_id=subscription_id,
            amount=invoice.get("amount_paid") or 0,
            currency=(invoice.get("currency") or "usd").upper(),
            period_end=from_timestamp((line.get("period") or {}).get("end")),
        )

    def _invoice_payment_failed(self, envelope: StripeEventPayload) -> PaymentEvent:
        invoice = envelope.object
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            raise UnsupportedEvent("stripe: invoice not tied to a subscription")
        attempt = invoice.get("attempt_count") or 1
        return self._event(
            EventType.PAYMENT_FAILED,
            f"{invoice['id']}:failed:{attempt}",
            from_timestamp(envelope.created),
            provider_subscription_id=subscription_id,
            amount=invoice.get("amount_due") or 0,
            currency=(invoice.get("currency") or "usd").upper(),
        )

    def _subscription_updated(self, envelope: StripeEventPayload) -> PaymentEvent:
        subscription = envelope.object
        previous = envelope.data.get("previous_attributes") or {}
        period_end = from_timestamp(subscription.get("current_period_end"))

        if "cancel_at_period_end" in previous:
            event_type = (
                EventType.SUBSCRIPTION_CANCELLED
                if subscription.get("cancel_at_period_end")
                else EventType.SUBSCRIPTION_RESUMED
            )
        elif "pause_collection" in previous:
            event_type = (
                EventType.SUBSCRIPTION_PAUSED
                if subscription.get("pause_collection")
                else EventType.SUBSCRIPTION_RESUMED
            )
        else:
            raise UnsupportedEvent("stripe: subscription update without a lifecycle change")

        return self._event(
            event_type,
            envelope.id,
            from_timestamp(envelope.created),
            account_id=parse_account_id((subscription.get("metadata") or {}).get("account_id")),
            provider_subscription_id=subscription["id"],
            period_end=period_end,
        )

    def _subscription_deleted(self, envelope: StripeEventPayload) -> PaymentEvent:
        subscription = envelope.object
        ended_at = subscription.get("ended_at") or subscription.get("canceled_at") or envelope.created
        return self._event(
            EventType.SUBSCRIPTION_CANCELLED,
            envelope.id,
            from_timestamp(envelope.created),
            account_id=parse_account_id((subscription.get("metadata") or {}).get("account_id")),
            provider_subscription_id=subscription["id"],
            period_end=from_timestamp(ended_at),
        )

    # --- refunds ---

    def _charge_refunded(self, envelope: StripeEventPayload) -> PaymentEvent:
        charge = envelope.object
        # Subscription charges are recorded under their invoice, one-time purchases under the intent.
        original = charge.get("invoice") or charge.get("payment_intent")
        if not original:
            raise UnsupportedEvent("stripe: refund for a charge without an invoice or payment intent")
        refunded = charge.get("amount_refunded") or 0
        return self._event(
            EventType.REFUND,
            f"{charge['id']}:refunded:{refunded}",
            from_timestamp(envelope.created),
            original_transaction_id=original,
            amount=refunded,
            currency=(charge.get("currency") or "usd").upper(),
        )
