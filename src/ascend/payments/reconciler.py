"""Payment reconciliation: canonical events in, exactly-once effects out.

provider notification -> adapter.normalize -> apply_once(effect) -> commit
-> post-commit reactions (subscription broadcast, achievement evaluation).

The effect runs inside the idempotency guard's transaction, so the payment
row, the ledger entry and the subscription/account projection commit
together or not at all.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import get_account
from ascend.db.models import PaymentTransaction
from ascend.errors import AccountCorrelationError, AscendError, InvalidTransition, VerificationError
from ascend.ledger import service as ledger
from ascend.payments.adapters.apple import CLIENT_PURCHASE
from ascend.payments.adapters.base import ProviderAdapter
from ascend.payments.catalog import Product, ProductCatalog
from ascend.payments.events import SUBSCRIPTION_EVENTS, EventType, PaymentEvent
from ascend.payments.idempotency import AppliedResult, apply_once, find_transaction
from ascend.progression.achievement_service import evaluate_achievements
from ascend.subscriptions.service import (
    apply_subscription_event,
    get_subscription_by_provider_id,
    publish_subscription_changed,
    revoke_subscription,
)

logger = structlog.get_logger()


class PaymentReconciler:
    """Applies provider notifications through the idempotency guard."""

    def __init__(self, adapters: Mapping[str, ProviderAdapter], catalog: ProductCatalog) -> None:
        self.adapters = dict(adapters)
        self.catalog = catalog

    def adapter_for(self, provider: str) -> ProviderAdapter | None:
        return self.adapters.get(provider)

    async def handle(
        self,
        db: AsyncSession,
        redis: object,
        provider: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> AppliedResult:
        """Verify, normalize and apply one webhook delivery."""
        adapter = self.adapters[provider]
        try:
            event = await adapter.normalize(raw_body, headers)
        except VerificationError as e:
            logger.warning("webhook_verification_failed", provider=provider, reason=e.detail)
            raise
        return await self.apply(db, redis, event)

    async def verify_client_purchase(
        self,
        db: AsyncSession,
        redis: object,
        account_id: int,
        transaction_id: str,
        transaction_info: dict[str, Any] | None = None,
    ) -> AppliedResult:
        """Apply a purchase the mobile app reports, after server-to-server verification.

        Shares the webhook path, so a store notification for the same
        transaction arriving before or after is a duplicate. Ownership comes
        only from the verified transaction's account token, never from the caller.
        """
        adapter = self.adapters.get("apple")
        if adapter is None:
            raise VerificationError("Mobile store verification is not configured")
        body: dict[str, Any] = {"notificationType": CLIENT_PURCHASE, "transactionId": transaction_id}
        if transaction_info is not None:
            body["transactionInfo"] = transaction_info
        event = await adapter.normalize(_json_bytes(body), {})
        if event.account_id is None:
            raise AccountCorrelationError("Verified transaction carries no account token")
        if event.account_id != account_id:
            raise AccountCorrelationError("Transaction was purchased by a different account")
        return await self.apply(db, redis, event)

    async def apply(self, db: AsyncSession, redis: object, event: PaymentEvent) -> AppliedResult:
        product = self._product(event)
        account_id = await self._correlate(db, event)
        kind = await self._kind(db, event, product)

        async def effect(session: AsyncSession, record: PaymentTransaction) -> tuple[str, dict[str, Any]]:
            return await self._effect(session, event, product, account_id, record)

        result = await apply_once(db, event, effect, account_id=account_id, kind=kind)
        logger.info(
            "payment_event_processed",
            provider=event.provider.value,
            provider_transaction_id=event.provider_transaction_id,
            event_type=event.event_type.value,
            account_id=account_id,
            status=result.status,
            duplicate=result.duplicate,
        )

        if not result.duplicate and result.status == "applied":
            await self._after_commit(db, redis, event, account_id, result)
        return result

    # ------------------------------------------------------------------
    # Correlation
    # ------------------------------------------------------------------

    def _product(self, event: PaymentEvent) -> Product | None:
        if event.product_ref is None:
            return None
        return self.catalog.get(event.product_ref)

    async def _correlate(self, db: AsyncSession, event: PaymentEvent) -> int:
        """Tie the event to an account: payload reference, then subscription record, then refunded payment."""
        if event.event_type in SUBSCRIPTION_EVENTS and not event.provider_subscription_id:
            raise AccountCorrelationError(f"{event.event_type.value} without a subscription id")

        account_id = event.account_id
        if event.provider_subscription_id:
            record = await get_subscription_by_provider_id(db, event.provider_subscription_id)
            if record is not None:
                if account_id is not None and account_id != record.account_id:
                    raise AccountCorrelationError(
                        f"Subscription {event.provider_subscription_id} belongs to another account"
                    )
                account_id = record.account_id

        if account_id is None and event.event_type == EventType.REFUND and event.original_transaction_id:
            original = await find_transaction(db, event.provider.value, event.original_transaction_id)
            if original is not None:
                account_id = original.account_id

        if account_id is None:
            raise AccountCorrelationError(
                f"{event.provider.value}/{event.provider_transaction_id} cannot be tied to an account"
            )
        if await get_account(db, account_id) is None:
            raise AccountCorrelationError(f"Account {account_id} does not exist")
        return account_id

    async def _kind(self, db: AsyncSession, event: PaymentEvent, product: Product | None) -> str:
        if event.kind:
            return event.kind
        if product is not None:
            return product.kind
        if event.event_type == EventType.REFUND and event.original_transaction_id:
            original = await find_transaction(db, event.provider.value, event.original_transaction_id)
            if original is not None:
                return original.kind
        return "subscription" if event.provider_subscription_id else "coins"

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    async def _effect(
        self,
        db: AsyncSession,
        event: PaymentEvent,
        product: Product | None,
        account_id: int,
        record: PaymentTransaction,
    ) -> tuple[str, dict[str, Any]]:
        account = await get_account(db, account_id)
        if account is None or not account.is_active:
            logger.warning("payment_for_inactive_account", account_id=account_id)
            return "rejected", {"reason": "account_inactive", "account_id": account_id}

        if event.event_type == EventType.REFUND:
            return await self._refund(db, event, account_id, record)

        if event.event_type == EventType.COIN_PURCHASE:
            if product is None:
                raise AccountCorrelationError("Purchase without a product")
            if product.kind == "item":
                return "applied", {"account_id": account_id, "item": product.ref}
            balance = await ledger.award(
                db,
                account_id,
                product.coins,
                reason=ledger.REASON_PURCHASE,
                source_id=f"{event.provider.value}:{event.provider_transaction_id}",
                idempotency_key=f"payment:{event.provider.value}:{event.provider_transaction_id}",
            )
            return "applied", {"account_id": account_id, "coins": product.coins, "balance": balance}

        try:
            change = await apply_subscription_event(db, event, product, account_id)
        except InvalidTransition as e:
            if (e.current, e.trigger) == ("active", "resumed"):
                # Update of a live subscription that was never cancelling.
                return "ignored", {"account_id": account_id, "reason": "no_change", "current_status": e.current}
            logger.warning(
                "subscription_transition_rejected",
                provider=event.provider.value,
                subscription_id=event.provider_subscription_id,
                current=e.current,
                trigger=e.trigger,
            )
            return "rejected", {
                "account_id": account_id,
                "reason": "invalid_transition",
                "current_status": e.current,
                "trigger": e.trigger,
            }
        return "applied", change

    async def _refund(
        self,
        db: AsyncSession,
        event: PaymentEvent,
        account_id: int,
        record: PaymentTransaction,
    ) -> tuple[str, dict[str, Any]]:
        original = None
        if event.original_transaction_id:
            original = await find_transaction(db, event.provider.value, event.original_transaction_id)
        if original is None or original.account_id != account_id:
            logger.warning(
                "refund_unmatched",
                provider=event.provider.value,
                original_transaction_id=event.original_transaction_id,
            )
            return "unmatched", {"account_id": account_id, "original_transaction_id": event.original_transaction_id}

        outcome: dict[str, Any] = {"account_id": account_id, "original_transaction_id": original.provider_transaction_id}
        if original.status == "refunded":
            outcome["already_refunded"] = True
            return "applied", outcome

        coins = int((original.outcome or {}).get("coins", 0))
        if original.kind == "coins" and coins > 0:
            # One clawback per refunded purchase, however many refund notices follow.
            # Packs are indivisible: a partial refund still reverses the whole pack.
            outcome.update(await ledger.clawback(
                db,
                account_id,
                coins,
                source_id=f"{original.provider}:{original.provider_transaction_id}",
                idempotency_key=f"refund:{original.provider}:{original.provider_transaction_id}",
            ))
        elif original.kind == "subscription" and original.provider_subscription_id:
            change = await revoke_subscription(db, original.provider_subscription_id, account_id)
            if change is not None:
                outcome["subscription"] = change

        await db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == original.id)
            .values(status="refunded")
            .execution_options(synchronize_session=False)
        )
        return "applied", outcome

    # ------------------------------------------------------------------
    # Post-commit reactions
    # ------------------------------------------------------------------

    async def _after_commit(
        self,
        db: AsyncSession,
        redis: object,
        event: PaymentEvent,
        account_id: int,
        result: AppliedResult,
    ) -> None:
        if event.event_type in SUBSCRIPTION_EVENTS:
            await publish_subscription_changed(redis, result.outcome)
        elif "subscription" in result.outcome:
            await publish_subscription_changed(redis, result.outcome["subscription"])
        try:
            await evaluate_achievements(
                db, redis, account_id, context={"payment": f"{event.provider.value}:{event.provider_transaction_id}"}
            )
            await db.commit()
        except AscendError as e:
            # Evaluation is re-runnable; the payment itself is already committed.
            await db.rollback()
            logger.warning("achievement_evaluation_failed", account_id=account_id, error=e.detail)


def _json_bytes(body: dict[str, Any]) -> bytes:
    return json.dumps(body).encode()
