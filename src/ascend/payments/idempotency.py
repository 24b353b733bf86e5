"""Exactly-once application of payment events.

The ``payment_transactions`` row and the event's effect are written in the
same database transaction. The unique (provider, provider_transaction_id)
constraint decides races: the loser reads the winner's committed outcome
instead of erroring, and nothing is ever applied twice.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.db.models import PaymentTransaction
from ascend.payments.events import PaymentEvent

logger = logging.getLogger(__name__)

# (status, outcome) produced by an effect.
Effect = Callable[[AsyncSession, PaymentTransaction], Awaitable[tuple[str, dict[str, Any]]]]


@dataclass(frozen=True)
class AppliedResult:
    payment_transaction_id: int
    status: str
    outcome: dict[str, Any]
    duplicate: bool


async def find_transaction(db: AsyncSession, provider: str, provider_transaction_id: str) -> PaymentTransaction | None:
    result = await db.execute(
        select(PaymentTransaction)
        .where(
            PaymentTransaction.provider == provider,
            PaymentTransaction.provider_transaction_id == provider_transaction_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _duplicate(record: PaymentTransaction) -> AppliedResult:
    return AppliedResult(
        payment_transaction_id=record.id,
        status=record.status,
        outcome=dict(record.outcome or {}),
        duplicate=True,
    )


async def apply_once(
    db: AsyncSession,
    event: PaymentEvent,
    effect: Effect,
    *,
    account_id: int | None,
    kind: str,
) -> AppliedResult:
    """Run ``effect`` exactly once for this provider transaction and commit.

    On any failure inside the effect the whole unit is rolled back and the
    exception propagates, so the provider's retry finds nothing recorded.
    """
    provider = event.provider.value
    existing = await find_transaction(db, provider, event.provider_transaction_id)
    if existing is not None:
        logger.info("Duplicate delivery %s/%s", provider, event.provider_transaction_id)
        return _duplicate(existing)

    record = PaymentTransaction(
        provider=provider,
        provider_transaction_id=event.provider_transaction_id,
        provider_subscription_id=event.provider_subscription_id,
        account_id=account_id,
        event_type=event.event_type.value,
        kind=kind,
        product_ref=event.product_ref,
        amount=event.amount,
        currency=event.currency,
        status="pending",
        outcome={},
    )
    try:
        async with db.begin_nested():
            db.add(record)
            await db.flush()
    except IntegrityError:
        winner = await find_transaction(db, provider, event.provider_transaction_id)
        if winner is None:
            raise
        logger.info("Concurrent delivery %s/%s lost the race", provider, event.provider_transaction_id)
        return _duplicate(winner)

    try:
        status, outcome = await effect(db, record)
        record.status = status
        record.outcome = outcome
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return AppliedResult(
        payment_transaction_id=record.id,
        status=status,
        outcome=outcome,
        duplicate=False,
    )
