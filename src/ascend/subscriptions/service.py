"""Subscription persistence and the account tier projection.

The account row is locked before a subscription record is touched, so all
subscription and ledger writes for one account are serialized. The account's
tier/status/period end are rewritten in the same transaction as the record.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import get_account, require_account
from ascend.db.models import Account, Subscription
from ascend.errors import AccountCorrelationError, InvalidTransition
from ascend.payments.catalog import Product
from ascend.payments.events import PaymentEvent
from ascend.subscriptions.state_machine import EVENT_TRIGGERS, effective_tier, transition

logger = logging.getLogger(__name__)

SUBSCRIPTION_CHANNEL = "pubsub:subscription_changed"


async def get_subscription_by_provider_id(db: AsyncSession, provider_subscription_id: str) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.provider_subscription_id == provider_subscription_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def current_subscription(db: AsyncSession, account_id: int) -> Subscription | None:
    """The newest lineage that has not been superseded."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.account_id == account_id, Subscription.superseded_at.is_(None))
        .order_by(Subscription.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_subscription(db: AsyncSession, account_id: int) -> dict:
    """Tier, status and period end as the rest of the app sees them."""
    account = await require_account(db, account_id)
    record = await current_subscription(db, account_id)
    return {
        "tier": account.tier,
        "status": account.subscription_status,
        "current_period_end": account.current_period_end,
        "provider": record.provider if record else None,
        "billing_cycle": record.billing_cycle if record else None,
    }


async def apply_subscription_event(
    db: AsyncSession,
    event: PaymentEvent,
    product: Product | None,
    account_id: int,
    now: datetime | None = None,
) -> dict:
    """Drive one lineage through the state machine and refresh the account projection.

    Raises InvalidTransition without touching any state when the event is
    impossible from the current status.
    """
    now = now or datetime.now(timezone.utc)
    trigger = EVENT_TRIGGERS[event.event_type.value]
    await require_account(db, account_id, for_update=True)

    record = await get_subscription_by_provider_id(db, event.provider_subscription_id)
    if record is not None and record.account_id != account_id:
        raise AccountCorrelationError(
            f"Subscription {event.provider_subscription_id} belongs to another account"
        )

    previous = record.status if record is not None else "none"
    elapsed = bool(record and record.current_period_end and record.current_period_end <= now)
    next_state = transition(previous, trigger, period_elapsed=elapsed)

    new_lineage = record is None
    if new_lineage:
        if product is None or product.kind != "subscription":
            raise InvalidTransition(previous, trigger)
        record = Subscription(
            account_id=account_id,
            provider=event.provider.value,
            provider_subscription_id=event.provider_subscription_id,
            product_ref=product.ref,
            tier=product.tier,
            billing_cycle=product.billing_cycle,
            status="none",
            created_at=now,
            updated_at=now,
        )
        db.add(record)
    elif product is not None and product.kind == "subscription" and product.ref != record.product_ref:
        # Plan change within the same lineage (upgrade/downgrade on renewal).
        record.product_ref = product.ref
        record.tier = product.tier
        record.billing_cycle = product.billing_cycle

    if event.period_end is not None and trigger in ("created", "renewed", "cancelled"):
        record.current_period_end = event.period_end

    period_running = record.current_period_end is not None and record.current_period_end > now
    if next_state == "cancelling" and record.current_period_end is not None and not period_running:
        # Cancellation effective immediately (deleted/expired): nothing left to serve.
        next_state = transition(next_state, "period_elapsed")
    elif previous == "cancelling" and trigger == "cancelled" and period_running:
        # Repeated cancel notice while the paid period still runs.
        next_state = "cancelling"

    if next_state == "past_due":
        record.past_due_since = record.past_due_since or now
    else:
        record.past_due_since = None

    record.status = next_state
    record.updated_at = now
    await db.flush()

    if new_lineage:
        await _supersede_older_lineages(db, account_id, record, now)
    projection = await refresh_account_projection(db, account_id, now)

    logger.info(
        "Subscription %s (%s): %s --%s--> %s",
        record.provider_subscription_id, record.provider, previous, trigger, next_state,
    )
    return {
        "account_id": account_id,
        "subscription_id": record.provider_subscription_id,
        "previous_status": previous,
        "status": next_state,
        "tier": projection["tier"],
    }


async def revoke_subscription(
    db: AsyncSession,
    provider_subscription_id: str,
    account_id: int,
    now: datetime | None = None,
) -> dict | None:
    """End a lineage whose payment was refunded. Returns the change, or None if nothing was entitled."""
    now = now or datetime.now(timezone.utc)
    await get_account(db, account_id, for_update=True)
    record = await get_subscription_by_provider_id(db, provider_subscription_id)
    if record is None or record.account_id != account_id or record.status == "cancelled":
        return None

    previous = record.status
    record.status = transition(previous, "revoked")
    record.past_due_since = None
    record.updated_at = now
    await db.flush()
    projection = await refresh_account_projection(db, account_id, now)

    logger.info(
        "Subscription %s (%s): %s --revoked--> %s",
        record.provider_subscription_id, record.provider, previous, record.status,
    )
    return {
        "account_id": account_id,
        "subscription_id": record.provider_subscription_id,
        "previous_status": previous,
        "status": record.status,
        "tier": projection["tier"],
    }


async def _supersede_older_lineages(db: AsyncSession, account_id: int, record: Subscription, now: datetime) -> None:
    await db.execute(
        update(Subscription)
        .where(
            Subscription.account_id == account_id,
            Subscription.id != record.id,
            Subscription.superseded_at.is_(None),
        )
        .values(superseded_at=now, superseded_by_id=record.id, updated_at=now)
        .execution_options(synchronize_session=False)
    )


async def refresh_account_projection(db: AsyncSession, account_id: int, now: datetime | None = None) -> dict:
    """Rewrite the account's tier/status/period end from its current lineage."""
    now = now or datetime.now(timezone.utc)
    record = await current_subscription(db, account_id)
    if record is None:
        values = {"tier": "free", "subscription_status": "none", "current_period_end": None}
    else:
        values = {
            "tier": effective_tier(record.status, record.tier),
            "subscription_status": record.status,
            "current_period_end": record.current_period_end,
        }
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return values


# ---------------------------------------------------------------------------
# Time-driven transitions
# ---------------------------------------------------------------------------


async def _expire(
    db: AsyncSession,
    candidates: list[tuple[int, int]],
    condition: tuple,
    target: str,
    now: datetime,
) -> list[dict]:
    changes = []
    for subscription_id, account_id in candidates:
        await get_account(db, account_id, for_update=True)
        # Conditional update: a webhook that moved the record meanwhile wins.
        result = await db.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id, *condition)
            .values(status=target, past_due_since=None, updated_at=now)
            .returning(Subscription.provider_subscription_id)
            .execution_options(synchronize_session=False)
        )
        provider_subscription_id = result.scalar_one_or_none()
        if provider_subscription_id is None:
            continue
        projection = await refresh_account_projection(db, account_id, now)
        changes.append({
            "account_id": account_id,
            "subscription_id": provider_subscription_id,
            "status": target,
            "tier": projection["tier"],
        })
    return changes


async def expire_elapsed_periods(db: AsyncSession, now: datetime | None = None) -> list[dict]:
    """cancelling -> cancelled once the paid period is over."""
    now = now or datetime.now(timezone.utc)
    condition = (Subscription.status == "cancelling", Subscription.current_period_end <= now)
    result = await db.execute(select(Subscription.id, Subscription.account_id).where(*condition))
    target = transition("cancelling", "period_elapsed")
    changes = await _expire(db, [tuple(row) for row in result.all()], condition, target, now)
    await db.commit()
    if changes:
        logger.info("Expired %d subscriptions at period end", len(changes))
    return changes


async def expire_grace_periods(db: AsyncSession, grace_days: int, now: datetime | None = None) -> list[dict]:
    """past_due -> cancelled once the grace period is exhausted."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=grace_days)
    condition = (Subscription.status == "past_due", Subscription.past_due_since <= cutoff)
    result = await db.execute(select(Subscription.id, Subscription.account_id).where(*condition))
    target = transition("past_due", "grace_expired")
    changes = await _expire(db, [tuple(row) for row in result.all()], condition, target, now)
    await db.commit()
    if changes:
        logger.info("Cancelled %d subscriptions after grace period", len(changes))
    return changes


async def publish_subscription_changed(redis: object, change: dict) -> None:
    """Broadcast a committed subscription change. Best effort."""
    if redis is None:
        return
    try:
        await redis.publish(SUBSCRIPTION_CHANNEL, json.dumps(change, default=str))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Failed to publish subscription change", exc_info=True)
