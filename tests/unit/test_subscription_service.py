"""Subscription lifecycle persistence and the account tier projection."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ascend.accounts.service import get_account
from ascend.errors import AccountCorrelationError, InvalidTransition
from ascend.payments.catalog import DEFAULT_PRODUCTS, ProductCatalog
from ascend.payments.events import EventType, PaymentEvent, Provider
from ascend.subscriptions.service import (
    apply_subscription_event,
    current_subscription,
    expire_elapsed_periods,
    expire_grace_periods,
    get_subscription,
    revoke_subscription,
)

CATALOG = ProductCatalog(DEFAULT_PRODUCTS)
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PRO = CATALOG.get("pro-monthly")
TEAM = CATALOG.get("team-monthly")

_counter = iter(range(1, 10_000))


def sub_event(
    event_type: EventType,
    subscription_id: str = "sub_1",
    period_end: datetime | None = None,
    product_ref: str | None = None,
) -> PaymentEvent:
    return PaymentEvent(
        provider=Provider.STRIPE,
        provider_transaction_id=f"evt_{next(_counter)}",
        event_type=event_type,
        occurred_at=NOW,
        provider_subscription_id=subscription_id,
        kind="subscription",
        product_ref=product_ref,
        period_end=period_end,
    )


async def _start(db, account_id: int, subscription_id: str = "sub_1", product=PRO) -> dict:
    return await apply_subscription_event(
        db,
        sub_event(EventType.SUBSCRIPTION_CREATED, subscription_id, NOW + timedelta(days=30), product.ref),
        product,
        account_id,
        NOW,
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_creation_grants_tier(self, db, account):
        change = await _start(db, account.id)
        await db.commit()

        assert change["previous_status"] == "none"
        assert change["status"] == "active"
        assert change["tier"] == "pro"
        refreshed = await get_account(db, account.id)
        assert refreshed.tier == "pro"
        assert refreshed.subscription_status == "active"
        assert refreshed.current_period_end == NOW + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_payment_failure_keeps_tier_during_grace(self, db, account):
        await _start(db, account.id)
        change = await apply_subscription_event(db, sub_event(EventType.PAYMENT_FAILED), None, account.id, NOW)

        assert change["status"] == "past_due"
        assert change["tier"] == "pro"
        record = await current_subscription(db, account.id)
        assert record.past_due_since == NOW

    @pytest.mark.asyncio
    async def test_renewal_recovers_past_due(self, db, account):
        await _start(db, account.id)
        await apply_subscription_event(db, sub_event(EventType.PAYMENT_FAILED), None, account.id, NOW)
        change = await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_RENEWED, period_end=NOW + timedelta(days=60)), PRO, account.id, NOW
        )
        assert change["status"] == "active"
        record = await current_subscription(db, account.id)
        assert record.past_due_since is None
        assert record.current_period_end == NOW + timedelta(days=60)

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_keeps_tier(self, db, account):
        await _start(db, account.id)
        change = await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW + timedelta(days=30)), None, account.id, NOW
        )
        assert change["status"] == "cancelling"
        assert change["tier"] == "pro"

    @pytest.mark.asyncio
    async def test_repeated_cancel_notice_keeps_cancelling(self, db, account):
        await _start(db, account.id)
        cancel = sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW + timedelta(days=30))
        await apply_subscription_event(db, cancel, None, account.id, NOW)
        change = await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW + timedelta(days=30)), None, account.id, NOW
        )
        assert change["status"] == "cancelling"

    @pytest.mark.asyncio
    async def test_immediate_cancel_revokes_tier(self, db, account):
        await _start(db, account.id)
        change = await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW), None, account.id, NOW
        )
        assert change["status"] == "cancelled"
        assert change["tier"] == "free"

    @pytest.mark.asyncio
    async def test_uncancel_within_period(self, db, account):
        await _start(db, account.id)
        await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW + timedelta(days=30)), None, account.id, NOW
        )
        change = await apply_subscription_event(db, sub_event(EventType.SUBSCRIPTION_RESUMED), None, account.id, NOW)
        assert change["status"] == "active"

    @pytest.mark.asyncio
    async def test_pause_drops_to_free(self, db, account):
        await _start(db, account.id)
        change = await apply_subscription_event(db, sub_event(EventType.SUBSCRIPTION_PAUSED), None, account.id, NOW)
        assert change["status"] == "paused"
        assert change["tier"] == "free"

    @pytest.mark.asyncio
    async def test_plan_change_on_renewal(self, db, account):
        await _start(db, account.id)
        change = await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_RENEWED, product_ref=TEAM.ref), TEAM, account.id, NOW
        )
        assert change["tier"] == "team"
        summary = await get_subscription(db, account.id)
        assert summary["tier"] == "team"
        assert summary["provider"] == "stripe"


class TestRejections:
    @pytest.mark.asyncio
    async def test_cancelled_then_renewed_is_rejected_without_changes(self, db, account):
        await _start(db, account.id)
        await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW), None, account.id, NOW
        )
        await db.commit()

        with pytest.raises(InvalidTransition):
            await apply_subscription_event(
                db,
                sub_event(EventType.SUBSCRIPTION_RENEWED, period_end=NOW + timedelta(days=30)),
                PRO,
                account.id,
                NOW,
            )
        await db.rollback()

        refreshed = await get_account(db, account.id)
        assert refreshed.tier == "free"
        assert refreshed.subscription_status == "cancelled"

    @pytest.mark.asyncio
    async def test_lifecycle_event_for_unknown_subscription(self, db, account):
        with pytest.raises(InvalidTransition):
            await apply_subscription_event(db, sub_event(EventType.PAYMENT_FAILED, "sub_new"), None, account.id, NOW)

    @pytest.mark.asyncio
    async def test_subscription_of_another_account(self, db, account, other_account):
        await _start(db, account.id)
        with pytest.raises(AccountCorrelationError):
            await apply_subscription_event(
                db, sub_event(EventType.SUBSCRIPTION_RENEWED), PRO, other_account.id, NOW
            )


class TestLineages:
    @pytest.mark.asyncio
    async def test_new_lineage_supersedes_old(self, db, account):
        await _start(db, account.id, "sub_old")
        await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, "sub_old", period_end=NOW), None, account.id, NOW
        )
        await _start(db, account.id, "sub_new", TEAM)

        record = await current_subscription(db, account.id)
        assert record.provider_subscription_id == "sub_new"
        refreshed = await get_account(db, account.id)
        assert refreshed.tier == "team"


class TestRevocation:
    @pytest.mark.asyncio
    async def test_refunded_lineage_loses_tier_immediately(self, db, account):
        await _start(db, account.id)
        change = await revoke_subscription(db, "sub_1", account.id, NOW)
        await db.commit()

        assert change["previous_status"] == "active"
        assert change["status"] == "cancelled"
        assert change["tier"] == "free"
        refreshed = await get_account(db, account.id)
        assert refreshed.tier == "free"
        assert refreshed.subscription_status == "cancelled"

    @pytest.mark.asyncio
    async def test_revoking_a_cancelled_lineage_is_a_no_op(self, db, account):
        await _start(db, account.id)
        await revoke_subscription(db, "sub_1", account.id, NOW)
        assert await revoke_subscription(db, "sub_1", account.id, NOW) is None

    @pytest.mark.asyncio
    async def test_revoke_ignores_other_accounts_lineage(self, db, account, other_account):
        await _start(db, account.id)
        assert await revoke_subscription(db, "sub_1", other_account.id, NOW) is None
        assert (await get_account(db, account.id)).tier == "pro"


class TestSweeps:
    @pytest.mark.asyncio
    async def test_elapsed_cancelling_period_expires(self, db, account):
        await _start(db, account.id)
        await apply_subscription_event(
            db, sub_event(EventType.SUBSCRIPTION_CANCELLED, period_end=NOW + timedelta(days=30)), None, account.id, NOW
        )
        await db.commit()

        assert await expire_elapsed_periods(db, NOW + timedelta(days=29)) == []
        changes = await expire_elapsed_periods(db, NOW + timedelta(days=31))

        assert len(changes) == 1
        assert changes[0]["status"] == "cancelled"
        assert changes[0]["tier"] == "free"
        assert (await get_account(db, account.id)).tier == "free"

    @pytest.mark.asyncio
    async def test_grace_period_expiry(self, db, account):
        await _start(db, account.id)
        await apply_subscription_event(db, sub_event(EventType.PAYMENT_FAILED), None, account.id, NOW)
        await db.commit()

        assert await expire_grace_periods(db, 7, NOW + timedelta(days=6)) == []
        changes = await expire_grace_periods(db, 7, NOW + timedelta(days=8))

        assert [c["status"] for c in changes] == ["cancelled"]
        assert (await get_account(db, account.id)).subscription_status == "cancelled"

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, db, account):
        await _start(db, account.id)
        await apply_subscription_event(db, sub_event(EventType.PAYMENT_FAILED), None, account.id, NOW)
        await db.commit()

        later = NOW + timedelta(days=10)
        assert len(await expire_grace_periods(db, 7, later)) == 1
        assert await expire_grace_periods(db, 7, later) == []
