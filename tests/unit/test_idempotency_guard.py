"""Exactly-once application of payment events."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from ascend.db.models import PaymentTransaction
from ascend.ledger import service as ledger
from ascend.payments.events import EventType, PaymentEvent, Provider
from ascend.payments.idempotency import apply_once, find_transaction


def _event(transaction_id: str = "pi_1", account_id: int | None = None) -> PaymentEvent:
    return PaymentEvent(
        provider=Provider.STRIPE,
        provider_transaction_id=transaction_id,
        event_type=EventType.COIN_PURCHASE,
        occurred_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        account_id=account_id,
        kind="coins",
        amount=499,
        product_ref="coins-500",
    )


async def _count(db) -> int:
    return (await db.execute(select(func.count()).select_from(PaymentTransaction))).scalar_one()


class TestApplyOnce:
    @pytest.mark.asyncio
    async def test_effect_runs_once_and_outcome_is_replayed(self, db, account):
        calls = []

        async def effect(session, record):
            calls.append(record.provider_transaction_id)
            balance = await ledger.award(session, account.id, 500, reason=ledger.REASON_PURCHASE)
            return "applied", {"coins": 500, "balance": balance}

        first = await apply_once(db, _event(account_id=account.id), effect, account_id=account.id, kind="coins")
        second = await apply_once(db, _event(account_id=account.id), effect, account_id=account.id, kind="coins")

        assert calls == ["pi_1"]
        assert first.duplicate is False
        assert second.duplicate is True
        assert second.status == first.status == "applied"
        assert second.outcome == {"coins": 500, "balance": 500}
        assert second.payment_transaction_id == first.payment_transaction_id
        assert await ledger.get_balance(db, account.id) == 500

    @pytest.mark.asyncio
    async def test_failed_effect_records_nothing(self, db, account):
        async def effect(session, record):
            await ledger.award(session, account.id, 500, reason=ledger.REASON_PURCHASE)
            raise RuntimeError("database went away")

        with pytest.raises(RuntimeError):
            await apply_once(db, _event("pi_2"), effect, account_id=account.id, kind="coins")

        assert await find_transaction(db, "stripe", "pi_2") is None
        assert await ledger.get_balance(db, account.id) == 0

    @pytest.mark.asyncio
    async def test_retry_after_failure_applies(self, db, account):
        attempts = []

        async def flaky(session, record):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("transient")
            return "applied", {}

        with pytest.raises(RuntimeError):
            await apply_once(db, _event("pi_3"), flaky, account_id=account.id, kind="coins")
        result = await apply_once(db, _event("pi_3"), flaky, account_id=account.id, kind="coins")

        assert result.duplicate is False
        assert await _count(db) == 1

    @pytest.mark.asyncio
    async def test_same_id_from_different_providers_is_distinct(self, db, account):
        async def effect(session, record):
            return "applied", {}

        await apply_once(db, _event("shared-id"), effect, account_id=account.id, kind="coins")
        paddle = _event("shared-id").model_copy(update={"provider": Provider.PADDLE})
        result = await apply_once(db, paddle, effect, account_id=account.id, kind="coins")

        assert result.duplicate is False
        assert await _count(db) == 2

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_apply_once(self, db, account, session_factory):
        async def effect(session, record):
            await ledger.award(session, account.id, 500, reason=ledger.REASON_PURCHASE)
            return "applied", {"coins": 500}

        async def deliver():
            async with session_factory() as session:
                return await apply_once(session, _event("pi_race"), effect, account_id=account.id, kind="coins")

        results = await asyncio.gather(deliver(), deliver())

        assert sorted(r.duplicate for r in results) == [False, True]
        assert await ledger.get_balance(db, account.id) == 500
