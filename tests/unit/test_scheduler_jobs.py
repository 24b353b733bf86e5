"""Scheduled jobs run against the same database as the API."""

from __future__ import annotations

import pytest
from sqlalchemy import update

from ascend.db.models import Account
from ascend.ledger import service as ledger
from ascend.workers.scheduler import run_ledger_audit, run_streak_sweep, run_subscription_sweeps


class TestLedgerAudit:
    @pytest.mark.asyncio
    async def test_clean_ledger_freezes_nothing(self, db, account):
        await ledger.award(db, account.id, 120, reason="promo")
        await db.commit()
        assert await run_ledger_audit({}) == 0

    @pytest.mark.asyncio
    async def test_drifted_balance_is_frozen(self, db, account, other_account, session_factory):
        await ledger.award(db, account.id, 120, reason="promo")
        await ledger.award(db, other_account.id, 40, reason="promo")
        await db.execute(update(Account).where(Account.id == account.id).values(coin_balance=999))
        await db.commit()

        assert await run_ledger_audit({}) == 1

        async with session_factory() as session:
            assert (await ledger.verify_account_ledger(session, other_account.id))["frozen"] is False
            report = await ledger.verify_account_ledger(session, account.id)
        assert report["frozen"] is True
        assert report["ledger_sum"] == 120


class TestSweeps:
    @pytest.mark.asyncio
    async def test_nothing_to_sweep(self, engine, account):
        assert await run_subscription_sweeps({}) == 0
        assert await run_streak_sweep({}) == 0


class TestWorkerSettings:
    def test_every_job_is_scheduled(self):
        from ascend.workers.settings import WorkerSettings

        scheduled = {job.coroutine for job in WorkerSettings.cron_jobs}
        assert scheduled == set(WorkerSettings.functions)

    def test_subscription_sweep_is_hourly(self):
        from ascend.workers.settings import WorkerSettings

        sweep = next(job for job in WorkerSettings.cron_jobs if job.coroutine is run_subscription_sweeps)
        assert sweep.hour is None
        assert sweep.minute == {15}
