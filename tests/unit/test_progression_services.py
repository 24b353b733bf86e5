"""XP grants, streak tracking and the daily streak sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from ascend.accounts.service import deactivate_account, get_account
from ascend.db.models import XpTransaction
from ascend.errors import AccountInactive
from ascend.progression.streak_service import get_activity_counts, get_streak, record_activity, sweep_streaks
from ascend.progression.xp_service import award_xp, get_xp_summary, recompute_level

T0 = datetime(2026, 4, 1, 8, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Collects published messages."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, message))


class TestAwardXp:
    @pytest.mark.asyncio
    async def test_grant_updates_total_and_level(self, db, account):
        result = await award_xp(db, None, account.id, 150, reason="admin")
        assert result["granted"] is True
        assert result["leveled_up"] is True
        assert result["total_xp"] == 150
        assert result["level"] == 2

        refreshed = await get_account(db, account.id)
        assert refreshed.level == 2
        assert refreshed.level_title == "Apprentice"

    @pytest.mark.asyncio
    async def test_exact_threshold_levels_up(self, db, account):
        await award_xp(db, None, account.id, 99, reason="admin")
        result = await award_xp(db, None, account.id, 1, reason="admin")
        assert result["leveled_up"] is True
        assert result["level"] == 2

    @pytest.mark.asyncio
    async def test_duplicate_key_grants_once(self, db, account):
        await award_xp(db, None, account.id, 40, reason="bonus", idempotency_key="bonus:1")
        again = await award_xp(db, None, account.id, 40, reason="bonus", idempotency_key="bonus:1")

        assert again["granted"] is False
        assert (await get_xp_summary(db, account.id))["total_xp"] == 40
        rows = (await db.execute(select(XpTransaction).where(XpTransaction.account_id == account.id))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_level_up_is_broadcast(self, db, account):
        redis = FakeRedis()
        await award_xp(db, redis, account.id, 350, reason="admin")
        assert [channel for channel, _ in redis.published] == ["pubsub:level_up"]

    @pytest.mark.asyncio
    async def test_recompute_level_from_log(self, db, account):
        await award_xp(db, None, account.id, 120, reason="a")
        await award_xp(db, None, account.id, 200, reason="b")
        result = await recompute_level(db, account.id)
        assert result["total_xp"] == 320
        assert result["level"] == 3


class TestRecordActivity:
    @pytest.mark.asyncio
    async def test_first_activity_starts_streak_and_grants_xp(self, db, account):
        result = await record_activity(db, None, account.id, "task_completed", T0, "task-1")

        assert result["duplicate"] is False
        assert result["current_streak"] == 1
        assert result["longest_streak"] == 1
        assert result["activity_count"] == 1
        assert result["xp_awarded"] == 10

    @pytest.mark.asyncio
    async def test_redelivered_event_is_a_no_op(self, db, account):
        await record_activity(db, None, account.id, "task_completed", T0, "task-1")
        again = await record_activity(db, None, account.id, "task_completed", T0, "task-1")

        assert again["duplicate"] is True
        assert again["xp_awarded"] == 0
        assert (await get_activity_counts(db, account.id)) == {"task_completed": 1}
        assert (await get_xp_summary(db, account.id))["total_xp"] == 10

    @pytest.mark.asyncio
    async def test_consecutive_days_extend_streak(self, db, account):
        for day in range(3):
            result = await record_activity(
                db, None, account.id, "daily_login", T0 + timedelta(days=day), f"login-{day}"
            )
        assert result["current_streak"] == 3

    @pytest.mark.asyncio
    async def test_gap_of_49_hours_resets_streak(self, db, account):
        await record_activity(db, None, account.id, "daily_login", T0, "login-0")
        await record_activity(db, None, account.id, "daily_login", T0 + timedelta(days=1), "login-1")
        result = await record_activity(
            db, None, account.id, "daily_login", T0 + timedelta(days=1, hours=49), "login-2"
        )
        assert result["current_streak"] == 1
        assert result["longest_streak"] == 2

    @pytest.mark.asyncio
    async def test_non_streak_activity_leaves_streak(self, db, account):
        result = await record_activity(db, None, account.id, "profile_updated", T0, "p-1")
        assert result["current_streak"] == 0
        assert result["xp_awarded"] == 0
        assert result["activity_count"] == 1

    @pytest.mark.asyncio
    async def test_inactive_account_rejected(self, db, account):
        await deactivate_account(db, account.id)
        with pytest.raises(AccountInactive):
            await record_activity(db, None, account.id, "task_completed", T0, "task-x")


class TestStreakSweep:
    @pytest.mark.asyncio
    async def test_quiet_account_is_reset(self, db, account):
        await record_activity(db, None, account.id, "daily_login", T0, "login-0")
        await db.commit()

        assert await sweep_streaks(db, T0 + timedelta(hours=47)) == 0
        assert await sweep_streaks(db, T0 + timedelta(hours=49)) == 1

        streak = await get_streak(db, account.id)
        assert streak["current_streak"] == 0
        assert streak["longest_streak"] == 1

    @pytest.mark.asyncio
    async def test_sweep_runs_once_per_day(self, db, account):
        await record_activity(db, None, account.id, "daily_login", T0, "login-0")
        await db.commit()

        now = T0 + timedelta(hours=50)
        assert await sweep_streaks(db, now) == 1
        assert await sweep_streaks(db, now + timedelta(minutes=5)) == 0

    @pytest.mark.asyncio
    async def test_activity_after_sweep_restarts_at_one(self, db, account):
        await record_activity(db, None, account.id, "daily_login", T0, "login-0")
        await db.commit()
        await sweep_streaks(db, T0 + timedelta(hours=49))

        result = await record_activity(db, None, account.id, "daily_login", T0 + timedelta(hours=50), "login-1")
        assert result["current_streak"] == 1
