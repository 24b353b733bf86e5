"""Daily activity streaks.

Rules (all dates in UTC):
  - same calendar day as the last qualifying activity: no change
  - gap since the last activity longer than the reset window: streak restarts at 1
  - otherwise: streak + 1
Longest streak is a high-water mark and is never lowered.

Live activity holds the account row lock while it updates the streak, and
the daily sweep is a single conditional UPDATE, so the two cannot
double-apply regardless of ordering.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import require_account
from ascend.config import get_settings
from ascend.db.models import Account, ActivityCounter, ActivityEvent
from ascend.progression.xp_service import award_xp

logger = logging.getLogger(__name__)


def next_streak(
    current: int,
    last_active_at: datetime | None,
    occurred_at: datetime,
    reset_window: timedelta,
) -> int:
    """Streak value after a qualifying activity at ``occurred_at``."""
    if last_active_at is None or current <= 0:
        return 1
    if occurred_at.date() == last_active_at.date():
        return current
    if occurred_at < last_active_at:
        # Late delivery of an older event.
        return current
    if occurred_at - last_active_at > reset_window:
        return 1
    return current + 1


async def _increment_counter(db: AsyncSession, account_id: int, activity_type: str) -> int:
    result = await db.execute(
        select(ActivityCounter)
        .where(ActivityCounter.account_id == account_id, ActivityCounter.activity_type == activity_type)
        .execution_options(populate_existing=True)
    )
    counter = result.scalar_one_or_none()
    if counter is None:
        counter = ActivityCounter(account_id=account_id, activity_type=activity_type, count=0)
        db.add(counter)
    counter.count += 1
    await db.flush()
    return counter.count


async def get_activity_counts(db: AsyncSession, account_id: int) -> dict[str, int]:
    result = await db.execute(
        select(ActivityCounter.activity_type, ActivityCounter.count).where(ActivityCounter.account_id == account_id)
    )
    return {activity_type: count for activity_type, count in result.all()}


async def record_activity(
    db: AsyncSession,
    redis: object,
    account_id: int,
    activity_type: str,
    occurred_at: datetime | None = None,
    event_key: str | None = None,
) -> dict:
    """Apply one external domain event (task completed, daily login...).

    ``event_key`` dedupes redelivered events: a repeated key changes nothing.
    """
    settings = get_settings()
    occurred_at = occurred_at or datetime.now(timezone.utc)
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    occurred_at = occurred_at.astimezone(timezone.utc)

    account = await require_account(db, account_id, for_update=True)

    if event_key is not None:
        try:
            async with db.begin_nested():
                db.add(ActivityEvent(
                    account_id=account_id,
                    event_key=event_key,
                    activity_type=activity_type,
                    occurred_at=occurred_at,
                ))
                await db.flush()
        except IntegrityError:
            logger.info("Activity %s for account %s already recorded", event_key, account_id)
            return {
                "duplicate": True,
                "activity_count": (await get_activity_counts(db, account_id)).get(activity_type, 0),
                "current_streak": account.current_streak,
                "longest_streak": account.longest_streak,
                "xp_awarded": 0,
            }

    count = await _increment_counter(db, account_id, activity_type)

    current, longest = account.current_streak, account.longest_streak
    if activity_type in settings.streak_activity_types:
        window = timedelta(hours=settings.streak_reset_hours)
        current = next_streak(account.current_streak, account.last_active_at, occurred_at, window)
        longest = max(longest, current)
        last_active = max(occurred_at, account.last_active_at) if account.last_active_at else occurred_at
        await db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(
                current_streak=current,
                longest_streak=longest,
                last_active_at=last_active,
                streak_checked_on=last_active.date(),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await db.flush()

    xp_awarded = 0
    xp_amount = settings.activity_xp.get(activity_type, 0)
    if xp_amount > 0:
        grant = await award_xp(
            db,
            redis,
            account_id,
            xp_amount,
            reason=f"activity:{activity_type}",
            source_id=event_key,
            idempotency_key=f"activity:{account_id}:{event_key}" if event_key else None,
        )
        xp_awarded = xp_amount if grant["granted"] else 0

    return {
        "duplicate": False,
        "activity_count": count,
        "current_streak": current,
        "longest_streak": longest,
        "xp_awarded": xp_awarded,
    }


async def get_streak(db: AsyncSession, account_id: int) -> dict:
    account = await require_account(db, account_id)
    return {
        "current_streak": account.current_streak,
        "longest_streak": account.longest_streak,
        "last_active_at": account.last_active_at,
    }


async def sweep_streaks(db: AsyncSession, now: datetime | None = None) -> int:
    """Daily reset of streaks whose owners went quiet for longer than the window.

    One conditional UPDATE: rows touched by live activity since the cutoff,
    or already swept today, do not match. Returns the number of resets.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    today: date = now.date()
    cutoff = now - timedelta(hours=settings.streak_reset_hours)

    result = await db.execute(
        update(Account)
        .where(
            Account.current_streak > 0,
            Account.last_active_at < cutoff,
            or_(Account.streak_checked_on.is_(None), Account.streak_checked_on < today),
        )
        .values(current_streak=0, streak_checked_on=today, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    reset = result.rowcount or 0
    logger.info("Streak sweep reset %d streaks (cutoff %s)", reset, cutoff.isoformat())
    return reset
