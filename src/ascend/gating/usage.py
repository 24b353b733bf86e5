"""Per-period usage counters for count-limited features.

The external app reports each use through the internal API; the feature
gate only reads these rows.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.db.models import UsageCounter

logger = logging.getLogger(__name__)

# Lifetime counters share one fixed bucket.
LIFETIME_START = date(1970, 1, 1)


def period_start(period: str | None, now: datetime) -> date:
    """First day of the usage window containing ``now``."""
    if period == "day":
        return now.date()
    if period == "month":
        return now.date().replace(day=1)
    return LIFETIME_START


async def get_usage(db: AsyncSession, account_id: int, feature_key: str, period: str | None, now: datetime) -> int:
    result = await db.execute(
        select(UsageCounter.count).where(
            UsageCounter.account_id == account_id,
            UsageCounter.feature_key == feature_key,
            UsageCounter.period_start == period_start(period, now),
        )
    )
    return result.scalar_one_or_none() or 0


async def record_usage(
    db: AsyncSession,
    account_id: int,
    feature_key: str,
    period: str | None,
    amount: int = 1,
    now: datetime | None = None,
) -> int:
    """Add ``amount`` uses to the current period's counter. Returns the new count."""
    if amount <= 0:
        msg = "Usage amount must be positive"
        raise ValueError(msg)
    now = now or datetime.now(timezone.utc)
    start = period_start(period, now)

    stmt = (
        select(UsageCounter)
        .where(
            UsageCounter.account_id == account_id,
            UsageCounter.feature_key == feature_key,
            UsageCounter.period_start == start,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    counter = (await db.execute(stmt)).scalar_one_or_none()
    if counter is None:
        try:
            async with db.begin_nested():
                counter = UsageCounter(account_id=account_id, feature_key=feature_key, period_start=start, count=0)
                db.add(counter)
                await db.flush()
        except IntegrityError:
            # Another request opened this period's counter first.
            counter = (await db.execute(stmt)).scalar_one()
    counter.count += amount
    await db.flush()
    return counter.count
