"""Activity pipeline: record the domain event, then react to the new totals.

Each step commits on its own. A crash between them leaves the activity
recorded and achievements unevaluated, which the next evaluation picks up.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ascend.progression.achievement_service import evaluate_achievements
from ascend.progression.streak_service import record_activity
from ascend.progression.xp_service import award_xp

logger = logging.getLogger(__name__)


async def process_activity(
    db: AsyncSession,
    redis: object,
    account_id: int,
    activity_type: str,
    occurred_at: datetime | None = None,
    event_key: str | None = None,
) -> dict:
    result = await record_activity(db, redis, account_id, activity_type, occurred_at, event_key)
    await db.commit()

    unlocked: list[str] = []
    if not result["duplicate"]:
        unlocked = await evaluate_achievements(
            db, redis, account_id, context={"activity_type": activity_type, "event_key": event_key}
        )
        await db.commit()
    return {**result, "achievements_unlocked": unlocked}


async def process_xp_award(
    db: AsyncSession,
    redis: object,
    account_id: int,
    amount: int,
    reason: str,
    source_id: str | None = None,
    idempotency_key: str | None = None,
) -> dict:
    result = await award_xp(db, redis, account_id, amount, reason, source_id, idempotency_key)
    await db.commit()
    unlocked: list[str] = []
    if result["leveled_up"]:
        unlocked = await evaluate_achievements(db, redis, account_id, context={"reason": reason})
        await db.commit()
    return {**result, "achievements_unlocked": unlocked}
