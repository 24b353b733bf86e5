"""Achievement criteria evaluation and unlocks.

An unlock and its rewards are one savepoint: the unique
(account_id, achievement_id) row, the XP grant and the coin award either all
land or none do. Rewards go through the ledger and XP paths with
deterministic idempotency keys, so evaluation can be re-run at any time.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import require_account
from ascend.db.models import Account, Achievement, UnlockedAchievement
from ascend.gating.features import tier_rank
from ascend.ledger import service as ledger
from ascend.progression.streak_service import get_activity_counts
from ascend.progression.xp_service import award_xp

logger = logging.getLogger(__name__)

# Unlock rewards can satisfy further criteria (XP -> level); bounded re-evaluation.
MAX_PASSES = 5


def criteria_met(criteria: dict[str, Any], account: Account, counts: dict[str, int], unlocked: int) -> bool:
    """Check one achievement's criteria against current account state."""
    kind = criteria.get("type")
    if kind == "activity_count":
        return counts.get(criteria["activity"], 0) >= criteria["count"]
    if kind == "streak":
        return account.longest_streak >= criteria["days"]
    if kind == "level":
        return account.level >= criteria["level"]
    if kind == "tier":
        return account.tier != "free" and tier_rank(account.tier) >= tier_rank(criteria["tier"])
    if kind == "total_spent":
        return account.total_coins_spent >= criteria["coins"]
    if kind == "coins_purchased":
        return account.total_coins_purchased >= criteria["coins"]
    if kind == "achievements":
        return unlocked >= criteria["count"]
    logger.warning("Unknown achievement criteria type: %s", kind)
    return False


async def get_catalog(db: AsyncSession) -> list[Achievement]:
    result = await db.execute(
        select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.sort_order, Achievement.id)
    )
    return list(result.scalars().all())


async def _unlocked_ids(db: AsyncSession, account_id: int) -> set[int]:
    result = await db.execute(
        select(UnlockedAchievement.achievement_id).where(UnlockedAchievement.account_id == account_id)
    )
    return set(result.scalars().all())


async def unlock_achievement(
    db: AsyncSession,
    redis: object,
    account_id: int,
    achievement: Achievement,
    context: dict[str, Any] | None = None,
) -> bool:
    """Insert the unlock and pay its rewards. Returns False if already unlocked."""
    key = f"achievement:{achievement.slug}:{account_id}"
    try:
        async with db.begin_nested():
            db.add(UnlockedAchievement(
                account_id=account_id,
                achievement_id=achievement.id,
                context=context or {},
                unlocked_at=datetime.now(timezone.utc),
            ))
            await db.flush()
            if achievement.xp_reward > 0:
                await award_xp(
                    db, redis, account_id, achievement.xp_reward,
                    reason="achievement", source_id=achievement.slug, idempotency_key=key,
                )
            if achievement.coin_reward > 0:
                await ledger.award(
                    db, account_id, achievement.coin_reward,
                    reason=ledger.REASON_ACHIEVEMENT, source_id=achievement.slug, idempotency_key=key,
                )
    except IntegrityError:
        # Concurrent evaluation unlocked it first.
        if achievement.id in await _unlocked_ids(db, account_id):
            return False
        raise

    logger.info("Account %s unlocked achievement %s", account_id, achievement.slug)
    await _emit_unlocked(redis, account_id, achievement)
    return True


async def evaluate_achievements(
    db: AsyncSession,
    redis: object,
    account_id: int,
    context: dict[str, Any] | None = None,
) -> list[str]:
    """Unlock every newly satisfied achievement. Returns the slugs unlocked now."""
    catalog = await get_catalog(db)
    newly_unlocked: list[str] = []

    for _ in range(MAX_PASSES):
        account = await require_account(db, account_id)
        counts = await get_activity_counts(db, account_id)
        unlocked = await _unlocked_ids(db, account_id)

        unlocked_this_pass = []
        for achievement in catalog:
            if achievement.id in unlocked:
                continue
            if not criteria_met(achievement.criteria, account, counts, len(unlocked)):
                continue
            if await unlock_achievement(db, redis, account_id, achievement, context):
                unlocked_this_pass.append(achievement.slug)

        if not unlocked_this_pass:
            break
        newly_unlocked.extend(unlocked_this_pass)

    return newly_unlocked


async def get_achievements(db: AsyncSession, account_id: int) -> list[dict]:
    """Full catalog with the account's unlock state."""
    catalog = await get_catalog(db)
    result = await db.execute(
        select(UnlockedAchievement).where(UnlockedAchievement.account_id == account_id)
    )
    unlocked = {row.achievement_id: row for row in result.scalars().all()}
    return [
        {
            "slug": a.slug,
            "name": a.name,
            "description": a.description,
            "category": a.category,
            "tier": a.tier,
            "xp_reward": a.xp_reward,
            "coin_reward": a.coin_reward,
            "unlocked": a.id in unlocked,
            "unlocked_at": unlocked[a.id].unlocked_at if a.id in unlocked else None,
        }
        for a in catalog
    ]


async def _emit_unlocked(redis: object, account_id: int, achievement: Achievement) -> None:
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:achievement_unlocked",
            json.dumps({"account_id": account_id, "slug": achievement.slug, "name": achievement.name}),
        )
    except Exception:
        logger.warning("Failed to publish achievement_unlocked broadcast", exc_info=True)
