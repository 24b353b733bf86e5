"""Progression API: XP, levels, streaks and achievements."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import require_account
from ascend.auth.dependencies import get_current_account, require_internal_key
from ascend.database import get_session
from ascend.db.models import Account
from ascend.dependencies import get_redis_dep
from ascend.progression.achievement_service import get_achievements, get_catalog
from ascend.progression.level_thresholds import get_level_table
from ascend.progression.schemas import (
    AccountAchievementResponse,
    AccountAchievementsResponse,
    AchievementCatalogResponse,
    AchievementResponse,
    ActivityRequest,
    ActivityResponse,
    AllLevelsResponse,
    LevelEntry,
    StreakResponse,
    XpAwardRequest,
    XpAwardResponse,
    XpResponse,
)
from ascend.progression.service import process_activity, process_xp_award
from ascend.progression.streak_service import get_streak
from ascend.progression.xp_service import get_xp_summary, recompute_level

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Public endpoints ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels():
    """The level curve: XP needed per level and cumulative."""
    return AllLevelsResponse(levels=[LevelEntry(**row) for row in get_level_table()])


@router.get("/achievements", response_model=AchievementCatalogResponse)
async def list_achievements(db: AsyncSession = Depends(get_session)):
    catalog = await get_catalog(db)
    return AchievementCatalogResponse(
        achievements=[
            AchievementResponse(
                slug=a.slug,
                name=a.name,
                description=a.description,
                category=a.category,
                tier=a.tier,
                xp_reward=a.xp_reward,
                coin_reward=a.coin_reward,
            )
            for a in catalog
        ]
    )


# ── User endpoints ──


@router.get("/me/xp", response_model=XpResponse)
async def get_my_xp(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    return XpResponse(**await get_xp_summary(db, account.id))


@router.get("/me/streak", response_model=StreakResponse)
async def get_my_streak(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    return StreakResponse(**await get_streak(db, account.id))


@router.get("/me/achievements", response_model=AccountAchievementsResponse)
async def get_my_achievements(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    items = [AccountAchievementResponse(**row) for row in await get_achievements(db, account.id)]
    return AccountAchievementsResponse(
        achievements=items,
        total_available=len(items),
        total_unlocked=sum(1 for item in items if item.unlocked),
    )


# ── Internal endpoints ──


@router.post(
    "/internal/xp/award",
    response_model=XpAwardResponse,
    dependencies=[Depends(require_internal_key)],
)
async def award_xp_endpoint(
    body: XpAwardRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    await require_account(db, body.account_id)
    result = await process_xp_award(
        db, redis, body.account_id, body.amount, body.reason, body.source_id, body.idempotency_key
    )
    return XpAwardResponse(**result)


@router.post(
    "/internal/activity",
    response_model=ActivityResponse,
    dependencies=[Depends(require_internal_key)],
)
async def record_activity_endpoint(
    body: ActivityRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Report a domain event (task completed, daily login...). Redelivery with the same event_key is a no-op."""
    result = await process_activity(
        db, redis, body.account_id, body.activity_type, body.occurred_at, body.event_key
    )
    return ActivityResponse(**result)


@router.post(
    "/internal/xp/{account_id}/recompute",
    response_model=XpResponse,
    dependencies=[Depends(require_internal_key)],
)
async def recompute_xp_endpoint(account_id: int, db: AsyncSession = Depends(get_session)):
    """Rebuild total XP and level from the XP log."""
    await require_account(db, account_id)
    result = await recompute_level(db, account_id)
    await db.commit()
    return XpResponse(**result)
