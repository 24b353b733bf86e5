"""Achievement catalog seed data."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.db.models import Achievement

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Tasks
    {
        "slug": "first_task",
        "name": "First Step",
        "description": "Complete your very first task",
        "category": "tasks",
        "tier": "bronze",
        "criteria": {"type": "activity_count", "activity": "task_completed", "count": 1},
        "xp_reward": 10,
        "coin_reward": 0,
        "sort_order": 1,
    },
    {
        "slug": "tasks_10",
        "name": "Getting Things Done",
        "description": "Complete 10 tasks",
        "category": "tasks",
        "tier": "bronze",
        "criteria": {"type": "activity_count", "activity": "task_completed", "count": 10},
        "xp_reward": 50,
        "coin_reward": 50,
        "sort_order": 2,
    },
    {
        "slug": "tasks_100",
        "name": "Centurion",
        "description": "Complete 100 tasks",
        "category": "tasks",
        "tier": "silver",
        "criteria": {"type": "activity_count", "activity": "task_completed", "count": 100},
        "xp_reward": 200,
        "coin_reward": 200,
        "sort_order": 3,
    },
    {
        "slug": "goals_5",
        "name": "Goal Getter",
        "description": "Complete 5 goals",
        "category": "goals",
        "tier": "silver",
        "criteria": {"type": "activity_count", "activity": "goal_completed", "count": 5},
        "xp_reward": 150,
        "coin_reward": 100,
        "sort_order": 4,
    },
    {
        "slug": "habits_30",
        "name": "Creature of Habit",
        "description": "Check off 30 habits",
        "category": "habits",
        "tier": "bronze",
        "criteria": {"type": "activity_count", "activity": "habit_checked", "count": 30},
        "xp_reward": 75,
        "coin_reward": 25,
        "sort_order": 5,
    },
    {
        "slug": "coaching_10",
        "name": "Coachable",
        "description": "Finish 10 coaching sessions",
        "category": "coaching",
        "tier": "silver",
        "criteria": {"type": "activity_count", "activity": "coaching_session", "count": 10},
        "xp_reward": 100,
        "coin_reward": 50,
        "sort_order": 6,
    },
    # Streaks
    {
        "slug": "streak_7",
        "name": "Week Warrior",
        "description": "Stay active 7 days in a row",
        "category": "streaks",
        "tier": "bronze",
        "criteria": {"type": "streak", "days": 7},
        "xp_reward": 70,
        "coin_reward": 25,
        "sort_order": 10,
    },
    {
        "slug": "streak_30",
        "name": "Monthly Momentum",
        "description": "Stay active 30 days in a row",
        "category": "streaks",
        "tier": "gold",
        "criteria": {"type": "streak", "days": 30},
        "xp_reward": 300,
        "coin_reward": 150,
        "sort_order": 11,
    },
    {
        "slug": "streak_100",
        "name": "Unstoppable",
        "description": "Stay active 100 days in a row",
        "category": "streaks",
        "tier": "diamond",
        "criteria": {"type": "streak", "days": 100},
        "xp_reward": 1000,
        "coin_reward": 500,
        "sort_order": 12,
    },
    # Levels
    {
        "slug": "level_5",
        "name": "Rising Star",
        "description": "Reach level 5",
        "category": "levels",
        "tier": "silver",
        "criteria": {"type": "level", "level": 5},
        "xp_reward": 0,
        "coin_reward": 100,
        "sort_order": 20,
    },
    {
        "slug": "level_10",
        "name": "Legendary",
        "description": "Reach the top level",
        "category": "levels",
        "tier": "diamond",
        "criteria": {"type": "level", "level": 10},
        "xp_reward": 0,
        "coin_reward": 1000,
        "sort_order": 21,
    },
    # Monetization
    {
        "slug": "pro_member",
        "name": "Going Pro",
        "description": "Subscribe to a Pro plan or higher",
        "category": "membership",
        "tier": "silver",
        "criteria": {"type": "tier", "tier": "pro"},
        "xp_reward": 100,
        "coin_reward": 0,
        "sort_order": 30,
    },
    {
        "slug": "first_purchase",
        "name": "Coin Collector",
        "description": "Buy your first coin pack",
        "category": "membership",
        "tier": "bronze",
        "criteria": {"type": "coins_purchased", "coins": 1},
        "xp_reward": 50,
        "coin_reward": 0,
        "sort_order": 31,
    },
    {
        "slug": "big_spender",
        "name": "Big Spender",
        "description": "Spend 1,000 coins in the shop",
        "category": "membership",
        "tier": "gold",
        "criteria": {"type": "total_spent", "coins": 1000},
        "xp_reward": 150,
        "coin_reward": 0,
        "sort_order": 32,
    },
    # Meta
    {
        "slug": "collector_5",
        "name": "Trophy Case",
        "description": "Unlock 5 other achievements",
        "category": "meta",
        "tier": "gold",
        "criteria": {"type": "achievements", "count": 5},
        "xp_reward": 100,
        "coin_reward": 100,
        "sort_order": 40,
    },
]


def _insert_for(db: AsyncSession):  # noqa: ANN202
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert the achievement catalog. Returns number of achievements seeded."""
    insert = _insert_for(db)
    seeded = 0
    for achievement_data in ACHIEVEMENT_SEED_DATA:
        stmt = insert(Achievement).values(**achievement_data, is_active=True)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "tier": stmt.excluded.tier,
                "criteria": stmt.excluded.criteria,
                "xp_reward": stmt.excluded.xp_reward,
                "coin_reward": stmt.excluded.coin_reward,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
