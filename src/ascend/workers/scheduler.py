"""Scheduled jobs for time-driven transitions.

- daily streak sweep (resets streaks of accounts inactive past the window)
- hourly subscription sweeps (period end, past-due grace expiry)
- nightly ledger audit (freezes accounts whose balance disagrees with the log)

Every job is a set of conditional updates, so overlapping runs or a job
racing live traffic never double-apply.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from sqlalchemy import select

from ascend.config import get_settings
from ascend.database import close_db, get_session_factory, init_db
from ascend.db.models import Account
from ascend.ledger.service import verify_account_ledger
from ascend.progression.streak_service import sweep_streaks
from ascend.subscriptions.service import (
    expire_elapsed_periods,
    expire_grace_periods,
    publish_subscription_changed,
)

logger = logging.getLogger(__name__)

AUDIT_BATCH_SIZE = 500


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB and Redis connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    # arq keeps its own pool in ctx["redis"]; broadcasts get a separate client.
    ctx["publisher"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Scheduler worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("publisher")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Scheduler worker shut down")


async def run_streak_sweep(ctx: dict) -> int:  # type: ignore[type-arg]
    async with get_session_factory()() as db:
        return await sweep_streaks(db)


async def run_subscription_sweeps(ctx: dict) -> int:  # type: ignore[type-arg]
    """cancelling past period end -> cancelled; past_due beyond grace -> cancelled."""
    settings = get_settings()
    async with get_session_factory()() as db:
        changes = await expire_elapsed_periods(db)
        changes += await expire_grace_periods(db, settings.past_due_grace_days)
    for change in changes:
        await publish_subscription_changed(ctx.get("publisher"), change)
    return len(changes)


async def run_ledger_audit(ctx: dict) -> int:  # type: ignore[type-arg]
    """Verify every account's ledger. Returns the number of accounts frozen."""
    frozen = 0
    last_id = 0
    async with get_session_factory()() as db:
        while True:
            result = await db.execute(
                select(Account.id)
                .where(Account.id > last_id, Account.ledger_frozen.is_(False))
                .order_by(Account.id)
                .limit(AUDIT_BATCH_SIZE)
            )
            account_ids = list(result.scalars().all())
            if not account_ids:
                break
            for account_id in account_ids:
                report = await verify_account_ledger(db, account_id)
                if not report["consistent"]:
                    frozen += 1
            await db.commit()
            last_id = account_ids[-1]
    if frozen:
        logger.error("Ledger audit froze %d accounts", frozen)
    else:
        logger.info("Ledger audit found no mismatches")
    return frozen
