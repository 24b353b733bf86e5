"""XP grants with idempotency and level-up detection."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.db.models import Account, XpTransaction
from ascend.errors import AccountNotFound
from ascend.progression.level_thresholds import compute_level

logger = logging.getLogger(__name__)


async def get_xp_summary(db: AsyncSession, account_id: int) -> dict:
    result = await db.execute(select(Account.total_xp).where(Account.id == account_id))
    total_xp = result.scalar_one_or_none()
    if total_xp is None:
        raise AccountNotFound(f"Account {account_id} not found")
    return {"total_xp": total_xp, **compute_level(total_xp)}


async def award_xp(
    db: AsyncSession,
    redis: object,
    account_id: int,
    amount: int,
    reason: str,
    source_id: str | None = None,
    idempotency_key: str | None = None,
) -> dict:
    """Grant XP to an account.

    1. Append to xp_transactions (idempotent via idempotency_key)
    2. Bump accounts.total_xp atomically
    3. Recompute level from total_xp; level is never incremented on its own
    4. Emit level_up if the level changed

    Returns the XP summary plus ``granted`` (False for a duplicate key).
    """
    if amount <= 0:
        msg = "XP amount must be positive"
        raise ValueError(msg)

    if idempotency_key is not None and await _already_granted(db, idempotency_key):
        return {"granted": False, "leveled_up": False, **await get_xp_summary(db, account_id)}

    now = datetime.now(timezone.utc)
    try:
        async with db.begin_nested():
            row = (
                await db.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(total_xp=Account.total_xp + amount, updated_at=now)
                    .returning(Account.total_xp, Account.level)
                    .execution_options(synchronize_session=False)
                )
            ).one_or_none()
            if row is None:
                raise AccountNotFound(f"Account {account_id} not found")
            total_xp, old_level = row

            level_info = compute_level(total_xp)
            if level_info["level"] != old_level:
                await db.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(level=level_info["level"], level_title=level_info["title"])
                    .execution_options(synchronize_session=False)
                )

            db.add(XpTransaction(
                account_id=account_id,
                delta=amount,
                reason=reason,
                source_id=source_id,
                idempotency_key=idempotency_key,
                created_at=now,
            ))
            await db.flush()
    except IntegrityError:
        if idempotency_key is None or not await _already_granted(db, idempotency_key):
            raise
        return {"granted": False, "leveled_up": False, **await get_xp_summary(db, account_id)}

    leveled_up = level_info["level"] > old_level
    if leveled_up:
        await _emit_level_up(redis, account_id, old_level, level_info["level"], level_info["title"])

    return {"granted": True, "leveled_up": leveled_up, "total_xp": total_xp, **level_info}


async def recompute_level(db: AsyncSession, account_id: int) -> dict:
    """Rebuild total_xp and level from the XP log (projection repair)."""
    result = await db.execute(
        select(XpTransaction.delta).where(XpTransaction.account_id == account_id)
    )
    total_xp = sum(result.scalars().all())
    level_info = compute_level(total_xp)
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(total_xp=total_xp, level=level_info["level"], level_title=level_info["title"])
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return {"total_xp": total_xp, **level_info}


async def _already_granted(db: AsyncSession, idempotency_key: str) -> bool:
    result = await db.execute(
        select(XpTransaction.id).where(XpTransaction.idempotency_key == idempotency_key)
    )
    return result.first() is not None


async def _emit_level_up(redis: object, account_id: int, old_level: int, new_level: int, title: str) -> None:
    """Broadcast a level-up for notification fan-out."""
    logger.info("Account %s leveled up %s -> %s", account_id, old_level, new_level)
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:level_up",
            json.dumps({
                "account_id": account_id,
                "old_level": old_level,
                "new_level": new_level,
                "title": title,
            }),
        )
    except Exception:
        logger.warning("Failed to publish level_up broadcast", exc_info=True)
