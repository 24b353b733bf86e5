"""Account lifecycle: signup, lookup, deactivation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.db.models import Account
from ascend.errors import AccountInactive, AccountNotFound
from ascend.ledger import service as ledger

logger = logging.getLogger(__name__)


async def get_account(db: AsyncSession, account_id: int, *, for_update: bool = False) -> Account | None:
    """Load an account, always refreshing from the database.

    Ledger and subscription writes go through core UPDATE statements, so a
    cached identity-map copy may be stale.
    """
    stmt = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def require_account(db: AsyncSession, account_id: int, *, for_update: bool = False) -> Account:
    account = await get_account(db, account_id, for_update=for_update)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")
    if not account.is_active:
        raise AccountInactive(f"Account {account_id} is deactivated")
    return account


async def get_account_by_external_id(db: AsyncSession, external_user_id: str) -> Account | None:
    result = await db.execute(
        select(Account)
        .where(Account.external_user_id == external_user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_account(
    db: AsyncSession,
    external_user_id: str,
    signup_bonus: int = 0,
) -> tuple[Account, bool]:
    """Create the account for a new user. Returns (account, created).

    Safe to call repeatedly for the same user: the unique external id
    resolves concurrent signups, and the bonus is keyed per account.
    """
    existing = await get_account_by_external_id(db, external_user_id)
    if existing is not None:
        return existing, False

    now = datetime.now(timezone.utc)
    account = Account(external_user_id=external_user_id, created_at=now, updated_at=now)
    try:
        async with db.begin_nested():
            db.add(account)
            await db.flush()
    except IntegrityError:
        existing = await get_account_by_external_id(db, external_user_id)
        if existing is None:
            raise
        return existing, False

    if signup_bonus > 0:
        await ledger.award(
            db,
            account.id,
            signup_bonus,
            reason=ledger.REASON_SIGNUP_BONUS,
            idempotency_key=f"signup_bonus:{account.id}",
        )
    logger.info("Account %s created for user %s", account.id, external_user_id)
    return await require_account(db, account.id), True


async def deactivate_account(db: AsyncSession, account_id: int) -> Account:
    """Deactivate an account. Accounts are never deleted; their logs stay replayable."""
    account = await get_account(db, account_id, for_update=True)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(is_active=False, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    logger.info("Account %s deactivated", account_id)
    return await get_account(db, account_id)  # type: ignore[return-value]
