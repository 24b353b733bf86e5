"""Coin ledger: append-only log plus the materialized account balance.

Every mutation is one compare-and-swap UPDATE on the account row plus the
ledger insert, inside a single savepoint. The UPDATE takes the account row
lock, which serializes concurrent writers for the same account; the
``coin_balance >= amount`` predicate makes an overdraft impossible rather
than clamped. Functions flush; committing is the caller's job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.db.models import Account, CoinTransaction
from ascend.errors import (
    AccountFrozen,
    AccountInactive,
    AccountNotFound,
    InsufficientFunds,
    LedgerInvariantViolation,
)

logger = logging.getLogger(__name__)

REASON_SIGNUP_BONUS = "signup_bonus"
REASON_PURCHASE = "purchase"
REASON_REFUND = "refund_clawback"
REASON_ACHIEVEMENT = "achievement_reward"
REASON_RECONCILIATION = "reconciliation"


async def get_balance(db: AsyncSession, account_id: int) -> int:
    """Current committed balance for an account."""
    result = await db.execute(select(Account.coin_balance).where(Account.id == account_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFound(f"Account {account_id} not found")
    return balance


async def award(
    db: AsyncSession,
    account_id: int,
    amount: int,
    reason: str,
    source_id: str | None = None,
    idempotency_key: str | None = None,
) -> int:
    """Credit coins. Returns the new balance."""
    if amount <= 0:
        msg = "Award amount must be positive"
        raise ValueError(msg)
    return await _apply(db, account_id, amount, reason, source_id, idempotency_key)


async def spend(
    db: AsyncSession,
    account_id: int,
    amount: int,
    reason: str,
    source_id: str | None = None,
    idempotency_key: str | None = None,
) -> int:
    """Debit coins. Returns the new balance or raises InsufficientFunds."""
    if amount <= 0:
        msg = "Spend amount must be positive"
        raise ValueError(msg)
    return await _apply(db, account_id, -amount, reason, source_id, idempotency_key)


async def clawback(
    db: AsyncSession,
    account_id: int,
    amount: int,
    reason: str = REASON_REFUND,
    source_id: str | None = None,
    idempotency_key: str | None = None,
) -> dict:
    """Debit up to ``amount`` for a refunded purchase without going negative.

    Coins already spent cannot be recovered; the uncollected remainder is
    reported as ``shortfall`` for support follow-up.
    """
    if amount <= 0:
        msg = "Clawback amount must be positive"
        raise ValueError(msg)

    account = await _lock_writable(db, account_id)
    debit = min(amount, account.coin_balance)
    new_balance = account.coin_balance
    if debit > 0:
        new_balance = await _apply(db, account_id, -debit, reason, source_id, idempotency_key)
    shortfall = amount - debit
    if shortfall:
        logger.warning(
            "Clawback shortfall on account %s: requested %s, recovered %s", account_id, amount, debit
        )
    return {"debited": debit, "shortfall": shortfall, "balance": new_balance}


async def get_history(
    db: AsyncSession,
    account_id: int,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CoinTransaction], int]:
    """Ledger entries newest first, with the total entry count."""
    total = (
        await db.execute(
            select(func.count()).select_from(CoinTransaction).where(CoinTransaction.account_id == account_id)
        )
    ).scalar_one()
    result = await db.execute(
        select(CoinTransaction)
        .where(CoinTransaction.account_id == account_id)
        .order_by(CoinTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def _apply(
    db: AsyncSession,
    account_id: int,
    delta: int,
    reason: str,
    source_id: str | None,
    idempotency_key: str | None,
) -> int:
    if idempotency_key is not None and await _already_applied(db, idempotency_key):
        logger.info("Ledger entry %s already applied", idempotency_key)
        return await get_balance(db, account_id)

    now = datetime.now(timezone.utc)
    values: dict = {"coin_balance": Account.coin_balance + delta, "updated_at": now}
    if delta < 0 and reason != REASON_REFUND:
        values["total_coins_spent"] = Account.total_coins_spent - delta
    if reason == REASON_PURCHASE:
        values["total_coins_purchased"] = Account.total_coins_purchased + delta

    stmt = (
        update(Account)
        .where(
            Account.id == account_id,
            Account.is_active.is_(True),
            Account.ledger_frozen.is_(False),
        )
        .values(**values)
        .returning(Account.coin_balance)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(Account.coin_balance >= -delta)

    try:
        async with db.begin_nested():
            new_balance = (await db.execute(stmt)).scalar_one_or_none()
            if new_balance is None:
                await _raise_rejection(db, account_id, -delta)

            previous = await _last_balance_after(db, account_id)
            if previous != new_balance - delta:
                logger.critical(
                    "Ledger invariant violated for account %s: last entry %s, balance before write %s",
                    account_id, previous, new_balance - delta,
                )
                raise LedgerInvariantViolation(
                    f"Account {account_id} balance disagrees with its ledger; manual reconciliation required"
                )

            db.add(CoinTransaction(
                account_id=account_id,
                delta=delta,
                reason=reason,
                source_id=source_id,
                balance_after=new_balance,
                idempotency_key=idempotency_key,
                created_at=now,
            ))
            await db.flush()
    except IntegrityError:
        # Concurrent writer committed the same idempotency key first.
        if idempotency_key is None or not await _already_applied(db, idempotency_key):
            raise
        return await get_balance(db, account_id)

    return new_balance


async def _already_applied(db: AsyncSession, idempotency_key: str) -> bool:
    result = await db.execute(
        select(CoinTransaction.id).where(CoinTransaction.idempotency_key == idempotency_key)
    )
    return result.first() is not None


async def _last_balance_after(db: AsyncSession, account_id: int) -> int:
    result = await db.execute(
        select(CoinTransaction.balance_after)
        .where(CoinTransaction.account_id == account_id)
        .order_by(CoinTransaction.id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    return last if last is not None else 0


async def _lock_writable(db: AsyncSession, account_id: int) -> Account:
    result = await db.execute(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")
    if not account.is_active:
        raise AccountInactive(f"Account {account_id} is deactivated")
    if account.ledger_frozen:
        raise AccountFrozen(f"Account {account_id} is frozen pending reconciliation")
    return account


async def _raise_rejection(db: AsyncSession, account_id: int, requested: int) -> None:
    """Explain why the compare-and-swap matched no row."""
    account = await _lock_writable(db, account_id)
    raise InsufficientFunds(balance=account.coin_balance, requested=requested)


# ---------------------------------------------------------------------------
# Consistency checks and manual reconciliation
# ---------------------------------------------------------------------------


async def _ledger_summary(db: AsyncSession, account_id: int) -> tuple[int, int, int | None]:
    row = (
        await db.execute(
            select(func.coalesce(func.sum(CoinTransaction.delta), 0), func.count())
            .select_from(CoinTransaction)
            .where(CoinTransaction.account_id == account_id)
        )
    ).one()
    ledger_sum, entries = int(row[0]), int(row[1])
    last = None
    if entries:
        last = await _last_balance_after(db, account_id)
    return ledger_sum, entries, last


async def verify_account_ledger(db: AsyncSession, account_id: int) -> dict:
    """Check balance == sum(deltas) == last balance_after.

    A mismatch freezes the account: it is never auto-corrected here.
    """
    balance = await get_balance(db, account_id)
    ledger_sum, entries, last = await _ledger_summary(db, account_id)
    consistent = ledger_sum == balance and (last is None or last == balance)

    report = {
        "account_id": account_id,
        "balance": balance,
        "ledger_sum": ledger_sum,
        "last_balance_after": last,
        "entries": entries,
        "consistent": consistent,
        "frozen": False,
    }
    if not consistent:
        logger.critical(
            "Ledger mismatch on account %s: balance=%s sum=%s last=%s", account_id, balance, ledger_sum, last
        )
        await db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(ledger_frozen=True, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await db.flush()
        report["frozen"] = True
    else:
        frozen = (await db.execute(select(Account.ledger_frozen).where(Account.id == account_id))).scalar_one()
        report["frozen"] = frozen
    return report


async def reconcile_account(db: AsyncSession, account_id: int, operator: str) -> dict:
    """Operator-initiated rebuild of the balance projection from the log, then unfreeze."""
    result = await db.execute(
        select(Account).where(Account.id == account_id).with_for_update().execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")

    ledger_sum, _entries, last = await _ledger_summary(db, account_id)
    if ledger_sum < 0:
        raise LedgerInvariantViolation(f"Ledger for account {account_id} sums to {ledger_sum}; cannot reconcile")

    previous_balance = account.coin_balance
    now = datetime.now(timezone.utc)
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(coin_balance=ledger_sum, ledger_frozen=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if last is not None and last != ledger_sum:
        # Re-anchor the balance_after chain so the next write's check holds.
        db.add(CoinTransaction(
            account_id=account_id,
            delta=0,
            reason=REASON_RECONCILIATION,
            source_id=operator,
            balance_after=ledger_sum,
            created_at=now,
        ))
    await db.flush()
    logger.warning(
        "Account %s reconciled by %s: balance %s -> %s", account_id, operator, previous_balance, ledger_sum
    )
    return {"account_id": account_id, "previous_balance": previous_balance, "balance": ledger_sum}
