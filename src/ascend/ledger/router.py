"""Coin ledger API: user balance/history/spend, internal award and audit."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import require_account
from ascend.auth.dependencies import get_current_account, require_internal_key
from ascend.database import get_session
from ascend.db.models import Account
from ascend.dependencies import get_redis_dep
from ascend.errors import AscendError
from ascend.ledger import service as ledger
from ascend.ledger.schemas import (
    AwardRequest,
    BalanceResponse,
    CoinHistoryResponse,
    CoinTransactionEntry,
    CoinWriteResponse,
    LedgerAuditResponse,
    ReconcileRequest,
    ReconcileResponse,
    SpendRequest,
)
from ascend.progression.achievement_service import evaluate_achievements

router = APIRouter(prefix="/api/v1", tags=["Coins"])


def _balance(account: Account) -> BalanceResponse:
    return BalanceResponse(
        account_id=account.id,
        balance=account.coin_balance,
        total_coins_spent=account.total_coins_spent,
        total_coins_purchased=account.total_coins_purchased,
        frozen=account.ledger_frozen,
    )


# ── User endpoints ──


@router.get("/me/balance", response_model=BalanceResponse)
async def get_my_balance(account: Account = Depends(get_current_account)):
    return _balance(account)


@router.get("/me/coins/history", response_model=CoinHistoryResponse)
async def get_my_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Ledger entries, newest first."""
    rows, total = await ledger.get_history(db, account.id, limit=limit, offset=offset)
    return CoinHistoryResponse(
        entries=[
            CoinTransactionEntry(
                id=row.id,
                delta=row.delta,
                reason=row.reason,
                source_id=row.source_id,
                balance_after=row.balance_after,
                created_at=row.created_at,
            )
            for row in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/me/coins/spend", response_model=CoinWriteResponse)
async def spend_coins(
    body: SpendRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Spend coins in the shop. 409 if the balance does not cover it; nothing is debited."""
    key = f"spend:{account.id}:{body.idempotency_key}" if body.idempotency_key else None
    try:
        balance = await ledger.spend(
            db, account.id, body.amount, reason=body.reason, source_id=body.source_id, idempotency_key=key
        )
        await db.commit()
    except AscendError:
        await db.rollback()
        raise

    unlocked = await evaluate_achievements(db, redis, account.id, context={"spend": body.reason})
    await db.commit()
    return CoinWriteResponse(account_id=account.id, balance=balance, achievements_unlocked=unlocked)


# ── Internal endpoints ──


@router.post(
    "/internal/coins/award",
    response_model=CoinWriteResponse,
    dependencies=[Depends(require_internal_key)],
)
async def award_coins(
    body: AwardRequest,
    db: AsyncSession = Depends(get_session),
):
    """Credit coins on behalf of another platform service (promotions, support grants)."""
    await require_account(db, body.account_id)
    try:
        balance = await ledger.award(
            db,
            body.account_id,
            body.amount,
            reason=body.reason,
            source_id=body.source_id,
            idempotency_key=body.idempotency_key,
        )
        await db.commit()
    except AscendError:
        await db.rollback()
        raise
    return CoinWriteResponse(account_id=body.account_id, balance=balance)


@router.post(
    "/internal/ledger/{account_id}/verify",
    response_model=LedgerAuditResponse,
    dependencies=[Depends(require_internal_key)],
)
async def verify_ledger(account_id: int, db: AsyncSession = Depends(get_session)):
    """Consistency check. A mismatch freezes the account's coin writes."""
    report = await ledger.verify_account_ledger(db, account_id)
    await db.commit()
    return LedgerAuditResponse(**report)


@router.post(
    "/internal/ledger/{account_id}/reconcile",
    response_model=ReconcileResponse,
    dependencies=[Depends(require_internal_key)],
)
async def reconcile_ledger(
    account_id: int,
    body: ReconcileRequest,
    db: AsyncSession = Depends(get_session),
):
    """Operator-initiated rebuild of the balance from the ledger; unfreezes the account."""
    result = await ledger.reconcile_account(db, account_id, body.operator)
    await db.commit()
    return ReconcileResponse(**result)
