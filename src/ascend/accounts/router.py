"""Internal account lifecycle endpoints, called by the identity service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.schemas import AccountResponse, CreateAccountRequest
from ascend.accounts.service import create_account, deactivate_account
from ascend.auth.dependencies import require_internal_key
from ascend.config import get_settings
from ascend.database import get_session
from ascend.db.models import Account

router = APIRouter(
    prefix="/api/v1/internal/accounts",
    tags=["Accounts"],
    dependencies=[Depends(require_internal_key)],
)


def _to_response(account: Account, created: bool = False) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        external_user_id=account.external_user_id,
        is_active=account.is_active,
        coin_balance=account.coin_balance,
        tier=account.tier,
        subscription_status=account.subscription_status,
        total_xp=account.total_xp,
        level=account.level,
        level_title=account.level_title,
        current_streak=account.current_streak,
        longest_streak=account.longest_streak,
        created_at=account.created_at,
        created=created,
    )


@router.post("", response_model=AccountResponse)
async def create_account_endpoint(
    body: CreateAccountRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
):
    """Create the account for a new user. Repeating the call returns the existing account."""
    account, created = await create_account(db, body.external_user_id, get_settings().signup_bonus_coins)
    await db.commit()
    response.status_code = 201 if created else 200
    return _to_response(account, created)


@router.post("/{account_id}/deactivate", response_model=AccountResponse)
async def deactivate_account_endpoint(account_id: int, db: AsyncSession = Depends(get_session)):
    account = await deactivate_account(db, account_id)
    await db.commit()
    return _to_response(account)
