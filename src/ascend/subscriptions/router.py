"""Subscription status for the signed-in account."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.auth.dependencies import get_current_account
from ascend.database import get_session
from ascend.db.models import Account
from ascend.subscriptions.schemas import SubscriptionResponse
from ascend.subscriptions.service import get_subscription

router = APIRouter(prefix="/api/v1", tags=["Subscriptions"])


@router.get("/me/subscription", response_model=SubscriptionResponse)
async def get_my_subscription(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    return SubscriptionResponse(**await get_subscription(db, account.id))
