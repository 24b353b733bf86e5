"""Feature gate API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import require_account
from ascend.auth.dependencies import get_current_account, require_internal_key
from ascend.database import get_session
from ascend.db.models import Account
from ascend.gating.features import FEATURES
from ascend.gating.schemas import GateDecisionResponse, UsageRequest, UsageResponse
from ascend.gating.service import can_use
from ascend.gating.usage import record_usage

router = APIRouter(prefix="/api/v1", tags=["Features"])


@router.get("/me/features/{feature_key}", response_model=GateDecisionResponse)
async def check_feature(
    feature_key: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    decision = await can_use(db, account.id, feature_key)
    return GateDecisionResponse(**decision.to_dict())


@router.post(
    "/internal/usage",
    response_model=UsageResponse,
    dependencies=[Depends(require_internal_key)],
)
async def record_feature_usage(body: UsageRequest, db: AsyncSession = Depends(get_session)):
    """Count one (or ``amount``) uses of a count-limited feature."""
    feature = FEATURES.get(body.feature_key)
    if feature is None or "limits" not in feature:
        raise HTTPException(status_code=404, detail=f"{body.feature_key} is not a count-limited feature")
    await require_account(db, body.account_id)
    used = await record_usage(db, body.account_id, body.feature_key, feature.get("period"), body.amount)
    await db.commit()
    return UsageResponse(account_id=body.account_id, feature_key=body.feature_key, used=used)
