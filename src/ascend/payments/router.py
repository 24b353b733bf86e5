"""Payment ingestion: provider webhooks and client-submitted store purchases."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.auth.dependencies import get_current_account
from ascend.database import get_session
from ascend.db.models import Account
from ascend.dependencies import get_reconciler, get_redis_dep
from ascend.errors import UnsupportedEvent
from ascend.payments.events import Provider
from ascend.payments.reconciler import PaymentReconciler
from ascend.payments.schemas import ApplePurchaseRequest, PurchaseResponse, WebhookAck

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["Payments"])


@router.post("/webhooks/{provider}", response_model=WebhookAck)
async def receive_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Provider notification endpoint.

    200 means "stop retrying": applied, duplicate, rejected transition and
    deliberately ignored types all acknowledge. Errors map to the status the
    provider's retry policy expects (4xx give up, 5xx retry).
    """
    if provider not in {p.value for p in Provider}:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    if reconciler.adapter_for(provider) is None:
        raise HTTPException(status_code=503, detail=f"{provider} webhooks are not configured")

    raw_body = await request.body()
    try:
        result = await reconciler.handle(db, redis, provider, raw_body, request.headers)
    except UnsupportedEvent as e:
        logger.info("webhook_ignored", provider=provider, reason=e.detail)
        return WebhookAck(status="ignored")
    return WebhookAck(duplicate=result.duplicate, status=result.status)


@router.post("/payments/apple/verify", response_model=PurchaseResponse)
async def verify_apple_purchase(
    body: ApplePurchaseRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Apply an in-app purchase reported by the mobile app after server-side verification."""
    try:
        result = await reconciler.verify_client_purchase(
            db, redis, account.id, body.transaction_id, body.transaction_info
        )
    except UnsupportedEvent as e:
        logger.info("client_purchase_ignored", account_id=account.id, reason=e.detail)
        return PurchaseResponse(status="ignored", duplicate=False)
    return PurchaseResponse(status=result.status, duplicate=result.duplicate, outcome=result.outcome)
