"""FastAPI authentication dependencies."""

from __future__ import annotations

import hmac

import jwt
from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import get_account
from ascend.auth.jwt import verify_token
from ascend.config import get_settings
from ascend.database import get_session
from ascend.db.models import Account

_bearer = HTTPBearer()


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Account:
    """
    Extract and verify the bearer JWT, return the Account it names.

    Raises 401/403 on failure.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
        account_id = int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        raise HTTPException(status_code=401, detail=str(e) or "Invalid token") from e

    account = await get_account(db, account_id)
    if account is None:
        raise HTTPException(status_code=401, detail="Account not found")
    if not account.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return account


async def require_internal_key(x_internal_key: str | None = Header(default=None)) -> None:
    """Guard for service-to-service routes called by the rest of the platform."""
    expected = get_settings().internal_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Internal API is not configured")
    if x_internal_key is None or not hmac.compare_digest(x_internal_key, expected):
        raise HTTPException(status_code=401, detail="Invalid internal API key")
