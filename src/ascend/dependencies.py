"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Request

from ascend.database import get_session as _get_session
from ascend.payments.reconciler import PaymentReconciler
from ascend.redis_client import get_optional_redis

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None when Redis is not configured)."""
    yield get_optional_redis()


def get_reconciler(request: Request) -> PaymentReconciler:
    """Return the reconciler built at startup from the payments configuration."""
    return request.app.state.reconciler
