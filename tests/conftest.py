"""Shared test fixtures."""

from __future__ import annotations

import json
import time
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import create_account
from ascend.auth.jwt import create_access_token
from ascend.config import get_settings
from ascend.database import close_db, get_engine, get_session_factory, init_db
from ascend.db.base import Base
from ascend.db.models import Account
from ascend.main import create_app
from ascend.payments.verifiers import paddle_signature_verifier, stripe_signature_verifier
from ascend.progression.level_thresholds import get_level_table
from ascend.progression.seed import seed_achievements

STRIPE_SECRET = "whsec_test_secret"
PADDLE_SECRET = "pdl_ntfset_test_secret"
INTERNAL_KEY = "internal-test-key"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Point every test at its own SQLite file; no Redis; live HMAC verification."""
    monkeypatch.setenv("ASCEND_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'ascend_test.db'}")
    monkeypatch.setenv("ASCEND_REDIS_URL", "")
    monkeypatch.setenv("ASCEND_ENVIRONMENT", "test")
    monkeypatch.setenv("ASCEND_LOG_FORMAT", "console")
    monkeypatch.setenv("ASCEND_PAYMENT_VERIFICATION_MODE", "live")
    monkeypatch.setenv("ASCEND_STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    monkeypatch.setenv("ASCEND_PADDLE_WEBHOOK_SECRET", PADDLE_SECRET)
    monkeypatch.setenv("ASCEND_APPLE_API_KEY", "")
    monkeypatch.setenv("ASCEND_INTERNAL_API_KEY", INTERNAL_KEY)
    monkeypatch.setenv("ASCEND_SIGNUP_BONUS_COINS", "0")
    get_settings.cache_clear()
    get_level_table.cache_clear()
    yield
    get_settings.cache_clear()
    get_level_table.cache_clear()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[None, None]:
    """Initialize the engine and create the schema from ORM metadata."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    """A session on the test database."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(engine):
    """For tests that need several independent sessions (concurrency)."""
    return get_session_factory()


@pytest_asyncio.fixture
async def seeded_db(db: AsyncSession) -> AsyncSession:
    await seed_achievements(db)
    return db


async def _make_account(db: AsyncSession, external_user_id: str) -> Account:
    acct, _ = await create_account(db, external_user_id)
    await db.commit()
    # Detached snapshot: a rollback in the test must not expire it.
    db.expunge(acct)
    return acct


@pytest_asyncio.fixture
async def account(db: AsyncSession) -> Account:
    return await _make_account(db, "user-1")


@pytest_asyncio.fixture
async def other_account(db: AsyncSession) -> Account:
    return await _make_account(db, "user-2")


@pytest_asyncio.fixture
async def client(engine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; the engine fixture stands in for the lifespan."""
    app = create_app()
    async with get_session_factory()() as session:
        await seed_achievements(session)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await app.state.http_client.aclose()


@pytest.fixture
def auth_headers() -> Callable[[int], dict[str, str]]:
    def _headers(account_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(account_id)}"}

    return _headers


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Key": INTERNAL_KEY}


@pytest.fixture
def sign_stripe() -> Callable[[dict[str, Any]], tuple[bytes, dict[str, str]]]:
    """Serialize a card processor event and sign it the way the provider does."""
    verifier = stripe_signature_verifier(STRIPE_SECRET)

    def _sign(payload: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(payload).encode()
        ts = int(time.time())
        return body, {"Stripe-Signature": f"t={ts},v1={verifier.sign(body, ts)}", "Content-Type": "application/json"}

    return _sign


@pytest.fixture
def sign_paddle() -> Callable[[dict[str, Any]], tuple[bytes, dict[str, str]]]:
    verifier = paddle_signature_verifier(PADDLE_SECRET)

    def _sign(payload: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(payload).encode()
        ts = int(time.time())
        return body, {"Paddle-Signature": f"ts={ts};h1={verifier.sign(body, ts)}", "Content-Type": "application/json"}

    return _sign
