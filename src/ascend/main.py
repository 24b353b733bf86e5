"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from ascend.accounts.router import router as accounts_router
from ascend.config import Settings, get_settings
from ascend.database import close_db, get_session_factory, init_db
from ascend.gating.router import router as gating_router
from ascend.health.router import router as health_router
from ascend.ledger.router import router as ledger_router
from ascend.middleware import setup_middleware
from ascend.payments.catalog import DEFAULT_PRODUCTS, ProductCatalog
from ascend.payments.reconciler import PaymentReconciler
from ascend.payments.registry import PaymentsConfig, build_adapters
from ascend.payments.router import router as payments_router
from ascend.progression.router import router as progression_router
from ascend.progression.seed import seed_achievements
from ascend.redis_client import close_redis, init_redis
from ascend.subscriptions.router import router as subscriptions_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed the achievement catalog (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_achievements(db)
    except SQLAlchemyError:
        logger.warning("Achievement seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await app.state.http_client.aclose()
    await close_db()
    await close_redis()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Ascend Core API",
        description="Payments, coin ledger, subscriptions, progression and feature gates",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Payment verification is configured once, here; a bad mode fails startup.
    catalog = ProductCatalog(DEFAULT_PRODUCTS)
    http_client = httpx.AsyncClient(timeout=settings.apple_verify_timeout_seconds)
    adapters = build_adapters(PaymentsConfig.from_settings(settings), catalog, http_client=http_client)
    app.state.settings = settings
    app.state.http_client = http_client
    app.state.reconciler = PaymentReconciler(adapters, catalog)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(payments_router)
    app.include_router(ledger_router)
    app.include_router(subscriptions_router)
    app.include_router(progression_router)
    app.include_router(gating_router)
    app.include_router(accounts_router)

    return app


app = create_app()
