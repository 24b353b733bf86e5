"""HTTP middleware stack for the Ascend API."""

from fastapi import FastAPI

from ascend.config import Settings
from ascend.middleware.cors import setup_cors
from ascend.middleware.error_handler import setup_error_handlers
from ascend.middleware.logging import setup_logging
from ascend.middleware.rate_limit import RateLimitMiddleware
from ascend.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Wire logging, error envelopes and the middleware chain.

    Outermost to innermost: CORS, request id, rate limit, routes. The rate
    limiter's 429s therefore carry both CORS headers and a request id.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    # add_middleware prepends, so registration runs innermost first.
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
