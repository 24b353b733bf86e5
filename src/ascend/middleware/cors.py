"""Browser access to the user-facing routes.

Only ``/api/v1/me`` style calls come from browsers; provider webhooks and
internal routes are server-to-server and never need a preflight.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ascend.config import Settings
from ascend.middleware.request_id import REQUEST_ID_HEADER


def setup_cors(app: FastAPI, settings: Settings) -> None:
    if not settings.cors_origins:
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        # Clients read these to back off before hitting 429.
        expose_headers=[REQUEST_ID_HEADER, "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
