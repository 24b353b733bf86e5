"""Pydantic models for subscription endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SubscriptionResponse(BaseModel):
    tier: str
    status: str
    current_period_end: datetime | None = None
    provider: str | None = None
    billing_cycle: str | None = None
