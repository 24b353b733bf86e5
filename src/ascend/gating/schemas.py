"""Pydantic models for feature gate endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class GateDecisionResponse(BaseModel):
    allowed: bool
    feature_key: str
    current_tier: str
    required_tier: str | None = None
    reason: str | None = None
    limit: int | None = None
    used: int | None = None


class UsageRequest(BaseModel):
    account_id: int
    feature_key: str = Field(min_length=1, max_length=64)
    amount: int = Field(default=1, gt=0)


class UsageResponse(BaseModel):
    account_id: int
    feature_key: str
    used: int
