"""Pydantic models for account endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CreateAccountRequest(BaseModel):
    external_user_id: str = Field(min_length=1, max_length=128)


class AccountResponse(BaseModel):
    id: int
    external_user_id: str
    is_active: bool
    coin_balance: int
    tier: str
    subscription_status: str
    total_xp: int
    level: int
    level_title: str
    current_streak: int
    longest_streak: int
    created_at: datetime
    created: bool = False
