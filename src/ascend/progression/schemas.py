"""Pydantic models for progression endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# --- XP / levels ---


class XpResponse(BaseModel):
    total_xp: int
    level: int
    title: str
    xp_into_level: int
    xp_for_level: int
    next_level: int | None = None
    next_title: str | None = None


class LevelEntry(BaseModel):
    level: int
    title: str
    xp_required: int
    cumulative: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


class XpAwardRequest(BaseModel):
    account_id: int
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=64)
    source_id: str | None = Field(default=None, max_length=255)
    idempotency_key: str | None = Field(default=None, max_length=255)


class XpAwardResponse(XpResponse):
    granted: bool
    leveled_up: bool
    achievements_unlocked: list[str] = []


# --- Streaks / activity ---


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_active_at: datetime | None = None


class ActivityRequest(BaseModel):
    account_id: int
    activity_type: str = Field(min_length=1, max_length=32)
    occurred_at: datetime | None = None
    event_key: str | None = Field(default=None, max_length=255)


class ActivityResponse(BaseModel):
    duplicate: bool
    activity_count: int
    current_streak: int
    longest_streak: int
    xp_awarded: int
    achievements_unlocked: list[str] = []


# --- Achievements ---


class AchievementResponse(BaseModel):
    slug: str
    name: str
    description: str
    category: str
    tier: str
    xp_reward: int
    coin_reward: int


class AccountAchievementResponse(AchievementResponse):
    unlocked: bool
    unlocked_at: datetime | None = None


class AchievementCatalogResponse(BaseModel):
    achievements: list[AchievementResponse]


class AccountAchievementsResponse(BaseModel):
    achievements: list[AccountAchievementResponse]
    total_available: int
    total_unlocked: int
