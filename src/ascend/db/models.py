"""ORM models for accounts, payment/coin/XP logs, subscriptions and progression.

Append-only logs: payment_transactions, coin_transactions, xp_transactions,
unlocked_achievements. Projections rebuilt from them: accounts, subscriptions.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ascend.db.base import Base, BigIntPK, JSONType, UTCDateTime, utcnow


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """Per-user projection: balance, tier, XP, level and streak.

    ``coin_balance`` is written only by the ledger, ``tier`` and
    ``subscription_status`` only by the subscription service.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("coin_balance >= 0", name="ck_accounts_coin_balance_non_negative"),
        CheckConstraint("current_streak >= 0", name="ck_accounts_streak_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    external_user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    ledger_frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    # --- Coins ---
    coin_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_coins_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_coins_purchased: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # --- Subscription projection ---
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="free", server_default="free")
    subscription_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="none", server_default="none"
    )
    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Progression ---
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    level_title: Mapped[str] = mapped_column(String(64), nullable=False, default="Novice", server_default="Novice")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_active_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    streak_checked_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentTransaction(Base):
    """One row per distinct provider event; the idempotency anchor.

    Only ``status`` ever changes after insert (terminal refund correction).
    """

    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("provider", "provider_transaction_id", name="uq_payment_transactions_provider_tx"),
        Index("ix_payment_transactions_account", "account_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    provider_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # subscription | coins | item
    product_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minor units
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    outcome: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    applied_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Coin ledger
# ---------------------------------------------------------------------------


class CoinTransaction(Base):
    """Immutable coin ledger entry."""

    __tablename__ = "coin_transactions"
    __table_args__ = (Index("ix_coin_transactions_account_id", "account_id", "id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class Subscription(Base):
    """Current state of one provider subscription lineage."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_account_id", "account_id"),
        Index("ix_subscriptions_sweep", "status", "current_period_end"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    provider_subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    product_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    billing_cycle: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    past_due_since: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    superseded_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------


class XpTransaction(Base):
    """Immutable XP log. Level is derived from the running total."""

    __tablename__ = "xp_transactions"
    __table_args__ = (Index("ix_xp_transactions_account_id", "account_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())


class Achievement(Base):
    """Static achievement catalog, seeded at startup."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)  # bronze | silver | gold | diamond
    criteria: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coin_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UnlockedAchievement(Base):
    __tablename__ = "unlocked_achievements"
    __table_args__ = (
        UniqueConstraint("account_id", "achievement_id", name="uq_unlocked_achievements_account_achievement"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    achievement_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("achievements.id", ondelete="RESTRICT"), nullable=False
    )
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    unlocked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())


class ActivityEvent(Base):
    """Dedupe log for external domain events (task completed, daily login...)."""

    __tablename__ = "activity_events"
    __table_args__ = (UniqueConstraint("account_id", "event_key", name="uq_activity_events_account_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    event_key: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ActivityCounter(Base):
    __tablename__ = "activity_counters"

    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), primary_key=True
    )
    activity_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Feature usage
# ---------------------------------------------------------------------------


class UsageCounter(Base):
    """Per-period usage of count-limited features."""

    __tablename__ = "usage_counters"

    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="RESTRICT"), primary_key=True
    )
    feature_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    period_start: Mapped[date] = mapped_column(Date, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
