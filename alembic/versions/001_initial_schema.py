"""Initial schema: accounts, payment/coin/XP logs, subscriptions, progression, usage.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGSERIAL PRIMARY KEY,
            external_user_id VARCHAR(128) UNIQUE NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            ledger_frozen BOOLEAN NOT NULL DEFAULT false,
            coin_balance INTEGER NOT NULL DEFAULT 0,
            total_coins_spent INTEGER NOT NULL DEFAULT 0,
            total_coins_purchased INTEGER NOT NULL DEFAULT 0,
            tier VARCHAR(16) NOT NULL DEFAULT 'free',
            subscription_status VARCHAR(16) NOT NULL DEFAULT 'none',
            current_period_end TIMESTAMPTZ,
            total_xp BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            level_title VARCHAR(64) NOT NULL DEFAULT 'Novice',
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_active_at TIMESTAMPTZ,
            streak_checked_on DATE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_accounts_coin_balance_non_negative CHECK (coin_balance >= 0),
            CONSTRAINT ck_accounts_streak_non_negative CHECK (current_streak >= 0)
        )
    """)

    # --- Payment transactions (idempotency anchor) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS payment_transactions (
            id BIGSERIAL PRIMARY KEY,
            provider VARCHAR(16) NOT NULL,
            provider_transaction_id VARCHAR(255) NOT NULL,
            provider_subscription_id VARCHAR(255),
            account_id BIGINT REFERENCES accounts(id) ON DELETE RESTRICT,
            event_type VARCHAR(32) NOT NULL,
            kind VARCHAR(16) NOT NULL,
            product_ref VARCHAR(128),
            amount INTEGER NOT NULL DEFAULT 0,
            currency VARCHAR(3) NOT NULL DEFAULT 'USD',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            outcome JSONB NOT NULL DEFAULT '{}',
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_payment_transactions_provider_tx UNIQUE (provider, provider_transaction_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_payment_transactions_account
        ON payment_transactions(account_id)
    """)

    # --- Coin ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_transactions (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            delta INTEGER NOT NULL,
            reason VARCHAR(64) NOT NULL,
            source_id VARCHAR(255),
            balance_after INTEGER NOT NULL,
            idempotency_key VARCHAR(255) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_coin_transactions_account_id
        ON coin_transactions(account_id, id)
    """)

    # --- Subscriptions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            provider VARCHAR(16) NOT NULL,
            provider_subscription_id VARCHAR(255) UNIQUE NOT NULL,
            product_ref VARCHAR(128),
            tier VARCHAR(16) NOT NULL DEFAULT 'free',
            billing_cycle VARCHAR(16),
            status VARCHAR(16) NOT NULL DEFAULT 'none',
            current_period_end TIMESTAMPTZ,
            past_due_since TIMESTAMPTZ,
            superseded_at TIMESTAMPTZ,
            superseded_by_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_subscriptions_account_id
        ON subscriptions(account_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_subscriptions_sweep
        ON subscriptions(status, current_period_end)
    """)

    # --- XP log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_transactions (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            delta INTEGER NOT NULL,
            reason VARCHAR(64) NOT NULL,
            source_id VARCHAR(255),
            idempotency_key VARCHAR(255) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_xp_transactions_account_id
        ON xp_transactions(account_id)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id BIGSERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            tier VARCHAR(16) NOT NULL,
            criteria JSONB NOT NULL,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            coin_reward INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS unlocked_achievements (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            achievement_id BIGINT NOT NULL REFERENCES achievements(id) ON DELETE RESTRICT,
            context JSONB NOT NULL DEFAULT '{}',
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_unlocked_achievements_account_achievement UNIQUE (account_id, achievement_id)
        )
    """)

    # --- Activity ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_events (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            event_key VARCHAR(255) NOT NULL,
            activity_type VARCHAR(32) NOT NULL,
            occurred_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_activity_events_account_key UNIQUE (account_id, event_key)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_counters (
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            activity_type VARCHAR(32) NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (account_id, activity_type)
        )
    """)

    # --- Feature usage ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS usage_counters (
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            feature_key VARCHAR(64) NOT NULL,
            period_start DATE NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (account_id, feature_key, period_start)
        )
    """)


def downgrade() -> None:
    for table in (
        "usage_counters",
        "activity_counters",
        "activity_events",
        "unlocked_achievements",
        "achievements",
        "xp_transactions",
        "subscriptions",
        "coin_transactions",
        "payment_transactions",
        "accounts",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table}")
