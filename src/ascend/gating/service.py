"""Feature gate: subscription tier plus usage counters.

Always a live read of committed state. Time-driven transitions that the
sweeps have not applied yet (period end passed, grace exhausted) are
honoured here, so a stale projection never grants access it should not.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from ascend.accounts.service import get_account
from ascend.config import get_settings
from ascend.gating.features import FEATURES, tier_rank, usage_limit
from ascend.gating.usage import get_usage
from ascend.subscriptions.service import current_subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    feature_key: str
    current_tier: str
    required_tier: str | None = None
    reason: str | None = None
    limit: int | None = None
    used: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


async def entitled_tier(db: AsyncSession, account_id: int, now: datetime) -> str:
    """Tier the account is entitled to right now."""
    account = await get_account(db, account_id)
    if account is None or account.tier == "free":
        return "free"

    status = account.subscription_status
    if status == "cancelling" and account.current_period_end is not None and account.current_period_end <= now:
        return "free"
    if status == "past_due":
        record = await current_subscription(db, account_id)
        grace = timedelta(days=get_settings().past_due_grace_days)
        if record is not None and record.past_due_since is not None and record.past_due_since + grace <= now:
            return "free"
    return account.tier


async def can_use(
    db: AsyncSession,
    account_id: int,
    feature_key: str,
    now: datetime | None = None,
) -> GateDecision:
    now = now or datetime.now(timezone.utc)
    account = await get_account(db, account_id)
    if account is None:
        return GateDecision(allowed=False, feature_key=feature_key, current_tier="free", reason="account_not_found")
    if not account.is_active:
        return GateDecision(allowed=False, feature_key=feature_key, current_tier="free", reason="account_inactive")

    tier = await entitled_tier(db, account_id, now)
    feature = FEATURES.get(feature_key)
    if feature is None:
        logger.warning("Gate check for unknown feature %s", feature_key)
        return GateDecision(allowed=False, feature_key=feature_key, current_tier=tier, reason="unknown_feature")

    required = feature["required_tier"]
    if tier_rank(tier) < tier_rank(required):
        return GateDecision(
            allowed=False,
            feature_key=feature_key,
            current_tier=tier,
            required_tier=required,
            reason="upgrade_required",
        )

    limit = usage_limit(feature, tier)
    if limit is None:
        return GateDecision(allowed=True, feature_key=feature_key, current_tier=tier, required_tier=required)

    used = await get_usage(db, account_id, feature_key, feature.get("period"), now)
    if used >= limit:
        return GateDecision(
            allowed=False,
            feature_key=feature_key,
            current_tier=tier,
            required_tier=required,
            reason="limit_reached",
            limit=limit,
            used=used,
        )
    return GateDecision(
        allowed=True,
        feature_key=feature_key,
        current_tier=tier,
        required_tier=required,
        limit=limit,
        used=used,
    )
