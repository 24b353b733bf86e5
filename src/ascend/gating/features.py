"""Static feature requirements by tier.

``limits`` maps tier -> allowed uses per ``period``; a missing tier or ``None``
means unlimited. Tiers above the highest listed one inherit its limit.
"""

from __future__ import annotations

TIER_LEVELS: dict[str, int] = {
    "free": 0,
    "pro": 1,
    "team": 2,
    "enterprise": 3,
}

FEATURES: dict[str, dict] = {
    # --- Pro ---
    "unlimited_goals": {"required_tier": "pro"},
    "advanced_ai_coaching": {"required_tier": "pro"},
    "analytics_dashboard": {"required_tier": "pro"},
    "performance_insights": {"required_tier": "pro"},
    "priority_support": {"required_tier": "pro"},
    "custom_themes": {"required_tier": "pro"},
    "data_export": {"required_tier": "pro"},
    "priority_processing": {"required_tier": "pro"},
    # --- Team ---
    "team_collaboration": {"required_tier": "team"},
    # --- Enterprise ---
    "api_access": {"required_tier": "enterprise"},
    "white_label": {"required_tier": "enterprise"},
    # --- Count-limited ---
    "ai_prompts": {
        "required_tier": "free",
        "period": "day",
        "limits": {"free": 10, "pro": 200, "team": None, "enterprise": None},
    },
    "coaching_sessions": {
        "required_tier": "free",
        "period": "month",
        "limits": {"free": 3, "pro": 30, "team": 100, "enterprise": None},
    },
    "ai_powerups": {
        "required_tier": "free",
        "period": "month",
        "limits": {"free": 5, "pro": 50, "team": None, "enterprise": None},
    },
    "goal_templates": {
        "required_tier": "free",
        "period": "lifetime",
        "limits": {"free": 3, "pro": None, "team": None, "enterprise": None},
    },
    "active_goals": {
        "required_tier": "free",
        "period": "lifetime",
        "limits": {"free": 5, "pro": None, "team": None, "enterprise": None},
    },
}

PERIODS = frozenset({"day", "month", "lifetime"})


def tier_rank(tier: str) -> int:
    """Rank a tier; unknown tiers rank as free."""
    return TIER_LEVELS.get(tier, 0)


def usage_limit(feature: dict, tier: str) -> int | None:
    limits = feature.get("limits")
    if not limits:
        return None
    if tier in limits:
        return limits[tier]
    # Fall back to the highest listed tier at or below this one.
    eligible = [t for t in limits if tier_rank(t) <= tier_rank(tier)]
    if not eligible:
        return 0
    return limits[max(eligible, key=tier_rank)]
