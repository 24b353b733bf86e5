"""Subscription lifecycle state machine.

Pure transition table; the service layer decides persistence. Anything not
listed is rejected, in particular every edge out of ``cancelled``: a stale
"renewed" notification must never resurrect a cancelled subscription.
"""

from __future__ import annotations

from ascend.errors import InvalidTransition

STATES = ("none", "active", "past_due", "paused", "cancelling", "cancelled")

TRIGGERS = (
    "created",
    "renewed",
    "payment_failed",
    "cancelled",
    "paused",
    "resumed",
    "grace_expired",
    "period_elapsed",
    "revoked",
)

# (current, trigger) -> next
VALID_TRANSITIONS: dict[tuple[str, str], str] = {
    ("none", "created"): "active",
    ("none", "renewed"): "active",
    ("active", "renewed"): "active",
    ("active", "payment_failed"): "past_due",
    ("active", "cancelled"): "cancelling",
    ("active", "paused"): "paused",
    ("past_due", "renewed"): "active",
    ("past_due", "payment_failed"): "past_due",
    ("past_due", "cancelled"): "cancelled",
    ("past_due", "grace_expired"): "cancelled",
    ("paused", "resumed"): "active",
    ("paused", "cancelled"): "cancelled",
    ("cancelling", "resumed"): "active",
    ("cancelling", "cancelled"): "cancelled",
    ("cancelling", "period_elapsed"): "cancelled",
    # Refunded or revoked by the provider: access ends now.
    ("active", "revoked"): "cancelled",
    ("past_due", "revoked"): "cancelled",
    ("paused", "revoked"): "cancelled",
    ("cancelling", "revoked"): "cancelled",
}

# Statuses during which the paid tier is honored.
ENTITLED_STATUSES = frozenset({"active", "past_due", "cancelling"})

# Canonical payment event type -> state machine trigger.
EVENT_TRIGGERS: dict[str, str] = {
    "subscription_created": "created",
    "subscription_renewed": "renewed",
    "payment_failed": "payment_failed",
    "subscription_cancelled": "cancelled",
    "subscription_paused": "paused",
    "subscription_resumed": "resumed",
}


def transition(current: str, trigger: str, *, period_elapsed: bool = False) -> str:
    """Return the next state or raise InvalidTransition.

    ``period_elapsed`` guards un-cancel: a cancelling subscription can only be
    resumed while its paid period is still running.
    """
    next_state = VALID_TRANSITIONS.get((current, trigger))
    if next_state is None:
        raise InvalidTransition(current, trigger)
    if current == "cancelling" and trigger == "resumed" and period_elapsed:
        raise InvalidTransition(current, trigger)
    return next_state


def effective_tier(status: str, tier: str) -> str:
    return tier if status in ENTITLED_STATUSES else "free"
