"""Subscription plans and usage limit enforcement for Science AI."""

from scienceai.subscription.state import (
    COUNTERS,
    DAILY_COUNTERS,
    UNLIMITED,
    LimitCheck,
    SubscriptionPlan,
    SyncResult,
    get_limits,
)
from scienceai.subscription.limiter import UsageLimiter

__all__ = [
    "COUNTERS",
    "DAILY_COUNTERS",
    "UNLIMITED",
    "LimitCheck",
    "SubscriptionPlan",
    "SyncResult",
    "UsageLimiter",
    "get_limits",
]
