"""Subscription plans, usage counters and plan limits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class SubscriptionPlan(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Statuses that send a user back to the free plan on the next request
LAPSED_STATUSES: frozenset[SubscriptionStatus] = frozenset({
    SubscriptionStatus.EXPIRED,
    SubscriptionStatus.CANCELLED,
})


UNLIMITED = -1

PRESENTATIONS_CREATED = "presentationsCreated"
ACADEMIC_WORKS_CREATED = "academicWorksCreated"
ACADEMIC_GENERATIONS_TODAY = "academicGenerationsToday"
CHAT_MESSAGES_TODAY = "chatMessagesToday"
DALLE_IMAGES_USED = "dalleImagesUsed"
PLAGIARISM_CHECKS_USED = "plagiarismChecksUsed"
DISSERTATION_GENERATIONS_USED = "dissertationGenerationsUsed"
LARGE_CHAPTER_GENERATIONS_USED = "largeChapterGenerationsUsed"

# Allow-list of counters that may be incremented. Order is the display order.
COUNTERS: tuple[str, ...] = (
    PRESENTATIONS_CREATED,
    ACADEMIC_WORKS_CREATED,
    ACADEMIC_GENERATIONS_TODAY,
    CHAT_MESSAGES_TODAY,
    DALLE_IMAGES_USED,
    PLAGIARISM_CHECKS_USED,
    DISSERTATION_GENERATIONS_USED,
    LARGE_CHAPTER_GENERATIONS_USED,
)

DAILY_COUNTERS: frozenset[str] = frozenset({
    ACADEMIC_GENERATIONS_TODAY,
    CHAT_MESSAGES_TODAY,
})

MAX_INCREMENT = 100

ACTION_COUNTERS: Dict[str, str] = {
    "presentation": PRESENTATIONS_CREATED,
    "academic_work": ACADEMIC_WORKS_CREATED,
    "academic_generation": ACADEMIC_GENERATIONS_TODAY,
    "chat_message": CHAT_MESSAGES_TODAY,
    "dalle_image": DALLE_IMAGES_USED,
    "plagiarism_check": PLAGIARISM_CHECKS_USED,
    "dissertation_generation": DISSERTATION_GENERATIONS_USED,
    "large_chapter": LARGE_CHAPTER_GENERATIONS_USED,
}

PLAN_NAMES: Dict[SubscriptionPlan, str] = {
    SubscriptionPlan.FREE: "Free",
    SubscriptionPlan.STARTER: "Starter",
    SubscriptionPlan.PRO: "Professional",
    SubscriptionPlan.PREMIUM: "Premium",
}

FREE_PLAN_LIMITS = {
    PRESENTATIONS_CREATED: 3,
    ACADEMIC_WORKS_CREATED: 3,
    ACADEMIC_GENERATIONS_TODAY: 5,
    CHAT_MESSAGES_TODAY: 20,
    DALLE_IMAGES_USED: 0,
    PLAGIARISM_CHECKS_USED: 2,
    DISSERTATION_GENERATIONS_USED: 1,
    LARGE_CHAPTER_GENERATIONS_USED: 0,
}

STARTER_PLAN_LIMITS = {
    PRESENTATIONS_CREATED: 15,
    ACADEMIC_WORKS_CREATED: 15,
    ACADEMIC_GENERATIONS_TODAY: 20,
    CHAT_MESSAGES_TODAY: UNLIMITED,
    DALLE_IMAGES_USED: 10,
    PLAGIARISM_CHECKS_USED: 10,
    DISSERTATION_GENERATIONS_USED: 5,
    LARGE_CHAPTER_GENERATIONS_USED: 3,
}

PRO_PLAN_LIMITS = {
    PRESENTATIONS_CREATED: 40,
    ACADEMIC_WORKS_CREATED: 50,
    ACADEMIC_GENERATIONS_TODAY: 50,
    CHAT_MESSAGES_TODAY: UNLIMITED,
    DALLE_IMAGES_USED: 30,
    PLAGIARISM_CHECKS_USED: 30,
    DISSERTATION_GENERATIONS_USED: 20,
    LARGE_CHAPTER_GENERATIONS_USED: 10,
}

PREMIUM_PLAN_LIMITS = {
    PRESENTATIONS_CREATED: 150,
    ACADEMIC_WORKS_CREATED: 200,
    ACADEMIC_GENERATIONS_TODAY: 200,
    CHAT_MESSAGES_TODAY: UNLIMITED,
    DALLE_IMAGES_USED: 100,
    PLAGIARISM_CHECKS_USED: 100,
    DISSERTATION_GENERATIONS_USED: 100,
    LARGE_CHAPTER_GENERATIONS_USED: 50,
}

PLAN_LIMITS: Dict[SubscriptionPlan, Dict[str, int]] = {
    SubscriptionPlan.FREE: FREE_PLAN_LIMITS,
    SubscriptionPlan.STARTER: STARTER_PLAN_LIMITS,
    SubscriptionPlan.PRO: PRO_PLAN_LIMITS,
    SubscriptionPlan.PREMIUM: PREMIUM_PLAN_LIMITS,
}

# Extra quota granted to a referrer for each referred user
REFERRAL_BONUS_LIMITS: Dict[str, int] = {
    PRESENTATIONS_CREATED: 2,
    DALLE_IMAGES_USED: 2,
    ACADEMIC_WORKS_CREATED: 1,
}
MAX_REFERRALS = 20

TRIAL_PLAN = SubscriptionPlan.PRO
TRIAL_DAYS = 7


def resolve_plan(plan: object) -> SubscriptionPlan:
    """Map a stored plan value to a plan, treating anything unknown as free."""
    if isinstance(plan, SubscriptionPlan):
        return plan
    try:
        return SubscriptionPlan(str(plan).strip().lower())
    except ValueError:
        return SubscriptionPlan.FREE


def get_limits(plan: object) -> Dict[str, int]:
    """Return a copy of the full limit table for a plan."""
    return dict(PLAN_LIMITS[resolve_plan(plan)])


def get_effective_limits(plan: object, bonus: Optional[Dict[str, int]] = None) -> Dict[str, int]:
    """Plan limits with referral bonuses added. Unlimited counters stay unlimited."""
    limits = get_limits(plan)
    for counter, extra in (bonus or {}).items():
        if counter in limits and not is_unlimited(limits[counter]):
            limits[counter] += extra
    return limits


def resolve_status(status: object) -> SubscriptionStatus:
    """Map a stored status value to a status, treating anything unknown as active."""
    if isinstance(status, SubscriptionStatus):
        return status
    try:
        return SubscriptionStatus(str(status).strip().lower())
    except ValueError:
        return SubscriptionStatus.ACTIVE


def get_plan_name(plan: object) -> str:
    return PLAN_NAMES[resolve_plan(plan)]


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def resolve_counter(action: str) -> Optional[str]:
    """Map an action name or counter name to a counter, or None."""
    if action in ACTION_COUNTERS:
        return ACTION_COUNTERS[action]
    if action in COUNTERS:
        return action
    return None


@dataclass
class UsageRecord:
    user_id: str
    plan: SubscriptionPlan
    counters: Dict[str, int]
    last_daily_reset: datetime
    last_monthly_reset: datetime
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    expires_at: Optional[datetime] = None
    bonus: Dict[str, int] = field(default_factory=dict)
    referrals: int = 0
    trial_used: bool = False

    def is_lapsed(self, now: datetime) -> bool:
        """True when the subscription has expired, been cancelled or run past its end date."""
        if self.status in LAPSED_STATUSES:
            return True
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class LimitCheck:
    allowed: bool
    current: int
    limit: int
    counter: str = ""

    @property
    def unlimited(self) -> bool:
        return is_unlimited(self.limit)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "current": self.current,
            "limit": "unlimited" if self.unlimited else self.limit,
            "counter": self.counter,
        }


@dataclass
class SyncResult:
    """Outcome of a batch increment: applied counters and skipped entries."""

    applied: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)


@dataclass
class IncrementResult:
    field: str
    previous_value: int
    new_value: int
    applied: bool


@dataclass
class ResetOutcome:
    daily: bool = False
    monthly: bool = False
    downgraded: bool = False


@dataclass
class UsageSnapshot:
    record: UsageRecord
    limits: Dict[str, int]
    remaining: Dict[str, Optional[int]]
    plan_name: str
