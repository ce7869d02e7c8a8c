"""Usage limit enforcement and lazy counter resets."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Mapping, Optional

from scienceai.errors import NotFoundError, ValidationError
from scienceai.subscription.state import (
    COUNTERS,
    DAILY_COUNTERS,
    MAX_INCREMENT,
    MAX_REFERRALS,
    TRIAL_DAYS,
    TRIAL_PLAN,
    IncrementResult,
    LimitCheck,
    ResetOutcome,
    SubscriptionPlan,
    SubscriptionStatus,
    SyncResult,
    UsageRecord,
    UsageSnapshot,
    get_effective_limits,
    get_plan_name,
    is_unlimited,
    resolve_counter,
)

if TYPE_CHECKING:
    from scienceai.db.usage_store import UsageStore

logger = logging.getLogger(__name__)


def _is_valid_amount(amount: object) -> bool:
    # bool is an int subclass; True must not count as 1
    if isinstance(amount, bool) or not isinstance(amount, int):
        return False
    return 0 <= amount <= MAX_INCREMENT


def is_new_day(last_reset: datetime, now: datetime) -> bool:
    return now.date() > last_reset.date()


def is_new_month(last_reset: datetime, now: datetime) -> bool:
    return (now.year, now.month) > (last_reset.year, last_reset.month)


class UsageLimiter:
    """Gate and track per-user consumption under a subscription plan.

    The plain `check_limit` + `record_usage` pair is racy: concurrent requests
    may each pass the check before any of them increments, so a user can end
    up over quota by at most (in-flight requests - 1). `check_and_consume`
    closes that gap with a conditional update in the store.
    """

    def __init__(self, store: UsageStore):
        self.store = store

    def ensure_user(
        self,
        user_id: str,
        plan: SubscriptionPlan = SubscriptionPlan.FREE,
        now: Optional[datetime] = None,
    ) -> UsageRecord:
        """Create the usage record for a user if it does not exist yet."""
        if self.store.create_user(user_id, plan, now):
            logger.info("[usage] created usage record for user %s (plan=%s)", user_id, plan.value)
        return self._load(user_id)

    def change_plan(
        self,
        user_id: str,
        plan: str | SubscriptionPlan,
        expires_at: Optional[datetime] = None,
    ) -> UsageRecord:
        """Switch a user to another plan with an active subscription.

        Unknown plans are rejected. With `expires_at` the user falls back to
        the free plan once that moment passes.
        """
        try:
            new_plan = SubscriptionPlan(plan)
        except ValueError:
            raise ValidationError(f"Unknown subscription plan: {plan!r}")

        if not self.store.set_subscription(
            user_id, new_plan, SubscriptionStatus.ACTIVE, expires_at
        ):
            raise NotFoundError(f"User not found: {user_id}")
        logger.info("[usage] plan changed to %s for user %s", new_plan.value, user_id)
        return self._load(user_id)

    def cancel_subscription(self, user_id: str) -> UsageRecord:
        """Mark the subscription cancelled. The next request drops the user to free."""
        record = self._load(user_id)
        self.store.set_subscription(
            user_id, record.plan, SubscriptionStatus.CANCELLED, record.expires_at
        )
        logger.info("[usage] subscription cancelled for user %s", user_id)
        return self._load(user_id)

    def start_trial(self, user_id: str, now: Optional[datetime] = None) -> UsageRecord:
        """Put a user on the trial plan for TRIAL_DAYS. Each user gets one trial."""
        now = now or datetime.utcnow()
        record = self._load(user_id)
        if record.trial_used:
            raise ValidationError("Trial already used")
        if record.plan is not SubscriptionPlan.FREE:
            raise ValidationError("Trial is only available on the free plan")

        if not self.store.set_subscription(
            user_id,
            TRIAL_PLAN,
            SubscriptionStatus.TRIALING,
            now + timedelta(days=TRIAL_DAYS),
            mark_trial_used=True,
            if_trial_unused=True,
        ):
            raise ValidationError("Trial already used")
        logger.info("[usage] trial started for user %s", user_id)
        return self._load(user_id)

    def add_referral(self, user_id: str) -> UsageRecord:
        """Credit a referral, raising the user's bonus limits."""
        count = self.store.add_referral_bonus(user_id, MAX_REFERRALS)
        if count is None:
            self._load(user_id)
            raise ValidationError(f"Referral limit of {MAX_REFERRALS} reached")
        logger.info("[usage] referral %s credited to user %s", count, user_id)
        return self._load(user_id)

    def reset_if_due(self, user_id: str, now: Optional[datetime] = None) -> ResetOutcome:
        """Apply any daily or monthly reset whose boundary has passed.

        A lapsed subscription (expired, cancelled or past its end date) is
        moved back to the free plan first.
        """
        now = now or datetime.utcnow()
        record = self._load(user_id)
        outcome = ResetOutcome()

        if record.is_lapsed(now):
            outcome.downgraded = self.store.set_subscription(
                user_id, SubscriptionPlan.FREE, SubscriptionStatus.ACTIVE, None
            )
            logger.info(
                "[usage] %s subscription lapsed (%s), user %s moved to free plan",
                record.plan.value, record.status.value, user_id,
            )

        if is_new_month(record.last_monthly_reset, now):
            outcome.monthly = self.store.reset_counters(
                user_id,
                COUNTERS,
                daily_reset=now,
                monthly_reset=now,
                if_monthly_reset=record.last_monthly_reset,
            )
            outcome.daily = outcome.monthly
            if outcome.monthly:
                logger.info("[usage] monthly reset for user %s", user_id)
            return outcome

        if is_new_day(record.last_daily_reset, now):
            outcome.daily = self.store.reset_counters(
                user_id,
                DAILY_COUNTERS,
                daily_reset=now,
                if_daily_reset=record.last_daily_reset,
            )
            if outcome.daily:
                logger.info("[usage] daily reset for user %s", user_id)
        return outcome

    def reset_daily(self, user_id: str, now: Optional[datetime] = None) -> None:
        """Unconditionally zero the daily counters."""
        now = now or datetime.utcnow()
        if not self.store.reset_counters(user_id, DAILY_COUNTERS, daily_reset=now):
            raise NotFoundError(f"User not found: {user_id}")
        logger.info("[usage] daily reset requested for user %s", user_id)

    def reset_monthly(self, user_id: str, now: Optional[datetime] = None) -> None:
        """Unconditionally zero every counter and both reset timestamps."""
        now = now or datetime.utcnow()
        if not self.store.reset_counters(user_id, COUNTERS, daily_reset=now, monthly_reset=now):
            raise NotFoundError(f"User not found: {user_id}")
        logger.info("[usage] monthly reset requested for user %s", user_id)

    def get_usage(self, user_id: str, now: Optional[datetime] = None) -> UsageSnapshot:
        """Current counters after lazy resets, with limits and remaining quota."""
        self.reset_if_due(user_id, now)
        record = self._load(user_id)
        limits = get_effective_limits(record.plan, record.bonus)
        remaining = {
            c: None if is_unlimited(limits[c]) else max(0, limits[c] - record.counters[c])
            for c in COUNTERS
        }
        return UsageSnapshot(
            record=record,
            limits=limits,
            remaining=remaining,
            plan_name=get_plan_name(record.plan),
        )

    def check_limit(
        self, user_id: str, counter: str, now: Optional[datetime] = None
    ) -> LimitCheck:
        """Compare a counter against the user's plan ceiling."""
        name = self._require_counter(counter)
        self.reset_if_due(user_id, now)
        record = self._load(user_id)
        limit = get_effective_limits(record.plan, record.bonus)[name]
        current = record.counters[name]
        allowed = is_unlimited(limit) or current < limit
        return LimitCheck(allowed=allowed, current=current, limit=limit, counter=name)

    def check_and_consume(
        self,
        user_id: str,
        action: str,
        amount: int = 1,
        now: Optional[datetime] = None,
    ) -> LimitCheck:
        """Check the quota and consume it in one atomic step.

        Returns a LimitCheck with allowed=False, and nothing consumed, when the
        increment would take the counter past the plan ceiling.
        """
        name = self._require_counter(action)
        if not _is_valid_amount(amount):
            raise ValidationError(f"Amount must be an integer between 0 and {MAX_INCREMENT}")

        self.reset_if_due(user_id, now)
        record = self._load(user_id)
        limit = get_effective_limits(record.plan, record.bonus)[name]

        if amount == 0:
            # Nothing to consume, so answer the same way check_limit would
            current = record.counters[name]
            allowed = is_unlimited(limit) or current < limit
            return LimitCheck(allowed=allowed, current=current, limit=limit, counter=name)

        if is_unlimited(limit):
            new_value = self.store.increment(user_id, name, amount)
        else:
            new_value = self.store.increment_within_limit(user_id, name, amount, limit)

        if new_value is None:
            current = self.store.get_counter(user_id, name)
            if current is None:
                raise NotFoundError(f"User not found: {user_id}")
            logger.info(
                "[usage] quota exhausted for %s: %s/%s (user %s)", name, current, limit, user_id
            )
            return LimitCheck(allowed=False, current=current, limit=limit, counter=name)

        return LimitCheck(allowed=True, current=new_value, limit=limit, counter=name)

    def record_usage(self, user_id: str, counter: str, amount: int = 1) -> SyncResult:
        """Increment one counter, silently skipping invalid names or amounts."""
        return self.sync_usage(user_id, {counter: amount})

    def sync_usage(
        self,
        user_id: str,
        increments: Mapping[str, object],
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Apply a batch of increments.

        Entries with an unknown counter name or an amount outside
        [0, MAX_INCREMENT] are skipped and reported, the rest are applied.
        """
        if not isinstance(increments, Mapping):
            raise ValidationError("increments must be an object of counter names to amounts")

        self.reset_if_due(user_id, now)
        result = SyncResult()

        for name, amount in increments.items():
            if name not in COUNTERS:
                result.skipped[str(name)] = "unknown counter"
                continue
            if not _is_valid_amount(amount):
                result.skipped[name] = "invalid amount"
                continue

            new_value = self.store.increment(user_id, name, amount)
            if new_value is None:
                raise NotFoundError(f"User not found: {user_id}")
            result.applied[name] = new_value

        if result.skipped:
            logger.warning("[usage] skipped entries for user %s: %s", user_id, result.skipped)
        if result.applied:
            logger.info("[usage] sync for user %s: %s", user_id, result.applied)
        return result

    def increment(self, user_id: str, field: str, amount: object = 1) -> IncrementResult:
        """Increment a single named counter and report previous and new values."""
        if field not in COUNTERS:
            raise ValidationError(f"Invalid field. Valid: {', '.join(COUNTERS)}")

        result = self.sync_usage(user_id, {field: amount})
        if field in result.applied:
            new_value = result.applied[field]
            previous = new_value - int(amount)
            logger.info(
                "[usage] increment %s: %s -> %s for user %s", field, previous, new_value, user_id
            )
            return IncrementResult(field, previous, new_value, applied=True)

        current = self.store.get_counter(user_id, field)
        if current is None:
            raise NotFoundError(f"User not found: {user_id}")
        return IncrementResult(field, current, current, applied=False)

    def _require_counter(self, action: str) -> str:
        name = resolve_counter(action)
        if name is None:
            raise ValidationError(f"Unknown usage counter or action: {action!r}")
        return name

    def _load(self, user_id: str) -> UsageRecord:
        record = self.store.get_usage(user_id)
        if record is None:
            raise NotFoundError(f"User not found: {user_id}")
        return record
