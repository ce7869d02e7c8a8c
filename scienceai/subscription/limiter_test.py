from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from scienceai.db.usage_store import UsageStore
from scienceai.errors import NotFoundError, ValidationError
from scienceai.subscription.limiter import UsageLimiter, is_new_day, is_new_month
from scienceai.subscription.state import (
    COUNTERS,
    MAX_REFERRALS,
    REFERRAL_BONUS_LIMITS,
    SubscriptionPlan,
    SubscriptionStatus,
)

NOW = datetime(2024, 3, 10, 8, 30)


@pytest.fixture
def store(tmp_path):
    store = UsageStore(str(tmp_path / "usage.db"))
    yield store
    store.close()


@pytest.fixture
def limiter(store):
    return UsageLimiter(store)


def _counters(limiter, user_id, now=NOW):
    return limiter.get_usage(user_id, now=now).record.counters


class LockedStore(UsageStore):
    """Counter updates fail the way a locked SQLite database does."""

    def increment(self, user_id, counter, amount):
        raise sqlite3.OperationalError("database is locked")

    def increment_within_limit(self, user_id, counter, amount, limit):
        raise sqlite3.OperationalError("database is locked")


class TestBoundaries:
    def test_same_day_is_not_new(self):
        assert not is_new_day(datetime(2024, 3, 10, 0, 1), datetime(2024, 3, 10, 23, 59))

    def test_next_day_after_midnight(self):
        assert is_new_day(datetime(2024, 3, 10, 23, 59), datetime(2024, 3, 11, 0, 0))

    def test_new_month(self):
        assert is_new_month(datetime(2024, 1, 31), datetime(2024, 2, 1))
        assert is_new_month(datetime(2023, 12, 31), datetime(2024, 1, 1))

    def test_same_month(self):
        assert not is_new_month(datetime(2024, 2, 1), datetime(2024, 2, 29))


class TestEnsureUser:
    def test_creates_zeroed_record(self, limiter):
        record = limiter.ensure_user("u1", SubscriptionPlan.PRO, now=NOW)
        assert record.plan is SubscriptionPlan.PRO
        assert all(v == 0 for v in record.counters.values())
        assert record.last_daily_reset == NOW
        assert record.last_monthly_reset == NOW

    def test_existing_record_is_kept(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 2}, now=NOW)
        record = limiter.ensure_user("u1", SubscriptionPlan.PREMIUM, now=NOW)
        assert record.plan is SubscriptionPlan.FREE
        assert record.counters["presentationsCreated"] == 2


class TestChangePlan:
    def test_switches_plan(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        record = limiter.change_plan("u1", "premium")
        assert record.plan is SubscriptionPlan.PREMIUM

    def test_unknown_plan_rejected(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        with pytest.raises(ValidationError):
            limiter.change_plan("u1", "gold")

    def test_unknown_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.change_plan("ghost", "pro")


class TestResetIfDue:
    def test_daily_reset_zeroes_daily_counters_only(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {
            "academicGenerationsToday": 4,
            "chatMessagesToday": 12,
            "presentationsCreated": 2,
        }, now=NOW)

        tomorrow = datetime(2024, 3, 11, 0, 1)
        outcome = limiter.reset_if_due("u1", now=tomorrow)
        assert outcome.daily and not outcome.monthly

        record = limiter.get_usage("u1", now=tomorrow).record
        assert record.counters["academicGenerationsToday"] == 0
        assert record.counters["chatMessagesToday"] == 0
        assert record.counters["presentationsCreated"] == 2
        assert record.last_daily_reset == tomorrow
        assert record.last_monthly_reset == NOW

    def test_monthly_reset_zeroes_everything(self, limiter):
        created = datetime(2024, 1, 31, 23, 0)
        limiter.ensure_user("u1", now=created)
        limiter.sync_usage("u1", {name: 1 for name in COUNTERS}, now=created)

        next_month = datetime(2024, 2, 1, 0, 5)
        outcome = limiter.reset_if_due("u1", now=next_month)
        assert outcome.monthly and outcome.daily

        record = limiter.get_usage("u1", now=next_month).record
        assert all(v == 0 for v in record.counters.values())
        assert record.last_daily_reset == next_month
        assert record.last_monthly_reset == next_month

    def test_no_reset_within_same_day(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"chatMessagesToday": 3}, now=NOW)
        outcome = limiter.reset_if_due("u1", now=datetime(2024, 3, 10, 23, 59))
        assert not outcome.daily and not outcome.monthly
        assert _counters(limiter, "u1")["chatMessagesToday"] == 3

    def test_reset_applies_once(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        tomorrow = datetime(2024, 3, 11, 9, 0)
        assert limiter.reset_if_due("u1", now=tomorrow).daily
        assert not limiter.reset_if_due("u1", now=tomorrow).daily

    def test_inactive_user_catches_up(self, limiter):
        limiter.ensure_user("u1", now=datetime(2023, 6, 1))
        limiter.sync_usage("u1", {"presentationsCreated": 3}, now=datetime(2023, 6, 1))
        assert _counters(limiter, "u1")["presentationsCreated"] == 0

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.reset_if_due("ghost", now=NOW)


class TestForcedResets:
    def test_reset_daily_is_idempotent(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"chatMessagesToday": 5, "dalleImagesUsed": 1}, now=NOW)
        limiter.reset_daily("u1", now=NOW)
        limiter.reset_daily("u1", now=NOW)
        counters = _counters(limiter, "u1")
        assert counters["chatMessagesToday"] == 0
        assert counters["dalleImagesUsed"] == 1

    def test_reset_monthly(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"dalleImagesUsed": 1, "chatMessagesToday": 2}, now=NOW)
        limiter.reset_monthly("u1", now=NOW)
        assert all(v == 0 for v in _counters(limiter, "u1").values())

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.reset_daily("ghost")
        with pytest.raises(NotFoundError):
            limiter.reset_monthly("ghost")


class TestCheckLimit:
    def test_allowed_below_limit(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 2}, now=NOW)
        check = limiter.check_limit("u1", "presentationsCreated", now=NOW)
        assert check.allowed
        assert (check.current, check.limit) == (2, 3)

    def test_tie_is_not_allowed(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 3}, now=NOW)
        assert not limiter.check_limit("u1", "presentationsCreated", now=NOW).allowed

    def test_zero_ceiling_never_allows(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        assert not limiter.check_limit("u1", "dalleImagesUsed", now=NOW).allowed

    def test_unlimited_always_allows(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.STARTER, now=NOW)
        limiter.sync_usage("u1", {"chatMessagesToday": 100}, now=NOW)
        limiter.sync_usage("u1", {"chatMessagesToday": 100}, now=NOW)
        check = limiter.check_limit("u1", "chat_message", now=NOW)
        assert check.allowed and check.unlimited
        assert check.current == 200

    def test_accepts_action_names(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        check = limiter.check_limit("u1", "plagiarism_check", now=NOW)
        assert check.counter == "plagiarismChecksUsed"

    def test_check_does_not_consume(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.check_limit("u1", "presentationsCreated", now=NOW)
        assert _counters(limiter, "u1")["presentationsCreated"] == 0

    def test_unknown_counter(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        with pytest.raises(ValidationError):
            limiter.check_limit("u1", "tokensUsed", now=NOW)

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.check_limit("ghost", "presentationsCreated", now=NOW)


class TestCheckAndConsume:
    def test_consumes_until_limit(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        results = [limiter.check_and_consume("u1", "presentation", now=NOW) for _ in range(5)]
        assert [r.allowed for r in results] == [True, True, True, False, False]
        assert results[-1].current == 3
        assert _counters(limiter, "u1")["presentationsCreated"] == 3

    def test_amount_that_would_overshoot_is_refused(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"academicGenerationsToday": 4}, now=NOW)
        check = limiter.check_and_consume("u1", "academic_generation", amount=2, now=NOW)
        assert not check.allowed
        assert check.current == 4
        assert limiter.check_and_consume("u1", "academic_generation", amount=1, now=NOW).allowed

    def test_unlimited_counter(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.PRO, now=NOW)
        check = limiter.check_and_consume("u1", "chat_message", amount=50, now=NOW)
        assert check.allowed and check.current == 50

    def test_concurrent_consume_never_exceeds_limit(self, limiter):
        limiter.ensure_user("u1", now=NOW)

        def consume(_):
            return limiter.check_and_consume("u1", "presentation", now=NOW).allowed

        with ThreadPoolExecutor(max_workers=8) as pool:
            allowed = list(pool.map(consume, range(20)))

        assert sum(allowed) == 3
        assert _counters(limiter, "u1")["presentationsCreated"] == 3

    @pytest.mark.parametrize("amount", [-1, 101, 1.5, True, "1"])
    def test_invalid_amount(self, limiter, amount):
        limiter.ensure_user("u1", now=NOW)
        with pytest.raises(ValidationError):
            limiter.check_and_consume("u1", "presentation", amount=amount, now=NOW)

    def test_zero_amount_on_exhausted_quota_is_refused(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        check = limiter.check_and_consume("u1", "dalle_image", amount=0, now=NOW)
        assert not check.allowed
        assert (check.current, check.limit) == (0, 0)
        assert check == limiter.check_limit("u1", "dalle_image", now=NOW)

    def test_zero_amount_at_tie_is_refused(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 3}, now=NOW)
        assert not limiter.check_and_consume("u1", "presentation", amount=0, now=NOW).allowed

    def test_zero_amount_within_quota_consumes_nothing(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        check = limiter.check_and_consume("u1", "presentation", amount=0, now=NOW)
        assert check.allowed and check.current == 0
        assert _counters(limiter, "u1")["presentationsCreated"] == 0

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.check_and_consume("ghost", "presentation", now=NOW)


class TestSyncUsage:
    def test_applies_valid_entries(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        result = limiter.sync_usage("u1", {"presentationsCreated": 1, "chatMessagesToday": 4}, now=NOW)
        assert result.applied == {"presentationsCreated": 1, "chatMessagesToday": 4}
        assert result.skipped == {}

    def test_mixed_batch_applies_only_valid(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        result = limiter.sync_usage("u1", {
            "presentationsCreated": 2,
            "plan": 1,
            "dalleImagesUsed": 500,
            "chatMessagesToday": "3",
        }, now=NOW)
        assert result.applied == {"presentationsCreated": 2}
        assert result.skipped == {
            "plan": "unknown counter",
            "dalleImagesUsed": "invalid amount",
            "chatMessagesToday": "invalid amount",
        }
        counters = _counters(limiter, "u1")
        assert counters["presentationsCreated"] == 2
        assert counters["dalleImagesUsed"] == 0
        assert counters["chatMessagesToday"] == 0

    @pytest.mark.parametrize("amount", [-1, 101, 2.5, None, True, False, "1"])
    def test_invalid_amounts_leave_counter_unchanged(self, limiter, amount):
        limiter.ensure_user("u1", now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 1}, now=NOW)
        result = limiter.sync_usage("u1", {"presentationsCreated": amount}, now=NOW)
        assert result.applied == {}
        assert _counters(limiter, "u1")["presentationsCreated"] == 1

    @pytest.mark.parametrize("amount", [0, 100])
    def test_amount_bounds_are_inclusive(self, limiter, amount):
        limiter.ensure_user("u1", now=NOW)
        result = limiter.sync_usage("u1", {"presentationsCreated": amount}, now=NOW)
        assert result.applied == {"presentationsCreated": amount}

    def test_unknown_counter_leaves_state_unchanged(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        before = _counters(limiter, "u1")
        result = limiter.sync_usage("u1", {"tokensUsed": 5}, now=NOW)
        assert result.skipped == {"tokensUsed": "unknown counter"}
        assert _counters(limiter, "u1") == before

    @pytest.mark.parametrize("increments", [None, [], "presentationsCreated", 5])
    def test_non_mapping_payload(self, limiter, increments):
        limiter.ensure_user("u1", now=NOW)
        with pytest.raises(ValidationError):
            limiter.sync_usage("u1", increments, now=NOW)

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.sync_usage("ghost", {"presentationsCreated": 1}, now=NOW)


class TestRecordUsage:
    def test_records_single_counter(self, limiter):
        limiter.ensure_user("u1")
        result = limiter.record_usage("u1", "dalleImagesUsed", 2)
        assert result.applied == {"dalleImagesUsed": 2}

    def test_unlisted_counter_is_ignored(self, limiter):
        limiter.ensure_user("u1")
        result = limiter.record_usage("u1", "credits", 2)
        assert result.applied == {}
        assert "credits" in result.skipped


class TestIncrement:
    def test_reports_previous_and_new(self, limiter):
        limiter.ensure_user("u1")
        limiter.increment("u1", "plagiarismChecksUsed", 2)
        result = limiter.increment("u1", "plagiarismChecksUsed", 3)
        assert (result.previous_value, result.new_value, result.applied) == (2, 5, True)

    def test_zero_is_a_successful_no_op(self, limiter):
        limiter.ensure_user("u1")
        limiter.increment("u1", "plagiarismChecksUsed")
        result = limiter.increment("u1", "plagiarismChecksUsed", 0)
        assert result.applied
        assert result.previous_value == result.new_value == 1

    def test_invalid_amount_is_not_applied(self, limiter):
        limiter.ensure_user("u1")
        result = limiter.increment("u1", "plagiarismChecksUsed", 1000)
        assert not result.applied
        assert result.previous_value == result.new_value == 0

    def test_unknown_field(self, limiter):
        limiter.ensure_user("u1")
        with pytest.raises(ValidationError, match="Invalid field"):
            limiter.increment("u1", "plan", 1)

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.increment("ghost", "plagiarismChecksUsed")


class TestGetUsage:
    def test_remaining_per_counter(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.STARTER, now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 5}, now=NOW)
        snapshot = limiter.get_usage("u1", now=NOW)
        assert snapshot.plan_name == "Starter"
        assert snapshot.remaining["presentationsCreated"] == 10
        assert snapshot.remaining["chatMessagesToday"] is None

    def test_remaining_never_negative(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.PRO, now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 40}, now=NOW)
        limiter.change_plan("u1", "free")
        assert limiter.get_usage("u1", now=NOW).remaining["presentationsCreated"] == 0

    def test_missing_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.get_usage("ghost")


class TestStorageFailures:
    @pytest.fixture
    def locked(self, tmp_path):
        store = LockedStore(str(tmp_path / "locked.db"))
        limiter = UsageLimiter(store)
        limiter.ensure_user("u1", now=NOW)
        yield limiter
        store.close()

    def test_sync_usage_propagates(self, locked):
        with pytest.raises(sqlite3.OperationalError):
            locked.sync_usage("u1", {"presentationsCreated": 1}, now=NOW)

    def test_increment_propagates(self, locked):
        with pytest.raises(sqlite3.OperationalError):
            locked.increment("u1", "presentationsCreated")

    def test_check_and_consume_propagates(self, locked):
        with pytest.raises(sqlite3.OperationalError):
            locked.check_and_consume("u1", "presentation", now=NOW)

    def test_closed_store(self, limiter, store):
        limiter.ensure_user("u1", now=NOW)
        store.close()
        with pytest.raises(sqlite3.Error):
            limiter.sync_usage("u1", {"presentationsCreated": 1}, now=NOW)


class TestSubscriptionLapse:
    @pytest.mark.parametrize("status", [SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED])
    def test_lapsed_status_falls_back_to_free(self, limiter, store, status):
        limiter.ensure_user("u1", now=NOW)
        store.set_subscription("u1", SubscriptionPlan.PRO, status)

        outcome = limiter.reset_if_due("u1", now=NOW)
        assert outcome.downgraded

        record = limiter.get_usage("u1", now=NOW).record
        assert record.plan is SubscriptionPlan.FREE
        assert record.status is SubscriptionStatus.ACTIVE

    def test_past_expiry_falls_back_to_free(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.change_plan("u1", "premium", expires_at=NOW + timedelta(days=30))
        assert limiter.get_usage("u1", now=NOW + timedelta(days=29)).plan_name == "Premium"

        snapshot = limiter.get_usage("u1", now=NOW + timedelta(days=30))
        assert snapshot.record.plan is SubscriptionPlan.FREE
        assert snapshot.record.expires_at is None

    def test_counters_survive_downgrade(self, limiter, store):
        limiter.ensure_user("u1", SubscriptionPlan.PRO, now=NOW)
        limiter.sync_usage("u1", {"presentationsCreated": 10}, now=NOW)
        store.set_subscription("u1", SubscriptionPlan.PRO, SubscriptionStatus.EXPIRED)

        check = limiter.check_limit("u1", "presentation", now=NOW)
        assert (check.allowed, check.current, check.limit) == (False, 10, 3)

    def test_consume_uses_free_limits_after_cancel(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.STARTER, now=NOW)
        limiter.cancel_subscription("u1")
        check = limiter.check_and_consume("u1", "dalle_image", now=NOW)
        assert not check.allowed
        assert check.limit == 0

    def test_active_subscription_is_kept(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.PRO, now=NOW)
        assert not limiter.reset_if_due("u1", now=NOW).downgraded
        assert limiter.get_usage("u1", now=NOW).record.plan is SubscriptionPlan.PRO

    def test_change_plan_reactivates(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.PRO, now=NOW)
        limiter.cancel_subscription("u1")
        record = limiter.change_plan("u1", "pro")
        assert record.status is SubscriptionStatus.ACTIVE
        assert limiter.get_usage("u1", now=NOW).record.plan is SubscriptionPlan.PRO

    def test_cancel_unknown_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.cancel_subscription("ghost")


class TestTrial:
    def test_trial_grants_pro_for_a_week(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        record = limiter.start_trial("u1", now=NOW)
        assert record.plan is SubscriptionPlan.PRO
        assert record.status is SubscriptionStatus.TRIALING
        assert record.expires_at == NOW + timedelta(days=7)
        assert limiter.check_limit("u1", "dalle_image", now=NOW).limit == 30

    def test_expired_trial_falls_back_to_free(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.start_trial("u1", now=NOW)
        record = limiter.get_usage("u1", now=NOW + timedelta(days=7, minutes=1)).record
        assert record.plan is SubscriptionPlan.FREE
        assert record.status is SubscriptionStatus.ACTIVE

    def test_trial_only_once(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.start_trial("u1", now=NOW)
        limiter.get_usage("u1", now=NOW + timedelta(days=8))
        with pytest.raises(ValidationError, match="already used"):
            limiter.start_trial("u1", now=NOW + timedelta(days=8))

    def test_paid_plan_cannot_start_trial(self, limiter):
        limiter.ensure_user("u1", SubscriptionPlan.STARTER, now=NOW)
        with pytest.raises(ValidationError):
            limiter.start_trial("u1", now=NOW)


class TestReferralBonus:
    def test_bonus_raises_limits(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.add_referral("u1")
        snapshot = limiter.get_usage("u1", now=NOW)
        assert snapshot.limits["presentationsCreated"] == 3 + 2
        assert snapshot.limits["dalleImagesUsed"] == 0 + 2
        assert snapshot.limits["academicWorksCreated"] == 3 + 1
        assert snapshot.limits["chatMessagesToday"] == 20
        assert snapshot.remaining["presentationsCreated"] == 5

    def test_bonus_applies_to_check_and_consume(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        assert not limiter.check_limit("u1", "dalle_image", now=NOW).allowed
        limiter.add_referral("u1")
        results = [limiter.check_and_consume("u1", "dalle_image", now=NOW) for _ in range(3)]
        assert [r.allowed for r in results] == [True, True, False]
        assert results[-1].limit == 2

    def test_bonus_survives_plan_change(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        limiter.add_referral("u1")
        limiter.change_plan("u1", "starter")
        assert limiter.check_limit("u1", "presentation", now=NOW).limit == 15 + 2

    def test_referrals_are_capped(self, limiter):
        limiter.ensure_user("u1", now=NOW)
        for _ in range(MAX_REFERRALS):
            limiter.add_referral("u1")
        with pytest.raises(ValidationError, match="Referral limit"):
            limiter.add_referral("u1")

        record = limiter.get_usage("u1", now=NOW).record
        assert record.referrals == MAX_REFERRALS
        assert record.bonus == {c: MAX_REFERRALS * n for c, n in REFERRAL_BONUS_LIMITS.items()}

    def test_unknown_user(self, limiter):
        with pytest.raises(NotFoundError):
            limiter.add_referral("ghost")
