from __future__ import annotations

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from scienceai.subscription.state import (
    COUNTERS,
    REFERRAL_BONUS_LIMITS,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageRecord,
    resolve_plan,
    resolve_status,
)


def _column(counter: str) -> str:
    """Quote a counter name for SQL. Only allow-listed names are accepted."""
    if counter not in COUNTERS:
        raise ValueError(f"Unknown usage counter: {counter}")
    return f'"{counter}"'


def _bonus_column(counter: str) -> str:
    if counter not in REFERRAL_BONUS_LIMITS:
        raise ValueError(f"No referral bonus for counter: {counter}")
    return f'"bonus_{counter}"'


# Columns added after the first release, created on open when missing
_SUBSCRIPTION_COLUMNS = {
    "subscription_status": "TEXT NOT NULL DEFAULT 'active'",
    "subscription_expires_at": "TEXT",
    "referral_count": "INTEGER NOT NULL DEFAULT 0",
    "trial_used": "INTEGER NOT NULL DEFAULT 0",
    **{f"bonus_{c}": "INTEGER NOT NULL DEFAULT 0" for c in REFERRAL_BONUS_LIMITS},
}


class UsageStore:
    """SQLite store holding one usage row per user.

    Every counter mutation is a single UPDATE statement so concurrent
    increments are never lost.
    """

    def __init__(self, db_path: str = "./data/usage.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_tables()

    def _init_tables(self) -> None:
        counter_columns = ",\n".join(
            f"{_column(c)} INTEGER NOT NULL DEFAULT 0 CHECK ({_column(c)} >= 0)"
            for c in COUNTERS
        )
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS user_usage (
                    user_id TEXT PRIMARY KEY,
                    plan TEXT NOT NULL DEFAULT 'free',
                    {counter_columns},
                    last_daily_reset TEXT NOT NULL,
                    last_monthly_reset TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self._migrate_subscription_columns(cursor)
            self.conn.commit()

    def _migrate_subscription_columns(self, cursor) -> None:
        """Add subscription and referral columns to tables created without them."""
        cursor.execute("PRAGMA table_info(user_usage)")
        columns = [row[1] for row in cursor.fetchall()]
        for name, definition in _SUBSCRIPTION_COLUMNS.items():
            if name not in columns:
                cursor.execute(f'ALTER TABLE user_usage ADD COLUMN "{name}" {definition}')

    def create_user(
        self,
        user_id: str,
        plan: SubscriptionPlan = SubscriptionPlan.FREE,
        now: Optional[datetime] = None,
    ) -> bool:
        """Create a usage row for a user. Returns False if one already exists."""
        stamp = (now or datetime.utcnow()).isoformat()
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                INSERT OR IGNORE INTO user_usage (user_id, plan, last_daily_reset, last_monthly_reset)
                VALUES (?, ?, ?, ?)
            """, (user_id, resolve_plan(plan).value, stamp, stamp))
            self.conn.commit()
            return cursor.rowcount == 1

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        """Load a user's usage row, or None if the user is unknown."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM user_usage WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        expires_at = row["subscription_expires_at"]
        return UsageRecord(
            user_id=row["user_id"],
            plan=resolve_plan(row["plan"]),
            counters={c: int(row[c]) for c in COUNTERS},
            last_daily_reset=datetime.fromisoformat(row["last_daily_reset"]),
            last_monthly_reset=datetime.fromisoformat(row["last_monthly_reset"]),
            status=resolve_status(row["subscription_status"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            bonus={c: int(row[f"bonus_{c}"]) for c in REFERRAL_BONUS_LIMITS},
            referrals=int(row["referral_count"]),
            trial_used=bool(row["trial_used"]),
        )

    def get_counter(self, user_id: str, counter: str) -> Optional[int]:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                f"SELECT {_column(counter)} AS value FROM user_usage WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        return int(row["value"]) if row else None

    def increment(self, user_id: str, counter: str, amount: int) -> Optional[int]:
        """Atomically add `amount` to a counter and return the new value."""
        col = _column(counter)
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                UPDATE user_usage
                SET {col} = {col} + ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ?
            """, (amount, user_id))
            if cursor.rowcount == 0:
                self.conn.rollback()
                return None
            cursor.execute(f"SELECT {col} AS value FROM user_usage WHERE user_id = ?", (user_id,))
            value = int(cursor.fetchone()["value"])
            self.conn.commit()
        return value

    def increment_within_limit(
        self, user_id: str, counter: str, amount: int, limit: int
    ) -> Optional[int]:
        """Add `amount` only if the result stays within `limit`.

        Returns the new value, or None when the update was refused.
        """
        col = _column(counter)
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                UPDATE user_usage
                SET {col} = {col} + ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ? AND {col} + ? <= ?
            """, (amount, user_id, amount, limit))
            if cursor.rowcount == 0:
                self.conn.rollback()
                return None
            cursor.execute(f"SELECT {col} AS value FROM user_usage WHERE user_id = ?", (user_id,))
            value = int(cursor.fetchone()["value"])
            self.conn.commit()
        return value

    def reset_counters(
        self,
        user_id: str,
        counters: Iterable[str],
        daily_reset: Optional[datetime] = None,
        monthly_reset: Optional[datetime] = None,
        if_daily_reset: Optional[datetime] = None,
        if_monthly_reset: Optional[datetime] = None,
    ) -> bool:
        """Zero the given counters and update reset timestamps.

        `if_daily_reset` / `if_monthly_reset` make the reset conditional on the
        stored timestamp still matching, so two requests racing on the same
        boundary reset once.
        """
        assignments = [f"{_column(c)} = 0" for c in counters]
        params: list = []
        if daily_reset is not None:
            assignments.append("last_daily_reset = ?")
            params.append(daily_reset.isoformat())
        if monthly_reset is not None:
            assignments.append("last_monthly_reset = ?")
            params.append(monthly_reset.isoformat())
        if not assignments:
            return False
        assignments.append("updated_at = CURRENT_TIMESTAMP")

        where = ["user_id = ?"]
        params.append(user_id)
        if if_daily_reset is not None:
            where.append("last_daily_reset = ?")
            params.append(if_daily_reset.isoformat())
        if if_monthly_reset is not None:
            where.append("last_monthly_reset = ?")
            params.append(if_monthly_reset.isoformat())

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                f"UPDATE user_usage SET {', '.join(assignments)} WHERE {' AND '.join(where)}",
                params,
            )
            self.conn.commit()
            return cursor.rowcount == 1

    def set_subscription(
        self,
        user_id: str,
        plan: SubscriptionPlan,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        expires_at: Optional[datetime] = None,
        mark_trial_used: bool = False,
        if_trial_unused: bool = False,
    ) -> bool:
        """Replace a user's plan, status and expiry.

        With `if_trial_unused` the update only applies to users who have not
        started a trial before, so a trial can be claimed once.
        """
        assignments = [
            "plan = ?",
            "subscription_status = ?",
            "subscription_expires_at = ?",
            "updated_at = CURRENT_TIMESTAMP",
        ]
        params: list = [
            plan.value,
            status.value,
            expires_at.isoformat() if expires_at else None,
        ]
        if mark_trial_used:
            assignments.append("trial_used = 1")

        where = "user_id = ?"
        params.append(user_id)
        if if_trial_unused:
            where += " AND trial_used = 0"

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"UPDATE user_usage SET {', '.join(assignments)} WHERE {where}", params)
            self.conn.commit()
            return cursor.rowcount == 1

    def add_referral_bonus(self, user_id: str, max_referrals: int) -> Optional[int]:
        """Credit one referral and its bonus limits in a single update.

        Returns the new referral count, or None when the user is unknown or
        already at `max_referrals`.
        """
        assignments = ["referral_count = referral_count + 1"]
        params: list = []
        for counter, extra in REFERRAL_BONUS_LIMITS.items():
            col = _bonus_column(counter)
            assignments.append(f"{col} = {col} + ?")
            params.append(extra)
        assignments.append("updated_at = CURRENT_TIMESTAMP")
        params.extend([user_id, max_referrals])

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                UPDATE user_usage SET {', '.join(assignments)}
                WHERE user_id = ? AND referral_count < ?
            """, params)
            if cursor.rowcount == 0:
                self.conn.rollback()
                return None
            cursor.execute("SELECT referral_count FROM user_usage WHERE user_id = ?", (user_id,))
            value = int(cursor.fetchone()["referral_count"])
            self.conn.commit()
        return value

    def count_users(self) -> int:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM user_usage")
            return cursor.fetchone()[0]

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
