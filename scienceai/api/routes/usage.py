"""Usage tracking API routes."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from scienceai.api.deps import get_current_user_id, get_limiter, http_error
from scienceai.errors import ScienceAIError
from scienceai.subscription.limiter import UsageLimiter
from scienceai.subscription.state import LimitCheck, is_unlimited

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


class UsageResponse(BaseModel):
    plan: str
    planName: str
    counters: Dict[str, int]
    limits: Dict[str, Union[int, str]]
    remaining: Dict[str, Optional[int]]
    lastResetDate: str
    lastMonthlyReset: str
    status: str
    expiresAt: Optional[str] = None
    bonusLimits: Dict[str, int]
    referrals: int


class SyncRequest(BaseModel):
    increments: Any = None


class SyncResponse(BaseModel):
    applied: Dict[str, int]
    skipped: Dict[str, str]
    usage: UsageResponse


class IncrementRequest(BaseModel):
    field: str
    amount: Any = 1


class IncrementResponse(BaseModel):
    field: str
    previousValue: int
    newValue: int
    applied: bool


class ActionRequest(BaseModel):
    action: str
    # Left untyped; the limiter rejects bools and floats
    amount: Any = 1


class LimitCheckResponse(BaseModel):
    allowed: bool
    current: int
    limit: Union[int, str]
    counter: str


class MessageResponse(BaseModel):
    success: bool
    message: str


def _usage_response(limiter: UsageLimiter, user_id: str) -> UsageResponse:
    snapshot = limiter.get_usage(user_id)
    record = snapshot.record
    return UsageResponse(
        plan=record.plan.value,
        planName=snapshot.plan_name,
        counters=record.counters,
        limits={
            name: "unlimited" if is_unlimited(limit) else limit
            for name, limit in snapshot.limits.items()
        },
        remaining=snapshot.remaining,
        lastResetDate=record.last_daily_reset.isoformat(),
        lastMonthlyReset=record.last_monthly_reset.isoformat(),
        status=record.status.value,
        expiresAt=record.expires_at.isoformat() if record.expires_at else None,
        bonusLimits=record.bonus,
        referrals=record.referrals,
    )


def _check_response(check: LimitCheck) -> LimitCheckResponse:
    return LimitCheckResponse(**check.to_dict())


def _storage_failure(action: str) -> HTTPException:
    logger.exception("[usage] %s failed", action)
    return HTTPException(status_code=500, detail=f"Failed to {action}")


@router.get("", response_model=UsageResponse)
@router.get("/sync", response_model=UsageResponse)
def get_usage(
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    """Current counters, reset timestamps and plan limits."""
    try:
        return _usage_response(limiter, user_id)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("get usage data")


@router.post("/sync", response_model=SyncResponse)
def sync_usage(
    body: SyncRequest,
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    """Apply a batch of increments; invalid entries are skipped and reported."""
    try:
        result = limiter.sync_usage(user_id, body.increments)
        return SyncResponse(
            applied=result.applied,
            skipped=result.skipped,
            usage=_usage_response(limiter, user_id),
        )
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("sync usage data")


@router.post("/increment", response_model=IncrementResponse)
def increment_usage(
    body: IncrementRequest,
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    try:
        result = limiter.increment(user_id, body.field, body.amount)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("increment usage")

    return IncrementResponse(
        field=result.field,
        previousValue=result.previous_value,
        newValue=result.new_value,
        applied=result.applied,
    )


@router.post("/check", response_model=LimitCheckResponse)
def check_limit(
    body: ActionRequest,
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    """Report whether an action is within quota without consuming it."""
    try:
        return _check_response(limiter.check_limit(user_id, body.action))
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("check usage limit")


@router.post("/consume", response_model=LimitCheckResponse)
def consume(
    body: ActionRequest,
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    """Atomically check and consume quota for an action. 429 when exhausted."""
    try:
        check = limiter.check_and_consume(user_id, body.action, body.amount)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("consume usage")

    if not check.allowed:
        raise HTTPException(status_code=429, detail=check.to_dict())
    return _check_response(check)


@router.post("/reset-daily", response_model=MessageResponse)
def reset_daily(
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    try:
        limiter.reset_daily(user_id)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("reset daily counters")
    return MessageResponse(success=True, message="Daily counters reset")


@router.post("/reset-monthly", response_model=MessageResponse)
def reset_monthly(
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    try:
        limiter.reset_monthly(user_id)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("reset monthly counters")
    return MessageResponse(success=True, message="Monthly counters reset")


@router.post("/trial", response_model=UsageResponse)
def start_trial(
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    """Start the one-time trial of the Pro plan."""
    try:
        limiter.start_trial(user_id)
        return _usage_response(limiter, user_id)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("start trial")


@router.post("/cancel", response_model=UsageResponse)
def cancel_subscription(
    user_id: str = Depends(get_current_user_id),
    limiter: UsageLimiter = Depends(get_limiter),
):
    """Cancel the subscription; the user drops to the free plan."""
    try:
        limiter.cancel_subscription(user_id)
        return _usage_response(limiter, user_id)
    except ScienceAIError as e:
        raise http_error(e)
    except sqlite3.Error:
        raise _storage_failure("cancel subscription")
