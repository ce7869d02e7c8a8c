from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from scienceai import __version__
from scienceai.api.deps import get_limiter
from scienceai.subscription.limiter import UsageLimiter

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    database_ready: bool
    tracked_users: int


@router.get("/health", response_model=HealthResponse)
def health_check(limiter: UsageLimiter = Depends(get_limiter)):
    """Check that the usage database is reachable."""
    try:
        tracked_users = limiter.store.count_users()
        database_ready = True
    except sqlite3.Error:
        logger.exception("Usage database health check failed")
        tracked_users = 0
        database_ready = False

    return HealthResponse(
        status="ok" if database_ready else "degraded",
        version=__version__,
        database_ready=database_ready,
        tracked_users=tracked_users,
    )
