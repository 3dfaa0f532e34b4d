# This project was developed with assistance from AI tools.
"""Fixed-window rate limiter backed by the ``rate_limit_windows`` table.

Each check is one atomic ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``
statement: either a fresh window is opened or the current window's counter
is incremented, and ``blocked_until`` is stamped once the budget is spent.
Store errors and timeouts fail open.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from db import RateLimitWindow, dialect_name
from sqlalchemy import case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


DEFAULT_RULE = RateLimitRule(max_requests=60, window_seconds=60)

RATE_LIMITS: dict[str, RateLimitRule] = {
    "loan-application:validate": RateLimitRule(30, 60),
    "loan-application:process": RateLimitRule(10, 3600),
    "loan-application:updateStatus": RateLimitRule(100, 60),
    "loan-application:calculate-eligibility": RateLimitRule(20, 60),
    "notification-service:send": RateLimitRule(50, 60),
    "notification-service:send-bulk": RateLimitRule(10, 60),
    "notification-service:get-templates": RateLimitRule(30, 60),
    "notification-service:application-status-change": RateLimitRule(100, 60),
    "notification-service:loan-funded": RateLimitRule(20, 60),
    "notification-service:send-external": RateLimitRule(30, 60),
    "admin:update-status": RateLimitRule(100, 60),
    "admin:batch-update-status": RateLimitRule(10, 60),
    "admin:assign": RateLimitRule(60, 60),
    "admin:manage-roles": RateLimitRule(30, 60),
    "admin:export": RateLimitRule(10, 60),
    "audit:record": RateLimitRule(120, 60),
}


def rule_for(endpoint: str) -> RateLimitRule:
    return RATE_LIMITS.get(endpoint, DEFAULT_RULE)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining_requests: int
    reset_at: datetime
    current_count: int
    limit: int

    def retry_after(self, now: datetime | None = None) -> int:
        """Whole seconds until the window resets; 60 when already past."""
        now = now or datetime.now(UTC)
        seconds = math.ceil((self.reset_at - now).total_seconds())
        return seconds if seconds > 0 else 60

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining_requests),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }


class RateLimitExceededError(Exception):
    """Raised when a caller has spent the budget for an endpoint."""

    def __init__(self, endpoint: str, result: RateLimitResult):
        super().__init__(f"Rate limit exceeded for {endpoint}")
        self.endpoint = endpoint
        self.result = result


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored value is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def build_window_upsert(
    dialect: str,
    identifier: str,
    endpoint: str,
    *,
    now: datetime,
    max_requests: int,
    window_seconds: int,
):
    """Build the atomic open-or-increment statement for ``dialect``.

    Returns rows of (request_count, window_end) for the post-increment state.
    """
    insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
    table = RateLimitWindow.__table__
    new_end = now + timedelta(seconds=window_seconds)

    stmt = insert_fn(table).values(
        identifier=identifier,
        endpoint=endpoint,
        window_start=now,
        window_end=new_end,
        request_count=1,
        blocked_until=new_end if max_requests < 1 else None,
        created_at=now,
    )
    excluded = stmt.excluded
    window_active = table.c.window_end > now
    new_count = case((window_active, table.c.request_count + 1), else_=1)
    effective_end = case((window_active, table.c.window_end), else_=excluded.window_end)

    return stmt.on_conflict_do_update(
        index_elements=[table.c.identifier, table.c.endpoint],
        set_={
            "request_count": new_count,
            "window_start": case((window_active, table.c.window_start), else_=excluded.window_start),
            "window_end": effective_end,
            "blocked_until": case((new_count > max_requests, effective_end), else_=None),
        },
    ).returning(table.c.request_count, table.c.window_end)


def _fail_open(now: datetime) -> RateLimitResult:
    return RateLimitResult(
        allowed=True, remaining_requests=1, reset_at=now, current_count=0, limit=0,
    )


async def check_rate_limit(
    session: AsyncSession,
    identifier: str,
    endpoint: str,
    *,
    rule: RateLimitRule | None = None,
    now: datetime | None = None,
) -> RateLimitResult:
    """Count one request against ``(identifier, endpoint)`` and report the outcome.

    The increment is committed immediately so it survives a later failure
    of the request it guards.
    """
    rule = rule or rule_for(endpoint)
    now = now or datetime.now(UTC)
    stmt = build_window_upsert(
        dialect_name(session),
        identifier,
        endpoint,
        now=now,
        max_requests=rule.max_requests,
        window_seconds=rule.window_seconds,
    )

    try:
        async with asyncio.timeout(settings.STORE_TIMEOUT_SECONDS):
            result = await session.execute(stmt)
            count, window_end = result.one()
            await session.commit()
    except (SQLAlchemyError, TimeoutError) as exc:
        logger.error("Rate limit store unavailable for %s, failing open: %s", endpoint, exc)
        await session.rollback()
        return _fail_open(now)

    return RateLimitResult(
        allowed=count <= rule.max_requests,
        remaining_requests=max(0, rule.max_requests - count),
        reset_at=_as_utc(window_end),
        current_count=count,
        limit=rule.max_requests,
    )
