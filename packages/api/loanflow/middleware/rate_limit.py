# This project was developed with assistance from AI tools.
"""Request-level rate limiting.

Routes call ``enforce_rate_limit`` with the endpoint key for the action
being performed (``loan-application:process``, ``admin:assign`` ...).
Allowed calls get ``X-RateLimit-*`` headers on the response; rejected
calls raise ``RateLimitExceededError``, which ``main`` turns into a 429.
"""

import hashlib
import logging

from db.enums import AuditAction
from fastapi import Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..schemas.auth import UserContext
from ..services.audit import write_audit_event
from ..services.rate_limit import RateLimitExceededError, RateLimitResult, check_rate_limit
from ..services.side_effects import fire_and_log

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def hash_ip(ip: str) -> str:
    digest = hashlib.sha256(f"{settings.RATE_LIMIT_IP_SALT}:{ip}".encode()).hexdigest()
    return digest[:32]


def rate_limit_identifier(request: Request, user: UserContext | None) -> str:
    """Authenticated user id, else a salted hash of the client IP."""
    if user is not None:
        return user.user_id
    return f"ip:{hash_ip(client_ip(request))}"


async def _record_rejection(
    session: AsyncSession,
    request: Request,
    user: UserContext | None,
    endpoint: str,
    identifier: str,
    result: RateLimitResult,
) -> None:
    area, _, action = endpoint.partition(":")
    await write_audit_event(
        session,
        action=AuditAction.RATE_LIMIT_EXCEEDED,
        resource_type="rate_limit",
        resource_id=endpoint,
        user_id=user.user_id if user else None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details={
            "endpoint": area,
            "action": action,
            "identifier": identifier,
            "currentCount": result.current_count,
        },
    )
    # The request is about to fail; commit so the entry outlives its rollback.
    await session.commit()


async def enforce_rate_limit(
    session: AsyncSession,
    request: Request,
    response: Response | None,
    user: UserContext | None,
    endpoint: str,
) -> RateLimitResult:
    """Count this request against ``endpoint``; raise RateLimitExceededError when over budget."""
    identifier = rate_limit_identifier(request, user)
    result = await check_rate_limit(session, identifier, endpoint)

    if not result.allowed:
        logger.warning(
            "Rate limit exceeded: endpoint=%s identifier=%s count=%d",
            endpoint,
            identifier,
            result.current_count,
        )
        await fire_and_log(
            _record_rejection(session, request, user, endpoint, identifier, result),
            name="rate-limit audit",
        )
        raise RateLimitExceededError(endpoint, result)

    if response is not None and result.limit:
        response.headers.update(result.headers())
    return result
