# This project was developed with assistance from AI tools.
"""
Bearer-token authentication and role resolution.

Tokens are verified with PyJWT, either against an identity provider's JWKS
endpoint (RS256) or a shared secret (HS256). The token only yields the
caller's identity; roles are always read from the ``user_roles`` table.

Set AUTH_DISABLED=true to bypass validation (tests / local dev).
"""

import logging
import time
from typing import Annotated

import httpx
import jwt
from db import get_db
from db.enums import AppRole
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import has_any_role
from ..core.config import settings
from ..schemas.auth import TokenPayload, UserContext
from ..services.authorization import get_user_roles

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("loanflow.security")

# ---------------------------------------------------------------------------
# JWKS cache
# ---------------------------------------------------------------------------

_jwks_data: dict | None = None
_jwks_fetched_at: float = 0


def _fetch_jwks() -> dict:
    """Fetch the JSON Web Key Set. Raises on failure."""
    response = httpx.get(settings.JWKS_URL, timeout=5)
    response.raise_for_status()
    return response.json()


def _get_jwks(force_refresh: bool = False) -> dict:
    """Return cached JWKS, refreshing if stale or forced."""
    global _jwks_data, _jwks_fetched_at  # noqa: PLW0603

    now = time.time()
    if _jwks_data is None or force_refresh or (now - _jwks_fetched_at) > settings.JWKS_CACHE_TTL:
        _jwks_data = _fetch_jwks()
        _jwks_fetched_at = now

    return _jwks_data


def _get_signing_key(token: str) -> jwt.PyJWK:
    """Find the signing key for the given token from the JWKS."""
    try:
        kid = jwt.get_unverified_header(token).get("kid")
        for force in (False, True):
            jwk_set = jwt.PyJWKSet.from_dict(_get_jwks(force_refresh=force))
            for key in jwk_set.keys:
                if key.key_id == kid:
                    return key
        raise jwt.InvalidTokenError(f"No matching key found for kid={kid}")

    except httpx.HTTPError as exc:
        logger.error("Failed to fetch JWKS: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from exc


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------

def _extract_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("Authorization")
    if auth and auth.startswith("Bearer "):
        return auth[7:]
    return None


def _decode_token(token: str) -> TokenPayload:
    """Validate and decode a JWT."""
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    if settings.JWKS_URL:
        signing_key = _get_signing_key(token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    elif settings.JWT_SECRET:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    else:
        logger.error("No JWT_SECRET or JWKS_URL configured; rejecting token")
        raise jwt.InvalidTokenError("Token verification is not configured")
    return TokenPayload(**payload)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

_DISABLED_USER = UserContext(
    user_id="dev-user",
    email="dev@loanflow.local",
    name="Dev User",
    roles=frozenset({AppRole.SUPER_ADMIN}),
)


async def _authenticate(token: str, session: AsyncSession) -> UserContext:
    try:
        payload = _decode_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Invalid token") from exc

    roles = await get_user_roles(session, payload.sub)
    return UserContext(
        user_id=payload.sub,
        email=payload.email,
        name=payload.name or payload.preferred_username,
        roles=roles,
    )


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db),
) -> UserContext:
    """FastAPI dependency: validate the bearer token and return UserContext.

    When AUTH_DISABLED=true, returns a dev super-admin without token validation.
    """
    if settings.AUTH_DISABLED:
        return _DISABLED_USER

    token = _extract_token(request)
    if not token:
        raise _unauthorized("Authentication required")
    return await _authenticate(token, session)


async def get_optional_user(
    request: Request,
    session: AsyncSession = Depends(get_db),
) -> UserContext | None:
    """Like ``get_current_user`` but anonymous callers yield None."""
    if settings.AUTH_DISABLED:
        return _DISABLED_USER

    token = _extract_token(request)
    if not token:
        return None
    return await _authenticate(token, session)


# Type aliases for use in route signatures
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
OptionalUser = Annotated[UserContext | None, Depends(get_optional_user)]


def require_roles(*allowed_roles: AppRole):
    """Dependency factory: restrict a route to callers holding any of the roles.

    Usage:
        @router.get("/admin-only", dependencies=[Depends(require_roles(AppRole.ADMIN))])
    """

    async def _check(user: CurrentUser) -> UserContext:
        if not has_any_role(user.roles, allowed_roles):
            security_logger.warning(
                "RBAC denied: user=%s roles=%s attempted route requiring %s",
                user.user_id,
                sorted(r.value for r in user.roles),
                [r.value for r in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return _check


require_admin = require_roles(AppRole.ADMIN, AppRole.SUPER_ADMIN)
