# This project was developed with assistance from AI tools.
"""Role lookup and privileged-action checks.

Roles live in the ``user_roles`` table as flat (user, role) pairs. A store
failure while resolving roles yields the empty set, so every privileged
check fails closed.
"""

import logging

from db import UserRoleAssignment
from db.enums import AppRole
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import has_any_role, is_admin, is_admin_only
from ..schemas.auth import UserContext

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("loanflow.security")


class AuthorizationError(PermissionError):
    """Raised when the caller lacks the role a privileged action requires."""

    def __init__(self, message: str, *, action: str | None = None, user_id: str | None = None):
        super().__init__(message)
        self.action = action
        self.user_id = user_id


async def get_user_roles(session: AsyncSession, user_id: str) -> frozenset[AppRole]:
    """Return every role granted to ``user_id``; empty on store failure."""
    try:
        result = await session.execute(
            select(UserRoleAssignment.role).where(UserRoleAssignment.user_id == user_id)
        )
        return frozenset(result.scalars().all())
    except SQLAlchemyError as exc:
        logger.error("Role lookup failed for user %s: %s", user_id, exc)
        return frozenset()


async def require_role(session: AsyncSession, user_id: str, role: AppRole) -> bool:
    """True when ``user_id`` holds ``role`` (super_admin satisfies any role)."""
    roles = await get_user_roles(session, user_id)
    return has_any_role(roles, {role})


def authorize_action(user: UserContext | None, action: str) -> None:
    """Raise AuthorizationError when ``action`` is admin-only and ``user`` is not an admin.

    Every denial is logged on the security logger, separately from the
    audit trail.
    """
    if not is_admin_only(action):
        return
    if user is not None and is_admin(user.roles):
        return
    user_id = user.user_id if user else None
    security_logger.warning(
        "Admin role check failed for user %s. Action %s requires admin access.",
        user_id or "anonymous",
        action,
    )
    raise AuthorizationError(
        f"Admin access required for action '{action}'", action=action, user_id=user_id,
    )


async def grant_role(
    session: AsyncSession, user_id: str, role: AppRole, *, granted_by: str,
) -> bool:
    """Grant ``role``; returns False if the user already holds it."""
    existing = await session.execute(
        select(UserRoleAssignment).where(
            UserRoleAssignment.user_id == user_id, UserRoleAssignment.role == role,
        )
    )
    if existing.scalar_one_or_none() is not None:
        return False
    session.add(UserRoleAssignment(user_id=user_id, role=role, granted_by=granted_by))
    await session.flush()
    return True


async def revoke_role(session: AsyncSession, user_id: str, role: AppRole) -> bool:
    """Revoke ``role``; returns False if the user did not hold it."""
    result = await session.execute(
        delete(UserRoleAssignment).where(
            UserRoleAssignment.user_id == user_id, UserRoleAssignment.role == role,
        )
    )
    return (result.rowcount or 0) > 0
