# This project was developed with assistance from AI tools.
"""Pure auth utility functions with no FastAPI or HTTP dependencies.

Roles are a flat set; every check is set membership. ``super_admin``
satisfies any role requirement.
"""

from collections.abc import Iterable

from db.enums import AppRole

ADMIN_ROLES: frozenset[AppRole] = frozenset({AppRole.ADMIN, AppRole.SUPER_ADMIN})

# Actions that only an admin may perform, across every action-dispatch endpoint.
ADMIN_ONLY_ACTIONS: frozenset[str] = frozenset(
    {
        "loan-funded",
        "send-bulk",
        "send-external",
        "updateStatus",
        "update-status",
        "batch-update-status",
        "assign",
        "manage-roles",
        "export",
    }
)


def has_any_role(roles: Iterable[AppRole], required: Iterable[AppRole]) -> bool:
    """True when ``roles`` contains any of ``required`` (or super_admin)."""
    held = set(roles)
    if AppRole.SUPER_ADMIN in held:
        return True
    return not held.isdisjoint(required)


def is_admin(roles: Iterable[AppRole]) -> bool:
    return has_any_role(roles, ADMIN_ROLES)


def is_admin_only(action: str) -> bool:
    return action in ADMIN_ONLY_ACTIONS
