"""Role checks for privileged operations. All checks fail closed."""

from __future__ import annotations

import logging

from roster_sync.domain.models import UserRole
from roster_sync.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

MANAGER_ROLES = frozenset({UserRole.ADMIN, UserRole.CAPTAIN})
ADMIN_ONLY = frozenset({UserRole.ADMIN})


def require_role(role: UserRole | None, allowed: frozenset[UserRole], action: str) -> None:
    if role is None or role not in allowed:
        logger.warning("Permission denied for %s (role=%s)", action, role.value if role else None)
        names = " and ".join(sorted(r.value.capitalize() + "s" for r in allowed))
        raise PermissionDeniedError(f"Permission denied: Only {names} can {action}.")


def check_role_change(
    *,
    acting_uid: str,
    acting_role: UserRole | None,
    target_uid: str,
    target_role: UserRole | None,
    new_role: UserRole,
) -> None:
    """Validate a role change before any mutation is attempted."""
    require_role(acting_role, MANAGER_ROLES, "update user roles")
    is_self = acting_uid == target_uid

    if acting_role is UserRole.ADMIN:
        if is_self and new_role is not UserRole.ADMIN:
            raise PermissionDeniedError("Admins cannot demote themselves.")
        if target_role is UserRole.ADMIN and new_role is not UserRole.ADMIN:
            raise PermissionDeniedError("Admins cannot demote other Admins.")
        return

    if target_role is UserRole.ADMIN:
        raise PermissionDeniedError("Captains cannot change an Admin's role.")
    if is_self and new_role is UserRole.ADMIN:
        raise PermissionDeniedError("Captains cannot promote themselves to Admin.")
    if is_self and new_role in (UserRole.OFFICER, UserRole.PENDING):
        raise PermissionDeniedError("Captains cannot demote themselves to Officer.")
    if new_role is UserRole.ADMIN:
        raise PermissionDeniedError("Captains cannot grant the Admin role.")


def check_role_removal(
    *,
    acting_uid: str,
    acting_role: UserRole | None,
    target_uid: str,
    target_role: UserRole | None,
) -> None:
    require_role(acting_role, MANAGER_ROLES, "remove users")
    if acting_uid == target_uid:
        raise PermissionDeniedError("Users cannot remove themselves.")
    if target_role is UserRole.ADMIN:
        raise PermissionDeniedError("Admins cannot be removed.")
