"""Session identity, device keys and role checks."""

from roster_sync.auth.device_keys import DeviceKeyStore
from roster_sync.auth.permissions import (
    ADMIN_ONLY,
    MANAGER_ROLES,
    check_role_change,
    check_role_removal,
    require_role,
)
from roster_sync.auth.session import (
    AuthProvider,
    JwtAuthProvider,
    Session,
    StaticAuthProvider,
    TokenValidationError,
)

__all__ = [
    "ADMIN_ONLY",
    "AuthProvider",
    "DeviceKeyStore",
    "JwtAuthProvider",
    "MANAGER_ROLES",
    "Session",
    "StaticAuthProvider",
    "TokenValidationError",
    "check_role_change",
    "check_role_removal",
    "require_role",
]
