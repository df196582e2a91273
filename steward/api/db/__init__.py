"""Database module."""

from steward.api.db.session import get_db, init_db, close_db
from steward.api.db.models import (
    Base,
    User,
    Role,
    Permission,
    RolePermission,
    OrganizationalUnit,
    UserOrganizationalUnit,
    UserDataScope,
    ConditionalPermission,
    PermissionRequest,
    PermissionReview,
    AuditLog,
)

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "Base",
    "User",
    "Role",
    "Permission",
    "RolePermission",
    "OrganizationalUnit",
    "UserOrganizationalUnit",
    "UserDataScope",
    "ConditionalPermission",
    "PermissionRequest",
    "PermissionReview",
    "AuditLog",
]
