"""
STEWARD - Access Exception Hierarchy

Exception Categories:
    - ConfigurationError: malformed policy tables and settings (startup-class)
    - UserNotFoundError: review or delegation target does not exist
    - RoleNotFoundError, UnknownPermissionError: bad role assignments

Authorization checks themselves never raise: they fail closed and return
False. Exceptions here only cross the boundary for caller errors.
"""

from typing import Any, Dict, Optional


class StewardError(Exception):
    """
    Base exception for all STEWARD errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ConfigurationError(StewardError):
    """Base exception for configuration errors."""

    pass


class RouteConfigurationError(ConfigurationError):
    """Route policy table is malformed."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, code="ROUTE_CONFIG", **kwargs)
        self.path = path


class UserNotFoundError(StewardError):
    """Referenced user does not exist."""

    def __init__(self, user_id: Any):
        super().__init__(
            f"User not found: {user_id}",
            code="USER_NOT_FOUND",
            details={"user_id": str(user_id)},
        )
        self.user_id = user_id


class RoleNotFoundError(StewardError):
    """Referenced role does not exist."""

    def __init__(self, role: Any):
        super().__init__(
            f"Role not found: {role}",
            code="ROLE_NOT_FOUND",
            details={"role": str(role)},
        )
        self.role = role


class UnknownPermissionError(StewardError):
    """Assignment names permissions missing from the catalogue."""

    def __init__(self, permission_ids: Any):
        missing = sorted(str(p) for p in permission_ids)
        super().__init__(
            f"Unknown permissions: {', '.join(missing)}",
            code="UNKNOWN_PERMISSION",
            details={"permission_ids": missing},
        )
        self.permission_ids = missing
