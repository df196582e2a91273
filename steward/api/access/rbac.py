"""
STEWARD - Role and Attribute Based Access Control

Defines roles, scopes, conditions and the permission evaluator.
This is the authoritative source for authorization decisions.

Every evaluator call re-reads the store. Any lookup failure denies.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.config import settings
from steward.api.db.models import (
    ConditionalPermission,
    OrganizationalUnit,
    Permission,
    Role,
    RolePermission,
    User,
    UserDataScope,
    UserOrganizationalUnit,
)
from steward.api.access.audit import AuditLogger


logger = logging.getLogger(__name__)


# ============================================================
# Roles
# ============================================================


class RoleName(str, Enum):
    """Site roles. Unrecognized role names map to OTHER."""

    ADMIN = "admin"
    PASTOR = "pastor"
    ELDER = "elder"
    TEACHER = "teacher"
    MEMBER = "member"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RoleName":
        """Map a stored role name onto the enum."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.OTHER


# ============================================================
# Scopes and Conditions
# ============================================================


class ScopeType(str, Enum):
    """Breadth of data access for a resource type."""

    OWN = "own"
    TEAM = "team"
    DEPARTMENT = "department"
    ALL = "all"


UNIT_SCOPES = {ScopeType.TEAM.value, ScopeType.DEPARTMENT.value}


class ConditionType(str, Enum):
    """Known conditional-permission constraint types."""

    TIME_RESTRICTION = "time_restriction"
    IP_RESTRICTION = "ip_restriction"


# role_in_unit value that synthesizes "{unit_type}.team.manage"
UNIT_LEADER = "leader"


# ============================================================
# Authorization Context
# ============================================================


@dataclass
class AccessContext:
    """Request attributes consulted by conditional checks."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    query_params: Dict[str, str] = field(default_factory=dict)

    def to_audit_data(self) -> Dict[str, Any]:
        return {"ip": self.ip, "userAgent": self.user_agent}


# ============================================================
# Condition Validators
# ============================================================


def parse_time(value: str) -> int:
    """Parse "HH:MM" into minute of day."""
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minute_of_day(now: datetime, tz_name: Optional[str] = None) -> int:
    """Minute of day for now, converted to tz_name when now is aware."""
    if now.tzinfo is not None and tz_name:
        now = now.astimezone(ZoneInfo(tz_name))
    return now.hour * 60 + now.minute


def validate_time_restriction(
    config: Dict[str, Any],
    now: datetime,
    tz_name: Optional[str] = None,
) -> bool:
    """
    Check now against an inclusive [start_time, end_time] window.

    Windows crossing midnight (start after end) never match.
    """
    start = parse_time(config["start_time"])
    end = parse_time(config["end_time"])
    current = minute_of_day(now, tz_name)
    return start <= current <= end


def validate_ip_restriction(config: Dict[str, Any], client_ip: Optional[str]) -> bool:
    """Client ip must appear in the allow-list. A non-list allow-list denies."""
    allowed = config.get("allowed_ips")
    if not client_ip or not isinstance(allowed, (list, tuple)):
        return False
    return client_ip in allowed


def validate_condition(
    condition_type: str,
    condition_value: Dict[str, Any],
    context: AccessContext,
    tz_name: Optional[str] = None,
) -> bool:
    """Evaluate one constraint. Unknown types pass."""
    if condition_type == ConditionType.TIME_RESTRICTION.value:
        return validate_time_restriction(condition_value or {}, context.now, tz_name)
    if condition_type == ConditionType.IP_RESTRICTION.value:
        return validate_ip_restriction(condition_value or {}, context.ip)

    logger.warning(f"Unknown condition type '{condition_type}' passes by default")
    return True


def units_intersect(user_units: Iterable[UUID], target_units: Iterable[UUID]) -> bool:
    """True if the two unit sets share a unit."""
    return bool(set(user_units) & set(target_units))


def leadership_permissions(memberships: Iterable[tuple]) -> Set[str]:
    """Permissions synthesized from (role_in_unit, unit_type) pairs."""
    return {
        f"{unit_type}.team.manage"
        for role_in_unit, unit_type in memberships
        if role_in_unit == UNIT_LEADER
    }


# ============================================================
# Permission Evaluator
# ============================================================


class PermissionEvaluator:
    """
    Authorization decisions over the role/permission store.

    Usage:
        evaluator = PermissionEvaluator(db, AuditLogger(db))
        if await evaluator.has_permission(user_id, "members.create"):
            ...
    """

    def __init__(
        self,
        db: AsyncSession,
        audit_logger: Optional[AuditLogger] = None,
        delegation_min_level: Optional[int] = None,
        condition_timezone: Optional[str] = None,
    ):
        self.db = db
        self.audit_logger = audit_logger or AuditLogger(db)
        self.delegation_min_level = (
            delegation_min_level
            if delegation_min_level is not None
            else settings.DELEGATION_MIN_ROLE_LEVEL
        )
        self.condition_timezone = condition_timezone or settings.CONDITION_TIMEZONE

    # ==================== Lookups ====================

    async def _get_user_role(self, user_id: UUID) -> Optional[str]:
        return await self.db.scalar(select(User.role).where(User.id == user_id))

    async def get_role_permissions(self, role_name: str) -> Set[str]:
        """Permission names granted to a role via role_permissions."""
        result = await self.db.execute(
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(Role, Role.id == RolePermission.role_id)
            .where(Role.name == role_name)
        )
        return set(result.scalars().all())

    async def get_permission_id(self, permission_name: str) -> Optional[UUID]:
        return await self.db.scalar(
            select(Permission.id).where(Permission.name == permission_name)
        )

    async def _get_unit_ids(self, user_id: UUID) -> Set[UUID]:
        result = await self.db.execute(
            select(UserOrganizationalUnit.unit_id).where(
                UserOrganizationalUnit.user_id == user_id
            )
        )
        return set(result.scalars().all())

    # ==================== Decisions ====================

    async def has_permission(self, user_id: UUID, permission_name: str) -> bool:
        """True iff the permission is in the base set of the user's role."""
        try:
            role_name = await self._get_user_role(user_id)
            if role_name is None:
                return False

            permissions = await self.get_role_permissions(role_name)
            return permission_name in permissions

        except Exception:
            logger.exception("Permission check failed")
            return False

    async def has_data_access(
        self,
        user_id: UUID,
        resource_type: str,
        target_user_id: Optional[UUID] = None,
        target_unit_id: Optional[UUID] = None,
    ) -> bool:
        """True if any of the user's scope rows for resource_type matches."""
        try:
            result = await self.db.execute(
                select(UserDataScope).where(
                    UserDataScope.user_id == user_id,
                    UserDataScope.resource_type == resource_type,
                )
            )
            scopes = result.scalars().all()
            if not scopes:
                return False

            user_units: Optional[Set[UUID]] = None
            target_units: Optional[Set[UUID]] = None

            for scope in scopes:
                if scope.scope_type == ScopeType.ALL.value:
                    return True

                if scope.scope_type == ScopeType.OWN.value:
                    if target_user_id is not None and str(target_user_id) == str(user_id):
                        return True

                elif scope.scope_type in UNIT_SCOPES:
                    if target_user_id is None and target_unit_id is None:
                        continue

                    # Memberships are loaded once, on the first unit scope
                    if user_units is None:
                        user_units = await self._get_unit_ids(user_id)
                        target_units = set()
                        if target_user_id is not None:
                            target_units = await self._get_unit_ids(target_user_id)
                        if target_unit_id is not None:
                            target_units.add(target_unit_id)

                    if units_intersect(user_units, target_units):
                        return True

            return False

        except Exception:
            logger.exception("Data access check failed")
            return False

    async def has_conditional_access(
        self,
        user_id: UUID,
        permission_name: str,
        context: AccessContext,
    ) -> bool:
        """Base permission plus every active constraint for it (AND)."""
        try:
            if not await self.has_permission(user_id, permission_name):
                return False

            permission_id = await self.get_permission_id(permission_name)
            result = await self.db.execute(
                select(ConditionalPermission).where(
                    ConditionalPermission.user_id == user_id,
                    ConditionalPermission.permission_id == permission_id,
                    ConditionalPermission.is_active == True,  # noqa: E712
                )
            )
            conditions = result.scalars().all()

            if not conditions:
                return True

            for condition in conditions:
                if not validate_condition(
                    condition.condition_type,
                    condition.condition_value,
                    context,
                    self.condition_timezone,
                ):
                    return False

            return True

        except Exception:
            logger.exception("Conditional access check failed")
            return False

    async def can_delegate(self, user_id: UUID, permission: str) -> bool:
        """
        Role level at or above the delegation threshold.

        Deliberately does not check whether the user holds `permission`.
        """
        try:
            role_name = await self._get_user_role(user_id)
            if role_name is None:
                return False

            level = await self.db.scalar(select(Role.level).where(Role.name == role_name))
            return level is not None and level >= self.delegation_min_level

        except Exception:
            logger.exception("Delegation check failed")
            return False

    async def get_minimal_permissions(self, user_id: UUID) -> Set[str]:
        """Role base set plus unit leadership permissions. Reporting only."""
        try:
            role_name = await self._get_user_role(user_id)
            if role_name is None:
                return set()

            base = await self.get_role_permissions(role_name)

            result = await self.db.execute(
                select(UserOrganizationalUnit.role_in_unit, OrganizationalUnit.unit_type)
                .join(OrganizationalUnit, OrganizationalUnit.id == UserOrganizationalUnit.unit_id)
                .where(UserOrganizationalUnit.user_id == user_id)
            )
            return base | leadership_permissions(result.all())

        except Exception:
            logger.exception("Minimal permissions fetch failed")
            return set()

    async def log_access(
        self,
        user_id: UUID,
        action: str,
        resource: str,
        success: bool,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an audit entry. Never raises."""
        try:
            context = dict(context or {})
            await self.audit_logger.log(
                user_id=user_id,
                action=action,
                resource=resource,
                success=success,
                ip_address=context.get("ip"),
                user_agent=context.get("userAgent"),
                additional_data=context or None,
            )
        except Exception as e:
            logger.warning(f"Audit log failed: {e}")
