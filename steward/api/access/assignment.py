"""
STEWARD - Role Assignment

Edits the two tables base permissions are read from: a role's permission
set (role_permissions) and a user's role (users.role). Every change is
audited with its before and after state.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.db.models import Permission, Role, RolePermission, User
from steward.api.access.audit import AuditAction, AuditLogger
from steward.api.access.exceptions import (
    RoleNotFoundError,
    UnknownPermissionError,
    UserNotFoundError,
)


logger = logging.getLogger(__name__)


@dataclass
class RoleChange:
    """Result of moving a user to another role."""

    user_id: UUID
    old_role: Optional[str]
    new_role: str


class RoleAssignmentService:
    """Role/permission assignment with audit."""

    def __init__(self, db: AsyncSession, audit_logger: Optional[AuditLogger] = None):
        self.db = db
        self.audit_logger = audit_logger or AuditLogger(db)

    async def _get_role(self, role_id: UUID) -> Role:
        role = await self.db.scalar(select(Role).where(Role.id == role_id))
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    async def list_role_permissions(self, role_id: UUID) -> List[Permission]:
        """
        Permissions currently granted to role_id, by name.

        Raises:
            RoleNotFoundError: If role_id does not exist
        """
        await self._get_role(role_id)
        result = await self.db.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def set_role_permissions(
        self,
        role_id: UUID,
        permission_ids: Sequence[UUID],
        actor_id: UUID,
    ) -> List[Permission]:
        """
        Replace the permission set of role_id.

        Takes effect on the next check for every user holding the role.

        Raises:
            RoleNotFoundError: If role_id does not exist
            UnknownPermissionError: If any id is not in the catalogue
        """
        role = await self._get_role(role_id)
        wanted = set(permission_ids)

        found = set()
        if wanted:
            result = await self.db.execute(
                select(Permission.id).where(Permission.id.in_(wanted))
            )
            found = set(result.scalars().all())
        if wanted - found:
            raise UnknownPermissionError(wanted - found)

        current = await self.list_role_permissions(role_id)
        before = [p.name for p in current]
        held = {p.id for p in current}

        removed = held - wanted
        if removed:
            await self.db.execute(
                delete(RolePermission).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id.in_(removed),
                )
            )
        for permission_id in wanted - held:
            self.db.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await self.db.flush()

        after = await self.list_role_permissions(role_id)
        logger.info(
            f"Role '{role.name}' permissions set to {len(after)} entries by {actor_id}"
        )

        await self.audit_logger.log(
            user_id=actor_id,
            action=AuditAction.ROLE_PERMISSIONS_UPDATE.value,
            resource="role_permissions",
            resource_id=str(role_id),
            success=True,
            additional_data={
                "role": role.name,
                "before": before,
                "after": [p.name for p in after],
            },
        )
        return after

    async def change_user_role(
        self,
        user_id: UUID,
        role_name: str,
        actor_id: UUID,
        reason: Optional[str] = None,
    ) -> RoleChange:
        """
        Move user_id to role_name.

        Raises:
            UserNotFoundError: If user_id does not exist
            RoleNotFoundError: If role_name is not a known role
        """
        role = await self.db.scalar(select(Role).where(Role.name == role_name))
        if role is None:
            raise RoleNotFoundError(role_name)

        user = await self.db.scalar(select(User).where(User.id == user_id))
        if user is None:
            raise UserNotFoundError(user_id)

        old_role = user.role
        user.role = role.name
        await self.db.flush()

        await self.audit_logger.log(
            user_id=actor_id,
            action=AuditAction.USER_ROLE_CHANGE.value,
            resource="users",
            resource_id=str(user_id),
            success=True,
            additional_data={
                "old_role": old_role,
                "new_role": role.name,
                "reason": reason,
            },
        )
        return RoleChange(user_id=user_id, old_role=old_role, new_role=role.name)
