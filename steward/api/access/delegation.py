"""
STEWARD - Permission Delegation

Temporary permission grants. Grants are auto-approved and carry an expiry
that is never swept: whoever relies on a grant checks valid_until itself.
PermissionEvaluator.has_permission does not consult grants.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.db.models import PermissionRequest
from steward.api.access.audit import AuditAction, AuditLogger
from steward.api.access.rbac import PermissionEvaluator


logger = logging.getLogger(__name__)


class RequestType(str, Enum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class GrantResult:
    """Outcome of a grant request."""

    success: bool
    request_id: Optional[UUID] = None
    valid_until: Optional[datetime] = None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from the store as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_grant_active(request: PermissionRequest, now: Optional[datetime] = None) -> bool:
    """Approved and not yet expired. Permanent grants have no expiry."""
    if request.status != RequestStatus.APPROVED.value:
        return False
    if request.valid_until is None:
        return request.request_type == RequestType.PERMANENT.value

    now = as_utc(now) or datetime.now(timezone.utc)
    return as_utc(request.valid_until) > now


class DelegationManager:
    """Creates and inspects delegated permission grants."""

    def __init__(
        self,
        db: AsyncSession,
        evaluator: Optional[PermissionEvaluator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.db = db
        self.audit_logger = audit_logger or AuditLogger(db)
        self.evaluator = evaluator or PermissionEvaluator(db, self.audit_logger)

    async def can_delegate_permission(self, delegator_id: UUID, permission: str) -> bool:
        """Delegator holds the permission and has a delegating role level."""
        if not await self.evaluator.has_permission(delegator_id, permission):
            return False
        return await self.evaluator.can_delegate(delegator_id, permission)

    async def grant_temporary_permission(
        self,
        requester_id: UUID,
        target_user_id: UUID,
        permission: str,
        duration_minutes: int,
        justification: str,
        now: Optional[datetime] = None,
    ) -> GrantResult:
        """
        Record an approved temporary grant valid for duration_minutes.

        Raises:
            ValueError: If duration_minutes is not positive
        """
        if duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be positive, got {duration_minutes}")

        now = now or datetime.now(timezone.utc)
        valid_until = now + timedelta(minutes=duration_minutes)

        try:
            permission_id = await self.evaluator.get_permission_id(permission)
            if permission_id is None:
                logger.warning(f"Temporary grant for unknown permission '{permission}'")
                return GrantResult(success=False)

            request = PermissionRequest(
                requester_id=requester_id,
                target_user_id=target_user_id,
                permission_id=permission_id,
                request_type=RequestType.TEMPORARY.value,
                status=RequestStatus.APPROVED.value,
                valid_until=valid_until,
                business_justification=justification,
                created_at=now,
            )
            self.db.add(request)
            await self.db.flush()

        except Exception:
            logger.exception("Temporary permission grant failed")
            return GrantResult(success=False)

        await self.audit_logger.log(
            user_id=requester_id,
            action=AuditAction.PERMISSION_DELEGATION.value,
            resource="permission_requests",
            resource_id=str(request.id),
            success=True,
            additional_data={
                "target_user_id": target_user_id,
                "permission": permission,
                "valid_until": valid_until,
                "justification": justification,
            },
        )

        return GrantResult(success=True, request_id=request.id, valid_until=valid_until)

    async def get_active_grants(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> List[PermissionRequest]:
        """Grants for user_id that are approved and unexpired at now."""
        result = await self.db.execute(
            select(PermissionRequest).where(
                PermissionRequest.target_user_id == user_id,
                PermissionRequest.status == RequestStatus.APPROVED.value,
            )
        )
        return [r for r in result.scalars().all() if is_grant_active(r, now)]
