"""
Admin Routes

Permission review, delegation, role assignment and audit log endpoints
consumed by the admin UI. Each handler checks its own permission through the evaluator.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.db.session import get_db
from steward.api.dependencies import (
    ensure_permission,
    get_actor_id,
    get_audit_logger,
    get_evaluator,
)
from steward.api.access.audit import AuditAction, AuditLogger
from steward.api.access.assignment import RoleAssignmentService
from steward.api.access.delegation import DelegationManager
from steward.api.access.exceptions import (
    RoleNotFoundError,
    UnknownPermissionError,
    UserNotFoundError,
)
from steward.api.access.rbac import PermissionEvaluator
from steward.api.access.review import ReviewScheduler, summarize_queue
from steward.api.admin.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    MinimalPermissionsResponse,
    PermissionSummary,
    ReviewCandidateResponse,
    ReviewQueueResponse,
    ReviewSubmitRequest,
    ReviewSubmitResponse,
    RolePermissionsResponse,
    RolePermissionsUpdateRequest,
    TemporaryGrantRequest,
    TemporaryGrantResponse,
    UserRoleChangeRequest,
    UserRoleChangeResponse,
)


router = APIRouter()

# Permissions required by the admin endpoints
USERS_VIEW = "system.users.view"
ROLES_MANAGE = "system.roles.manage"
LOGS_VIEW = "system.logs.view"


# ==================== Permission Review ====================


@router.get(
    "/permissions/review",
    response_model=ReviewQueueResponse,
    summary="Get permission review queue",
)
async def get_review_queue(
    review_status: str = Query("all", alias="status", pattern="^(all|needs_review)$"),
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
) -> ReviewQueueResponse:
    """
    Get users ordered by risk score.

    status=needs_review limits the queue to users never reviewed or not
    reviewed within the stale window.
    """
    await ensure_permission(evaluator, actor_id, USERS_VIEW)

    scheduler = ReviewScheduler(db, audit_logger)
    candidates = await scheduler.get_review_candidates(
        needs_review_only=review_status == "needs_review",
    )

    return ReviewQueueResponse(
        users=[
            ReviewCandidateResponse(
                id=c.id,
                username=c.username,
                email=c.email,
                role=c.role,
                is_active=c.is_active,
                last_login=c.last_login,
                last_permission_review=c.last_permission_review,
                permissions_count=c.permissions_count,
                risk_score=c.risk_score,
                days_since_review=c.days_since_review,
                review_priority=c.review_priority.value,
            )
            for c in candidates
        ],
        total=len(candidates),
        summary=summarize_queue(candidates),
    )


@router.post(
    "/permissions/review",
    response_model=ReviewSubmitResponse,
    summary="Submit permission review",
)
async def submit_review(
    data: ReviewSubmitRequest,
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
) -> ReviewSubmitResponse:
    """
    Record a review and optionally revoke permissions.

    Revocation applies to the reviewed user's role and therefore to every
    user sharing it.
    """
    await ensure_permission(evaluator, actor_id, ROLES_MANAGE)

    if data.reviewer_id is not None and data.reviewer_id != actor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Reviews can only be recorded under the caller's own id",
        )

    scheduler = ReviewScheduler(db, audit_logger)
    try:
        outcome = await scheduler.submit_review(
            user_id=data.user_id,
            reviewer_id=actor_id,
            action=data.action,
            permissions_to_revoke=data.permissions_to_revoke,
            comments=data.comments,
        )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    return ReviewSubmitResponse(
        message="Permission review completed",
        revoked_count=outcome.revoked_count,
        review_id=outcome.review_id,
    )


# ==================== Delegation ====================


@router.post(
    "/permissions/delegations",
    response_model=TemporaryGrantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant temporary permission",
)
async def grant_temporary_permission(
    data: TemporaryGrantRequest,
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
) -> TemporaryGrantResponse:
    """
    Grant data.permission to another user for a limited time.

    The caller's role must be at the delegation level. The grant is
    approved immediately.
    """
    if not await evaluator.can_delegate(actor_id, data.permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Delegation not allowed for this role",
        )

    manager = DelegationManager(db, evaluator, audit_logger)
    result = await manager.grant_temporary_permission(
        requester_id=actor_id,
        target_user_id=data.target_user_id,
        permission=data.permission,
        duration_minutes=data.duration_minutes,
        justification=data.justification,
    )

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Temporary permission grant failed",
        )

    return TemporaryGrantResponse(
        success=True,
        request_id=result.request_id,
        valid_until=result.valid_until,
    )


@router.get(
    "/users/{user_id}/minimal-permissions",
    response_model=MinimalPermissionsResponse,
    summary="Get least-privilege permission set",
)
async def get_minimal_permissions(
    user_id: UUID,
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> MinimalPermissionsResponse:
    """Role permissions plus unit leadership permissions, for reporting."""
    await ensure_permission(evaluator, actor_id, USERS_VIEW)

    permissions = await evaluator.get_minimal_permissions(user_id)
    return MinimalPermissionsResponse(user_id=user_id, permissions=sorted(permissions))


# ==================== Role Assignment ====================


@router.get(
    "/roles/{role_id}/permissions",
    response_model=RolePermissionsResponse,
    summary="Get role permissions",
)
async def get_role_permissions(
    role_id: UUID,
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
) -> RolePermissionsResponse:
    await ensure_permission(evaluator, actor_id, USERS_VIEW)

    service = RoleAssignmentService(db, audit_logger)
    try:
        permissions = await service.list_role_permissions(role_id)
    except RoleNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Role not found",
        )

    return RolePermissionsResponse(
        role_id=role_id,
        permissions=[PermissionSummary.model_validate(p) for p in permissions],
    )


@router.put(
    "/roles/{role_id}/permissions",
    response_model=RolePermissionsResponse,
    summary="Replace role permissions",
)
async def set_role_permissions(
    role_id: UUID,
    data: RolePermissionsUpdateRequest,
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
) -> RolePermissionsResponse:
    """
    Replace the whole permission set of a role.

    Every user holding the role is affected on their next check.
    """
    await ensure_permission(evaluator, actor_id, ROLES_MANAGE)

    service = RoleAssignmentService(db, audit_logger)
    try:
        permissions = await service.set_role_permissions(role_id, data.permission_ids, actor_id)
    except RoleNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Role not found",
        )
    except UnknownPermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    return RolePermissionsResponse(
        role_id=role_id,
        permissions=[PermissionSummary.model_validate(p) for p in permissions],
    )


@router.put(
    "/users/{user_id}/role",
    response_model=UserRoleChangeResponse,
    summary="Change user role",
)
async def change_user_role(
    user_id: UUID,
    data: UserRoleChangeRequest,
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
) -> UserRoleChangeResponse:
    """Move a user to another existing role. The change is audited with its reason."""
    await ensure_permission(evaluator, actor_id, ROLES_MANAGE)

    service = RoleAssignmentService(db, audit_logger)
    try:
        change = await service.change_user_role(user_id, data.role, actor_id, data.reason)
    except RoleNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {data.role}",
        )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    return UserRoleChangeResponse(
        message="User role changed",
        user_id=change.user_id,
        old_role=change.old_role,
        new_role=change.new_role,
    )


# ==================== Audit Logs ====================


@router.get(
    "/audit-logs",
    response_model=AuditLogListResponse,
    summary="List audit logs",
)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    action: Optional[str] = Query(None),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> AuditLogListResponse:
    """Get audit records newest first, with 24h statistics."""
    await ensure_permission(evaluator, actor_id, LOGS_VIEW)

    logs, total = await audit_logger.query(
        start_time=start_date,
        end_time=end_date,
        action=action,
        user_id=user_id,
        limit=limit,
        offset=(page - 1) * limit,
    )
    statistics = await audit_logger.statistics()

    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        limit=limit,
        statistics=statistics,
    )


@router.get(
    "/audit-logs/export",
    summary="Export audit logs",
)
async def export_audit_logs(
    days: int = Query(30, ge=1, le=365),
    export_format: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    actor_id: UUID = Depends(get_actor_id),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> Response:
    """Download the last `days` of audit records as CSV or JSON."""
    await ensure_permission(evaluator, actor_id, LOGS_VIEW)

    end_time = datetime.now(timezone.utc)
    start_time = end_time - timedelta(days=days)
    content = await audit_logger.export(start_time, end_time, format=export_format)

    await audit_logger.log(
        user_id=actor_id,
        action=AuditAction.AUDIT_EXPORT.value,
        resource="audit_logs",
        success=True,
        additional_data={"days": days, "format": export_format},
    )

    filename = f"audit-report-{end_time.date().isoformat()}.{export_format}"
    media_type = "text/csv; charset=utf-8" if export_format == "csv" else "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
