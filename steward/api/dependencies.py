"""
FastAPI Dependencies

Identity, request context and engine wiring for the route handlers.
Authentication happens upstream; the session layer forwards the
authenticated user id in the X-User-Id header.
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.db.session import get_db
from steward.api.access.audit import AuditLogger
from steward.api.access.guard import client_ip_from_headers
from steward.api.access.rbac import AccessContext, PermissionEvaluator


async def get_actor_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> UUID:
    """
    Get the authenticated user id forwarded by the session layer.

    Raises:
        HTTPException: If the header is missing or malformed
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )


async def get_access_context(request: Request) -> AccessContext:
    """Request attributes for conditional checks."""
    return AccessContext(
        ip=client_ip_from_headers(request.headers),
        user_agent=request.headers.get("user-agent"),
    )


async def get_audit_logger(db: AsyncSession = Depends(get_db)) -> AuditLogger:
    return AuditLogger(db)


async def get_evaluator(
    db: AsyncSession = Depends(get_db),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> PermissionEvaluator:
    return PermissionEvaluator(db, audit_logger)


async def ensure_permission(
    evaluator: PermissionEvaluator,
    user_id: UUID,
    permission: str,
) -> None:
    """
    Deny with 403 unless user_id holds permission.

    Raises:
        HTTPException: If the permission is missing
    """
    if not await evaluator.has_permission(user_id, permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied: {permission}",
        )
