"""
Admin Schemas

Pydantic models for permission review, delegation and audit browsing.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict


# ==================== Permission Review ====================


class ReviewCandidateResponse(BaseModel):
    """A user in the review queue."""

    id: UUID
    username: str
    email: Optional[str] = None
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    last_permission_review: Optional[datetime] = None
    permissions_count: int
    risk_score: int
    days_since_review: int
    review_priority: str

    model_config = ConfigDict(from_attributes=True)


class ReviewQueueResponse(BaseModel):
    """Review queue sorted by risk score."""

    users: List[ReviewCandidateResponse]
    total: int
    summary: Dict[str, int] = {}  # priority -> count


class ReviewSubmitRequest(BaseModel):
    """Review action for one user."""

    user_id: UUID
    reviewer_id: Optional[UUID] = None  # must match the caller when given
    action: str = Field(..., min_length=1, max_length=50)
    permissions_to_revoke: List[UUID] = []
    comments: Optional[str] = Field(None, max_length=2000)


class ReviewSubmitResponse(BaseModel):
    """Review result."""

    message: str
    revoked_count: int
    review_id: Optional[UUID] = None


# ==================== Delegation ====================


class TemporaryGrantRequest(BaseModel):
    """Temporary grant of one permission to another user."""

    target_user_id: UUID
    permission: str = Field(..., min_length=1, max_length=100)
    duration_minutes: int = Field(..., ge=1, le=60 * 24 * 30)
    justification: str = Field(..., min_length=1, max_length=2000)


class TemporaryGrantResponse(BaseModel):
    """Grant result."""

    success: bool
    request_id: Optional[UUID] = None
    valid_until: Optional[datetime] = None


class MinimalPermissionsResponse(BaseModel):
    """Least-privilege permission set for reporting."""

    user_id: UUID
    permissions: List[str]


# ==================== Role Assignment ====================


class PermissionSummary(BaseModel):
    """Catalogue entry for a permission."""

    id: UUID
    name: str
    display_name: Optional[str] = None
    category: str

    model_config = ConfigDict(from_attributes=True)


class RolePermissionsResponse(BaseModel):
    """Permission set of a role."""

    role_id: UUID
    permissions: List[PermissionSummary]


class RolePermissionsUpdateRequest(BaseModel):
    """Full replacement permission set for a role."""

    permission_ids: List[UUID] = []


class UserRoleChangeRequest(BaseModel):
    """Move a user to another role."""

    role: str = Field(..., min_length=1, max_length=50)
    reason: Optional[str] = Field(None, max_length=2000)


class UserRoleChangeResponse(BaseModel):
    """Role change result."""

    message: str
    user_id: UUID
    old_role: Optional[str] = None
    new_role: str


# ==================== Audit Logs ====================


class AuditLogResponse(BaseModel):
    """Stored audit record."""

    id: UUID
    user_id: Optional[UUID] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    success: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Paginated audit records with 24h statistics."""

    logs: List[AuditLogResponse]
    total: int
    page: int
    limit: int
    statistics: Dict[str, int] = {}
