"""
STEWARD - Permission Review Scheduling

Risk scoring and the periodic permission review queue.

Scores combine permission exposure, role, login recency, account state and
review recency into 0-100. Priority escalates on score OR review staleness.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.config import settings
from steward.api.db.models import PermissionReview, Role, RolePermission, User
from steward.api.access.audit import AuditAction, AuditLogger
from steward.api.access.delegation import as_utc
from steward.api.access.exceptions import ConfigurationError, UserNotFoundError
from steward.api.access.rbac import RoleName


logger = logging.getLogger(__name__)


# Days reported when a user has never been reviewed
NEVER_REVIEWED_DAYS = 999

MAX_EXPOSURE_SCORE = 50
MAX_RISK_SCORE = 100

REVOKE_ACTION = "revoke_permissions"


# ============================================================
# Role Weights
# ============================================================


ROLE_RISK_WEIGHTS: Dict[RoleName, int] = {
    RoleName.ADMIN: 30,
    RoleName.PASTOR: 20,
    RoleName.ELDER: 15,
    RoleName.TEACHER: 10,
    RoleName.MEMBER: 5,
    RoleName.OTHER: 0,
}

if set(ROLE_RISK_WEIGHTS) != set(RoleName):
    raise ConfigurationError("ROLE_RISK_WEIGHTS must cover every RoleName")


def role_risk_weight(role: RoleName) -> int:
    """Base risk of a role."""
    return ROLE_RISK_WEIGHTS[role]


# ============================================================
# Priority
# ============================================================


class ReviewPriority(str, Enum):
    """Review urgency tier."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# (tier, min score, min days since review), first match wins
PRIORITY_TIERS = (
    (ReviewPriority.CRITICAL, 80, 180),
    (ReviewPriority.HIGH, 60, 120),
    (ReviewPriority.MEDIUM, 40, 90),
)


def get_risk_priority(score: int, days_since_review: int) -> ReviewPriority:
    """Either signal alone can escalate a tier."""
    for tier, min_score, min_days in PRIORITY_TIERS:
        if score >= min_score or days_since_review >= min_days:
            return tier
    return ReviewPriority.LOW


# ============================================================
# Scoring
# ============================================================


def days_since(value: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days elapsed, or None when there is no timestamp."""
    if value is None:
        return None
    return int((as_utc(now) - as_utc(value)).total_seconds() // 86400)


def login_recency_penalty(days: Optional[int]) -> int:
    if days is None:
        return 50
    if days > 90:
        return 40
    if days > 30:
        return 20
    if days > 7:
        return 10
    return 0


def review_recency_penalty(days: Optional[int]) -> int:
    if days is None:
        return 40
    if days > 180:
        return 30
    if days > 90:
        return 20
    if days > 60:
        return 10
    return 0


def calculate_risk_score(
    user: User,
    permission_count: int,
    now: Optional[datetime] = None,
) -> int:
    """
    Risk score in [0, 100].

    Only the exposure term and the total are clamped; the penalty terms
    are added as-is.
    """
    now = now or datetime.now(timezone.utc)

    score = min(permission_count * 2, MAX_EXPOSURE_SCORE)
    score += role_risk_weight(RoleName.parse(user.role))
    score += login_recency_penalty(days_since(user.last_login, now))
    if not user.is_active:
        score += 30
    score += review_recency_penalty(days_since(user.last_permission_review, now))

    return min(score, MAX_RISK_SCORE)


# ============================================================
# Review Queue
# ============================================================


@dataclass
class ReviewCandidate:
    """One row of the review queue."""

    id: UUID
    username: str
    email: Optional[str]
    role: str
    is_active: bool
    last_login: Optional[datetime]
    last_permission_review: Optional[datetime]
    permissions_count: int
    risk_score: int
    days_since_review: int
    review_priority: ReviewPriority


@dataclass
class ReviewOutcome:
    """Result of a submitted review."""

    revoked_count: int
    review_id: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None


def summarize_queue(candidates: Sequence[ReviewCandidate]) -> Dict[str, int]:
    """Candidate count per priority tier."""
    counts = Counter(c.review_priority for c in candidates)
    return {tier.value: counts.get(tier, 0) for tier in ReviewPriority}


class ReviewScheduler:
    """
    Builds the permission review queue and applies review actions.

    Review writes take no locks: concurrent reviews of users sharing a role
    race on role_permissions and the last write wins.
    """

    def __init__(
        self,
        db: AsyncSession,
        audit_logger: Optional[AuditLogger] = None,
        stale_days: Optional[int] = None,
    ):
        self.db = db
        self.audit_logger = audit_logger or AuditLogger(db)
        self.stale_days = stale_days if stale_days is not None else settings.REVIEW_STALE_DAYS

    async def _role_permission_counts(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(Role.name, func.count(RolePermission.permission_id))
            .join(RolePermission, RolePermission.role_id == Role.id, isouter=True)
            .group_by(Role.name)
        )
        return dict(result.all())

    async def get_review_candidates(
        self,
        needs_review_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[ReviewCandidate]:
        """Users scored and sorted by risk, highest first."""
        now = now or datetime.now(timezone.utc)

        query = select(User)
        if needs_review_only:
            cutoff = now - timedelta(days=self.stale_days)
            query = query.where(
                or_(
                    User.last_permission_review.is_(None),
                    User.last_permission_review < cutoff,
                )
            )

        result = await self.db.execute(query)
        users = result.scalars().all()
        counts = await self._role_permission_counts()

        candidates = []
        for user in users:
            permissions_count = counts.get(user.role, 0)
            score = calculate_risk_score(user, permissions_count, now)
            days = days_since(user.last_permission_review, now)
            days = NEVER_REVIEWED_DAYS if days is None else days

            candidates.append(
                ReviewCandidate(
                    id=user.id,
                    username=user.username,
                    email=user.email,
                    role=user.role,
                    is_active=user.is_active,
                    last_login=user.last_login,
                    last_permission_review=user.last_permission_review,
                    permissions_count=permissions_count,
                    risk_score=score,
                    days_since_review=days,
                    review_priority=get_risk_priority(score, days),
                )
            )

        # sort() is stable: equal scores keep fetch order
        candidates.sort(key=lambda c: c.risk_score, reverse=True)
        return candidates

    async def submit_review(
        self,
        user_id: UUID,
        reviewer_id: UUID,
        action: str,
        permissions_to_revoke: Optional[Sequence[UUID]] = None,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """
        Apply a review to user_id.

        Revocation removes permissions from the user's ROLE, so every user
        holding that role loses them.

        Raises:
            UserNotFoundError: If user_id does not exist
        """
        now = now or datetime.now(timezone.utc)
        permissions_to_revoke = list(permissions_to_revoke or [])

        user = await self.db.scalar(select(User).where(User.id == user_id))
        if user is None:
            raise UserNotFoundError(user_id)

        revoked_count = 0
        if action == REVOKE_ACTION and permissions_to_revoke:
            role_id = await self.db.scalar(select(Role.id).where(Role.name == user.role))
            if role_id is not None:
                await self.db.execute(
                    delete(RolePermission).where(
                        RolePermission.role_id == role_id,
                        RolePermission.permission_id.in_(permissions_to_revoke),
                    )
                )
                revoked_count = len(permissions_to_revoke)
                logger.info(
                    f"Revoked {revoked_count} permissions from role '{user.role}' "
                    f"during review of {user_id}"
                )
            else:
                logger.warning(f"Role '{user.role}' not found; nothing revoked for {user_id}")

        review = PermissionReview(
            user_id=user_id,
            reviewer_id=reviewer_id,
            action=action,
            revoked_permissions=[str(p) for p in permissions_to_revoke],
            comments=comments,
            reviewed_at=now,
        )
        self.db.add(review)

        user.last_permission_review = now
        await self.db.flush()

        await self.audit_logger.log(
            user_id=reviewer_id,
            action=AuditAction.PERMISSION_REVIEW.value,
            resource="user_permissions",
            resource_id=str(user_id),
            success=True,
            additional_data={
                "action": action,
                "revoked_permissions": permissions_to_revoke,
                "comments": comments,
            },
        )

        return ReviewOutcome(revoked_count=revoked_count, review_id=review.id, reviewed_at=now)
