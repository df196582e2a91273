"""
Permission Review Tests

Validates the review queue ordering and filters, and what a submitted
review changes in the store.
"""

import pytest
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select

from steward.api.access.exceptions import UserNotFoundError
from steward.api.access.rbac import PermissionEvaluator
from steward.api.access.review import REVOKE_ACTION, ReviewPriority, ReviewScheduler
from steward.api.db.models import AuditLog, PermissionReview, RolePermission


@pytest.fixture
def scheduler(db_session):
    return ReviewScheduler(db_session, stale_days=90)


# ==================== Review Queue ====================


@pytest.mark.asyncio
async def test_never_reviewed_member_scores_47(scheduler, member_user, now):
    candidates = await scheduler.get_review_candidates(now=now)

    candidate = next(c for c in candidates if c.id == member_user.id)
    assert candidate.permissions_count == 1
    assert candidate.risk_score == 47
    assert candidate.days_since_review == 999
    assert candidate.review_priority is ReviewPriority.CRITICAL


@pytest.mark.asyncio
async def test_queue_sorted_by_risk(scheduler, admin_user, pastor_user, member_user, now):
    candidates = await scheduler.get_review_candidates(now=now)

    assert [c.id for c in candidates] == [admin_user.id, pastor_user.id, member_user.id]
    assert [c.risk_score for c in candidates] == [90, 70, 47]


@pytest.mark.asyncio
async def test_equal_scores_keep_fetch_order(scheduler, user_factory, now):
    first = await user_factory("member")
    second = await user_factory("member")

    candidates = await scheduler.get_review_candidates(now=now)

    assert [c.id for c in candidates] == [first.id, second.id]


@pytest.mark.asyncio
async def test_needs_review_filter(scheduler, user_factory, now):
    stale = await user_factory("member", last_permission_review=now - timedelta(days=120))
    fresh = await user_factory("member", last_permission_review=now - timedelta(days=10))
    never = await user_factory("member")

    queued = {c.id for c in await scheduler.get_review_candidates(needs_review_only=True, now=now)}

    assert queued == {stale.id, never.id}
    assert fresh.id not in queued


@pytest.mark.asyncio
async def test_role_without_permissions_counts_zero(scheduler, user_factory, now):
    user = await user_factory("elder", last_permission_review=now)
    unknown = await user_factory("treasurer", last_permission_review=now)

    candidates = {c.id: c for c in await scheduler.get_review_candidates(now=now)}

    assert candidates[user.id].permissions_count == 2
    assert candidates[unknown.id].permissions_count == 0
    assert candidates[unknown.id].review_priority is ReviewPriority.LOW


# ==================== Submit Review ====================


@pytest.mark.asyncio
async def test_revoke_applies_to_whole_role(
    scheduler, db_session, roles, permissions, admin_user, member_user, user_factory, now
):
    """Revocation edits the role, so peers sharing it lose the permission too."""
    peer = await user_factory("member")
    target = permissions["ministry.view"].id

    outcome = await scheduler.submit_review(
        user_id=member_user.id,
        reviewer_id=admin_user.id,
        action=REVOKE_ACTION,
        permissions_to_revoke=[target],
        comments="No longer serving",
        now=now,
    )

    assert outcome.revoked_count == 1
    remaining = await db_session.scalar(
        select(RolePermission).where(
            RolePermission.role_id == roles["member"].id,
            RolePermission.permission_id == target,
        )
    )
    assert remaining is None

    evaluator = PermissionEvaluator(db_session)
    assert not await evaluator.has_permission(peer.id, "ministry.view")


@pytest.mark.asyncio
async def test_review_recorded_and_stamped(scheduler, db_session, admin_user, member_user, now):
    outcome = await scheduler.submit_review(
        user_id=member_user.id,
        reviewer_id=admin_user.id,
        action="approve",
        comments="All good",
        now=now,
    )

    review = await db_session.get(PermissionReview, outcome.review_id)
    assert review.user_id == member_user.id
    assert review.reviewer_id == admin_user.id
    assert review.action == "approve"
    assert review.revoked_permissions == []
    assert member_user.last_permission_review == now

    audit = await db_session.scalar(select(AuditLog).where(AuditLog.action == "permission_review"))
    assert audit.user_id == admin_user.id
    assert audit.resource_id == str(member_user.id)


@pytest.mark.asyncio
async def test_non_revoke_action_removes_nothing(
    scheduler, db_session, permissions, admin_user, member_user
):
    outcome = await scheduler.submit_review(
        user_id=member_user.id,
        reviewer_id=admin_user.id,
        action="approve",
        permissions_to_revoke=[permissions["ministry.view"].id],
    )

    assert outcome.revoked_count == 0
    evaluator = PermissionEvaluator(db_session)
    assert await evaluator.has_permission(member_user.id, "ministry.view")


@pytest.mark.asyncio
async def test_reviewed_user_leaves_queue(scheduler, admin_user, member_user, now):
    await scheduler.submit_review(member_user.id, admin_user.id, "approve", now=now)

    queued = {c.id for c in await scheduler.get_review_candidates(needs_review_only=True, now=now)}
    assert member_user.id not in queued


@pytest.mark.asyncio
async def test_unknown_user_raises(scheduler, admin_user):
    with pytest.raises(UserNotFoundError) as exc_info:
        await scheduler.submit_review(uuid4(), admin_user.id, "approve")
    assert exc_info.value.code == "USER_NOT_FOUND"
