"""
Delegation Tests

Validates temporary grants: who may delegate, what a grant records and
when it stops being active.
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import select

from steward.api.access.delegation import DelegationManager, is_grant_active
from steward.api.db.models import AuditLog, PermissionRequest


@pytest.fixture
def manager(db_session):
    return DelegationManager(db_session)


def grant(status="approved", request_type="temporary", valid_until=None):
    return PermissionRequest(
        requester_id=uuid4(),
        target_user_id=uuid4(),
        permission_id=uuid4(),
        request_type=request_type,
        status=status,
        valid_until=valid_until,
    )


class TestGrantActivity:
    """Tests for is_grant_active."""

    def test_unexpired_grant_active(self, now):
        assert is_grant_active(grant(valid_until=now + timedelta(minutes=1)), now)

    def test_expired_grant_inactive(self, now):
        assert not is_grant_active(grant(valid_until=now), now)

    def test_pending_grant_inactive(self, now):
        assert not is_grant_active(grant(status="pending", valid_until=now + timedelta(days=1)), now)

    def test_permanent_grant_without_expiry_active(self, now):
        assert is_grant_active(grant(request_type="permanent"), now)

    def test_temporary_grant_without_expiry_inactive(self, now):
        assert not is_grant_active(grant(), now)

    def test_naive_expiry_read_as_utc(self, now):
        naive = (now + timedelta(hours=1)).replace(tzinfo=None)
        assert is_grant_active(grant(valid_until=naive), now)


@pytest.mark.asyncio
async def test_can_delegate_requires_permission_and_level(
    manager, admin_user, pastor_user, member_user
):
    assert await manager.can_delegate_permission(pastor_user.id, "finance.view.detail")
    assert not await manager.can_delegate_permission(pastor_user.id, "system.logs.view")
    assert not await manager.can_delegate_permission(member_user.id, "ministry.view")
    assert await manager.can_delegate_permission(admin_user.id, "system.logs.view")


@pytest.mark.asyncio
async def test_grant_records_approved_request(
    manager, db_session, permissions, pastor_user, member_user
):
    now = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

    result = await manager.grant_temporary_permission(
        requester_id=pastor_user.id,
        target_user_id=member_user.id,
        permission="members.view.all",
        duration_minutes=90,
        justification="Covering the membership desk",
        now=now,
    )

    assert result.success
    assert result.valid_until == now + timedelta(minutes=90)

    request = await db_session.get(PermissionRequest, result.request_id)
    assert request.status == "approved"
    assert request.request_type == "temporary"
    assert request.permission_id == permissions["members.view.all"].id
    assert request.business_justification == "Covering the membership desk"

    audit = await db_session.scalar(
        select(AuditLog).where(AuditLog.action == "permission_delegation")
    )
    assert audit.user_id == pastor_user.id
    assert audit.resource_id == str(result.request_id)
    assert audit.additional_data["permission"] == "members.view.all"


@pytest.mark.asyncio
async def test_grant_does_not_change_base_permissions(manager, pastor_user, member_user):
    """Grants are reported, not folded into has_permission."""
    await manager.grant_temporary_permission(
        pastor_user.id, member_user.id, "members.view.all", 60, "Event weekend"
    )
    assert not await manager.evaluator.has_permission(member_user.id, "members.view.all")


@pytest.mark.asyncio
async def test_grant_unknown_permission_fails(manager, pastor_user, member_user):
    result = await manager.grant_temporary_permission(
        pastor_user.id, member_user.id, "no.such.permission", 60, "typo"
    )
    assert not result.success
    assert result.request_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize("duration", [0, -5])
async def test_grant_requires_positive_duration(manager, pastor_user, member_user, duration):
    with pytest.raises(ValueError):
        await manager.grant_temporary_permission(
            pastor_user.id, member_user.id, "members.view.all", duration, "invalid"
        )


@pytest.mark.asyncio
async def test_active_grants_exclude_expired(manager, pastor_user, member_user):
    now = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
    short = await manager.grant_temporary_permission(
        pastor_user.id, member_user.id, "members.view.all", 30, "short", now=now
    )
    long = await manager.grant_temporary_permission(
        pastor_user.id, member_user.id, "finance.view.summary", 240, "long", now=now
    )

    active = await manager.get_active_grants(member_user.id, now + timedelta(hours=1))

    assert [g.id for g in active] == [long.request_id]
    assert short.request_id not in {g.id for g in active}
