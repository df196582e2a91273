"""
Permission Evaluator Tests

Validates role permissions, data scopes, conditional constraints and
delegation levels against a seeded store, and that every store failure
denies instead of raising.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from sqlalchemy import select

from steward.api.access.audit import AuditLogger
from steward.api.access.rbac import AccessContext, PermissionEvaluator
from steward.api.db.models import (
    AuditLog,
    ConditionalPermission,
    OrganizationalUnit,
    UserDataScope,
    UserOrganizationalUnit,
)


@pytest.fixture
def evaluator(db_session):
    return PermissionEvaluator(db_session, AuditLogger(db_session), condition_timezone="UTC")


async def add_scope(db_session, user, resource_type, scope_type, scope_value=None):
    db_session.add(
        UserDataScope(
            user_id=user.id,
            resource_type=resource_type,
            scope_type=scope_type,
            scope_value=scope_value,
        )
    )
    await db_session.flush()


async def add_unit(db_session, unit_type, *members):
    unit = OrganizationalUnit(id=uuid4(), name=f"{unit_type} unit", unit_type=unit_type)
    db_session.add(unit)
    for user, role_in_unit in members:
        db_session.add(
            UserOrganizationalUnit(user_id=user.id, unit_id=unit.id, role_in_unit=role_in_unit)
        )
    await db_session.flush()
    return unit


# ==================== Base Permissions ====================


@pytest.mark.asyncio
async def test_role_permission_granted(evaluator, pastor_user):
    assert await evaluator.has_permission(pastor_user.id, "finance.view.detail")


@pytest.mark.asyncio
async def test_permission_outside_role_denied(evaluator, member_user):
    assert not await evaluator.has_permission(member_user.id, "members.view.all")


@pytest.mark.asyncio
async def test_unknown_user_denied(evaluator, roles):
    assert not await evaluator.has_permission(uuid4(), "ministry.view")


@pytest.mark.asyncio
async def test_unknown_role_has_no_permissions(evaluator, user_factory):
    """A role name with no roles row grants nothing."""
    user = await user_factory("treasurer")
    assert not await evaluator.has_permission(user.id, "ministry.view")


@pytest.mark.asyncio
async def test_store_failure_denies():
    """Any lookup error fails closed."""
    db = MagicMock()
    db.scalar = AsyncMock(side_effect=RuntimeError("connection lost"))
    db.execute = AsyncMock(side_effect=RuntimeError("connection lost"))
    evaluator = PermissionEvaluator(db, AuditLogger(None))

    user_id = uuid4()
    assert await evaluator.has_permission(user_id, "ministry.view") is False
    assert await evaluator.has_data_access(user_id, "members", uuid4()) is False
    assert await evaluator.has_conditional_access(user_id, "ministry.view", AccessContext()) is False
    assert await evaluator.can_delegate(user_id, "ministry.view") is False
    assert await evaluator.get_minimal_permissions(user_id) == set()


# ==================== Data Scope ====================


@pytest.mark.asyncio
async def test_no_scope_rows_denied(evaluator, db_session, pastor_user):
    assert not await evaluator.has_data_access(pastor_user.id, "members", uuid4())


@pytest.mark.asyncio
async def test_all_scope_allows_any_target(evaluator, db_session, pastor_user):
    await add_scope(db_session, pastor_user, "members", "all")
    assert await evaluator.has_data_access(pastor_user.id, "members", uuid4())
    assert await evaluator.has_data_access(pastor_user.id, "members")


@pytest.mark.asyncio
async def test_scope_is_per_resource_type(evaluator, db_session, pastor_user):
    await add_scope(db_session, pastor_user, "finance", "all")
    assert not await evaluator.has_data_access(pastor_user.id, "members", uuid4())


@pytest.mark.asyncio
async def test_own_scope_matches_self_only(evaluator, db_session, member_user):
    await add_scope(db_session, member_user, "members", "own")
    assert await evaluator.has_data_access(member_user.id, "members", member_user.id)
    assert not await evaluator.has_data_access(member_user.id, "members", uuid4())
    assert not await evaluator.has_data_access(member_user.id, "members")


@pytest.mark.asyncio
async def test_team_scope_requires_shared_unit(
    evaluator, db_session, user_factory, pastor_user, member_user
):
    outsider = await user_factory("member")
    await add_unit(db_session, "worship", (pastor_user, "leader"), (member_user, "member"))
    await add_scope(db_session, pastor_user, "members", "team")

    assert await evaluator.has_data_access(pastor_user.id, "members", member_user.id)
    assert not await evaluator.has_data_access(pastor_user.id, "members", outsider.id)


@pytest.mark.asyncio
async def test_team_scope_with_target_unit(evaluator, db_session, pastor_user):
    unit = await add_unit(db_session, "youth", (pastor_user, "member"))
    await add_scope(db_session, pastor_user, "ministry", "team")

    assert await evaluator.has_data_access(pastor_user.id, "ministry", target_unit_id=unit.id)
    assert not await evaluator.has_data_access(pastor_user.id, "ministry", target_unit_id=uuid4())


@pytest.mark.asyncio
async def test_scope_value_does_not_narrow_shared_units(
    evaluator, db_session, pastor_user, member_user
):
    """Any shared unit grants team access, whatever unit the scope row names."""
    await add_unit(db_session, "choir", (pastor_user, "member"), (member_user, "member"))
    ushers = await add_unit(db_session, "ushers", (pastor_user, "member"))
    await add_scope(db_session, pastor_user, "members", "team", str(ushers.id))

    assert await evaluator.has_data_access(pastor_user.id, "members", member_user.id)


@pytest.mark.asyncio
async def test_department_scope_without_shared_unit_denied(
    evaluator, db_session, pastor_user, member_user
):
    await add_unit(db_session, "choir", (member_user, "member"))
    ushers = await add_unit(db_session, "ushers", (pastor_user, "member"))
    await add_scope(db_session, pastor_user, "members", "department", str(ushers.id))

    assert not await evaluator.has_data_access(pastor_user.id, "members", member_user.id)


# ==================== Conditional Access ====================


async def add_condition(db_session, user, permission, condition_type, value, is_active=True):
    db_session.add(
        ConditionalPermission(
            user_id=user.id,
            permission_id=permission.id,
            condition_type=condition_type,
            condition_value=value,
            is_active=is_active,
        )
    )
    await db_session.flush()


@pytest.mark.asyncio
async def test_conditional_without_constraints_uses_base(evaluator, pastor_user, member_user):
    context = AccessContext(ip="10.0.0.1")
    assert await evaluator.has_conditional_access(pastor_user.id, "finance.view.detail", context)
    assert not await evaluator.has_conditional_access(member_user.id, "finance.view.detail", context)


@pytest.mark.asyncio
async def test_time_window_enforced(evaluator, db_session, permissions, pastor_user):
    await add_condition(
        db_session,
        pastor_user,
        permissions["finance.view.detail"],
        "time_restriction",
        {"start_time": "09:00", "end_time": "18:00"},
    )

    inside = AccessContext(now=datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc))
    outside = AccessContext(now=datetime(2026, 3, 15, 18, 1, tzinfo=timezone.utc))
    assert await evaluator.has_conditional_access(pastor_user.id, "finance.view.detail", inside)
    assert not await evaluator.has_conditional_access(pastor_user.id, "finance.view.detail", outside)


@pytest.mark.asyncio
async def test_all_constraints_must_hold(evaluator, db_session, permissions, pastor_user):
    permission = permissions["finance.view.detail"]
    await add_condition(
        db_session, pastor_user, permission, "time_restriction",
        {"start_time": "00:00", "end_time": "23:59"},
    )
    await add_condition(
        db_session, pastor_user, permission, "ip_restriction",
        {"allowed_ips": ["10.0.0.1"]},
    )

    assert await evaluator.has_conditional_access(
        pastor_user.id, "finance.view.detail", AccessContext(ip="10.0.0.1")
    )
    assert not await evaluator.has_conditional_access(
        pastor_user.id, "finance.view.detail", AccessContext(ip="10.0.0.2")
    )


@pytest.mark.asyncio
async def test_inactive_constraint_ignored(evaluator, db_session, permissions, pastor_user):
    await add_condition(
        db_session, pastor_user, permissions["finance.view.detail"], "ip_restriction",
        {"allowed_ips": ["10.0.0.1"]}, is_active=False,
    )
    assert await evaluator.has_conditional_access(
        pastor_user.id, "finance.view.detail", AccessContext(ip="192.0.2.1")
    )


# ==================== Delegation Level ====================


@pytest.mark.asyncio
async def test_can_delegate_by_role_level(evaluator, admin_user, pastor_user, member_user):
    assert await evaluator.can_delegate(admin_user.id, "ministry.view")
    assert await evaluator.can_delegate(pastor_user.id, "ministry.view")
    assert not await evaluator.can_delegate(member_user.id, "ministry.view")


@pytest.mark.asyncio
async def test_delegation_threshold_configurable(db_session, pastor_user):
    strict = PermissionEvaluator(db_session, delegation_min_level=900)
    assert not await strict.can_delegate(pastor_user.id, "ministry.view")


# ==================== Minimal Permissions ====================


@pytest.mark.asyncio
async def test_minimal_permissions_include_leadership(evaluator, db_session, member_user):
    await add_unit(db_session, "worship", (member_user, "leader"))
    await add_unit(db_session, "youth", (member_user, "member"))

    assert await evaluator.get_minimal_permissions(member_user.id) == {
        "ministry.view",
        "worship.team.manage",
    }


@pytest.mark.asyncio
async def test_minimal_permissions_unknown_user(evaluator, roles):
    assert await evaluator.get_minimal_permissions(uuid4()) == set()


# ==================== Audit ====================


@pytest.mark.asyncio
async def test_log_access_persists_entry(evaluator, db_session, member_user):
    await evaluator.log_access(
        member_user.id,
        "route_access",
        "/admin",
        False,
        {"permission": "system.admin.access", "ip": "10.0.0.1", "userAgent": "pytest"},
    )

    row = await db_session.scalar(select(AuditLog).where(AuditLog.user_id == member_user.id))
    assert row.success is False
    assert row.ip_address == "10.0.0.1"
    assert row.user_agent == "pytest"
    assert row.additional_data["permission"] == "system.admin.access"


@pytest.mark.asyncio
async def test_log_access_never_raises(member_user):
    audit_logger = MagicMock()
    audit_logger.log = AsyncMock(side_effect=RuntimeError("audit store down"))
    evaluator = PermissionEvaluator(MagicMock(), audit_logger)

    await evaluator.log_access(member_user.id, "route_access", "/admin", True)
