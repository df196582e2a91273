"""
STEWARD - Access & Authority Module

Role and attribute based access control, delegation, permission review
and audit logging.

Components:
- rbac.py: Roles, scopes, conditions and the PermissionEvaluator
- guard.py: Route policies and the RouteGuard
- delegation.py: Temporary permission grants
- review.py: Risk scoring and the review queue
- assignment.py: Role permission sets and user role changes
- audit.py: Audit logging and export

Usage:
    from steward.api.access import (
        AccessContext,
        AuditLogger,
        PermissionEvaluator,
        RouteGuard,
    )

    evaluator = PermissionEvaluator(db, AuditLogger(db))
    decision = await RouteGuard(evaluator).check_route_access(path, user_id, context)
"""

from steward.api.access.exceptions import (
    StewardError,
    ConfigurationError,
    RouteConfigurationError,
    UserNotFoundError,
    RoleNotFoundError,
    UnknownPermissionError,
)

from steward.api.access.audit import (
    AuditLogger,
    AuditEntry,
    AuditAction,
)

from steward.api.access.rbac import (
    RoleName,
    ScopeType,
    ConditionType,
    AccessContext,
    PermissionEvaluator,
    validate_time_restriction,
    validate_ip_restriction,
)

from steward.api.access.guard import (
    RoutePolicy,
    RouteMatcher,
    RouteGuard,
    AccessDecision,
    DEFAULT_ROUTE_POLICIES,
    client_ip_from_headers,
)

from steward.api.access.delegation import (
    DelegationManager,
    GrantResult,
    is_grant_active,
)

from steward.api.access.assignment import (
    RoleAssignmentService,
    RoleChange,
)

from steward.api.access.review import (
    ReviewScheduler,
    ReviewCandidate,
    ReviewOutcome,
    ReviewPriority,
    calculate_risk_score,
    get_risk_priority,
    role_risk_weight,
)

__all__ = [
    # Errors
    "StewardError",
    "ConfigurationError",
    "RouteConfigurationError",
    "UserNotFoundError",
    "RoleNotFoundError",
    "UnknownPermissionError",

    # Audit
    "AuditLogger",
    "AuditEntry",
    "AuditAction",

    # Evaluation
    "RoleName",
    "ScopeType",
    "ConditionType",
    "AccessContext",
    "PermissionEvaluator",
    "validate_time_restriction",
    "validate_ip_restriction",

    # Routes
    "RoutePolicy",
    "RouteMatcher",
    "RouteGuard",
    "AccessDecision",
    "DEFAULT_ROUTE_POLICIES",
    "client_ip_from_headers",

    # Delegation
    "DelegationManager",
    "GrantResult",
    "is_grant_active",

    # Assignment
    "RoleAssignmentService",
    "RoleChange",

    # Review
    "ReviewScheduler",
    "ReviewCandidate",
    "ReviewOutcome",
    "ReviewPriority",
    "calculate_risk_score",
    "get_risk_priority",
    "role_risk_weight",
]
