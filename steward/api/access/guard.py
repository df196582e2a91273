"""
STEWARD - Route Guard

Maps an inbound path to its route policy and runs the evaluator checks
the policy asks for, returning an allow/deny verdict with a reason.

Precedence: an exact path wins; otherwise the most specific wildcard
pattern wins, independent of declaration order.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from steward.api.config import settings
from steward.api.access.audit import AuditAction
from steward.api.access.exceptions import RouteConfigurationError
from steward.api.access.rbac import AccessContext, PermissionEvaluator


logger = logging.getLogger(__name__)


# ============================================================
# Route Policies
# ============================================================


@dataclass(frozen=True)
class RoutePolicy:
    """Permission requirement for a path or wildcard pattern."""

    path: str
    permission: str
    data_level: bool = False
    conditional: bool = False

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.path

    @property
    def specificity(self) -> Tuple[int, int]:
        """Literal characters first, then fewer wildcards."""
        return (len(self.path.replace("*", "")), -self.path.count("*"))


DEFAULT_ROUTE_POLICIES: Tuple[RoutePolicy, ...] = (
    # Admin area
    RoutePolicy("/admin", "system.admin.access"),
    RoutePolicy("/admin/*", "system.admin.access"),
    RoutePolicy("/admin/members", "members.view.all"),
    RoutePolicy("/admin/members/create", "members.create"),
    RoutePolicy("/admin/members/edit", "members.edit.basic", data_level=True),
    RoutePolicy("/admin/members/delete", "members.delete"),
    RoutePolicy("/admin/members/*", "members.view.all", data_level=True),

    # Finance
    RoutePolicy("/admin/finance", "finance.view.summary"),
    RoutePolicy("/admin/finance/detail", "finance.view.detail", conditional=True),
    RoutePolicy("/admin/finance/budget", "finance.budget.view"),
    RoutePolicy("/admin/finance/budget/edit", "finance.budget.edit"),
    RoutePolicy("/admin/finance/*", "finance.view.summary"),

    # System
    RoutePolicy("/admin/system", "system.settings"),
    RoutePolicy("/admin/system/users", "system.users.view"),
    RoutePolicy("/admin/system/roles", "system.roles.manage"),
    RoutePolicy("/admin/system/logs", "system.logs.view", conditional=True),
    RoutePolicy("/admin/system/*", "system.settings"),

    # Ministry
    RoutePolicy("/ministry", "ministry.view"),
    RoutePolicy("/ministry/teams", "ministry.teams.manage", data_level=True),
    RoutePolicy("/ministry/members", "ministry.members.assign", data_level=True),
)


# Query parameters consulted for the data-level target, in order
TARGET_ID_PARAMS = ("targetId", "userId", "id")

DENY_CONDITIONAL = "conditional access requirements not met"
DENY_PERMISSION = "insufficient permissions"
DENY_DATA_SCOPE = "data access scope violation"
DENY_UNLISTED = "route not listed"


@dataclass
class AccessDecision:
    """Verdict for a route check."""

    allowed: bool
    reason: Optional[str] = None
    permission: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        result: Dict[str, object] = {"allowed": self.allowed}
        if self.reason:
            result["reason"] = self.reason
        return result


# ============================================================
# Matcher
# ============================================================


def _compile_pattern(path: str) -> "re.Pattern[str]":
    parts = [re.escape(part) for part in path.split("*")]
    return re.compile("^" + ".*".join(parts) + "$")


class RouteMatcher:
    """
    Resolves a path to its policy.

    Exact entries are looked up directly. Wildcard entries are ranked by
    specificity once at construction; equal specificity keeps table order.
    """

    def __init__(self, policies: Iterable[RoutePolicy]):
        policies = list(policies)
        self._validate(policies)

        self._exact: Dict[str, RoutePolicy] = {
            p.path: p for p in policies if not p.is_wildcard
        }
        ranked = sorted(
            enumerate(p for p in policies if p.is_wildcard),
            key=lambda item: (item[1].specificity, -item[0]),
            reverse=True,
        )
        self._wildcards: List[Tuple[RoutePolicy, "re.Pattern[str]"]] = [
            (policy, _compile_pattern(policy.path)) for _, policy in ranked
        ]

    @staticmethod
    def _validate(policies: List[RoutePolicy]) -> None:
        seen = set()
        for policy in policies:
            if not policy.path or not policy.path.startswith("/"):
                raise RouteConfigurationError(
                    f"Route path must start with '/': {policy.path!r}", path=policy.path
                )
            if not policy.permission:
                raise RouteConfigurationError(
                    f"Route {policy.path} has no permission", path=policy.path
                )
            if policy.path in seen:
                raise RouteConfigurationError(
                    f"Duplicate route policy: {policy.path}", path=policy.path
                )
            seen.add(policy.path)

    def match(self, path: str) -> Optional[RoutePolicy]:
        """Most specific policy for path, or None."""
        policy = self._exact.get(path)
        if policy is not None:
            return policy

        for policy, pattern in self._wildcards:
            if pattern.match(path):
                return policy
        return None


# ============================================================
# Request Helpers
# ============================================================


def client_ip_from_headers(headers: Mapping[str, str]) -> str:
    """First x-forwarded-for hop, else x-real-ip, else "unknown"."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return "unknown"


def extract_resource_type(path: str) -> str:
    """Second path segment: /admin/members/edit -> members."""
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 2:
        return parts[1]
    return "unknown"


def extract_target_id(query_params: Mapping[str, str]) -> Optional[UUID]:
    """First present target parameter, parsed as a user id."""
    for name in TARGET_ID_PARAMS:
        value = query_params.get(name)
        if value:
            try:
                return UUID(str(value))
            except ValueError:
                logger.debug(f"Ignoring non-uuid {name}={value!r}")
                return None
    return None


# ============================================================
# Route Guard
# ============================================================


class RouteGuard:
    """
    Route-level authorization.

    Unlisted routes are allowed (public pages) unless ROUTE_DEFAULT_ALLOW
    is off, so every protected route needs an entry in the policy table.
    """

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        policies: Optional[Iterable[RoutePolicy]] = None,
        default_allow: Optional[bool] = None,
    ):
        self.evaluator = evaluator
        self.matcher = RouteMatcher(
            policies if policies is not None else DEFAULT_ROUTE_POLICIES
        )
        self.default_allow = (
            default_allow if default_allow is not None else settings.ROUTE_DEFAULT_ALLOW
        )

    async def check_route_access(
        self,
        path: str,
        user_id: Optional[UUID],
        context: AccessContext,
    ) -> AccessDecision:
        """Resolve the route policy for path and evaluate it for user_id."""
        policy = self.matcher.match(path)

        if policy is None:
            if self.default_allow:
                return AccessDecision(allowed=True)
            return AccessDecision(allowed=False, reason=DENY_UNLISTED)

        decision = await self._evaluate(policy, path, user_id, context)
        await self._log_attempt(user_id, policy.permission, path, decision.allowed, context)
        return decision

    async def _evaluate(
        self,
        policy: RoutePolicy,
        path: str,
        user_id: Optional[UUID],
        context: AccessContext,
    ) -> AccessDecision:
        if policy.conditional:
            if not await self.evaluator.has_conditional_access(
                user_id, policy.permission, context
            ):
                return AccessDecision(False, DENY_CONDITIONAL, policy.permission)

        if not await self.evaluator.has_permission(user_id, policy.permission):
            return AccessDecision(False, DENY_PERMISSION, policy.permission)

        if policy.data_level:
            resource_type = extract_resource_type(path)
            target_id = extract_target_id(context.query_params)
            if not await self.evaluator.has_data_access(user_id, resource_type, target_id):
                return AccessDecision(False, DENY_DATA_SCOPE, policy.permission)

        return AccessDecision(True, None, policy.permission)

    async def _log_attempt(
        self,
        user_id: Optional[UUID],
        permission: str,
        path: str,
        success: bool,
        context: AccessContext,
    ) -> None:
        await self.evaluator.log_access(
            user_id,
            AuditAction.ROUTE_ACCESS.value,
            path,
            success,
            {
                "permission": permission,
                **context.to_audit_data(),
            },
        )
