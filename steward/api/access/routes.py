"""
Access Routes

Route authorization endpoint called by the session layer for every
inbound page request.
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from steward.api.dependencies import get_access_context, get_actor_id, get_evaluator
from steward.api.access.guard import RouteGuard
from steward.api.access.rbac import AccessContext, PermissionEvaluator
from steward.api.access.schemas import RouteCheckRequest, RouteCheckResponse


router = APIRouter()


@router.post(
    "/check",
    response_model=RouteCheckResponse,
    summary="Check route access",
)
async def check_route(
    data: RouteCheckRequest,
    user_id: UUID = Depends(get_actor_id),
    context: AccessContext = Depends(get_access_context),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> RouteCheckResponse:
    """
    Decide whether user_id may open data.path.

    Denials are returned in the body with a reason, not as an error status.
    """
    context.query_params = data.query_params
    if data.ip:
        context.ip = data.ip
    if data.user_agent:
        context.user_agent = data.user_agent

    decision = await RouteGuard(evaluator).check_route_access(data.path, user_id, context)

    return RouteCheckResponse(
        allowed=decision.allowed,
        reason=decision.reason,
        permission=decision.permission,
    )
