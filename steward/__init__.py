# STEWARD - Church Site Authorization Engine
"""
STEWARD: authorization decision engine for the church website.

Core Components:
    - PermissionEvaluator: role, data-scope and conditional checks
    - RouteGuard: path to permission policy resolution
    - DelegationManager: temporary permission grants
    - ReviewScheduler: risk-scored permission review queue
    - AuditLogger: append-only decision log

Example:
    from steward.api.access import PermissionEvaluator, AuditLogger

    evaluator = PermissionEvaluator(db, AuditLogger(db))
    allowed = await evaluator.has_permission(user_id, "members.view.all")
"""

__version__ = "1.0.0"
__author__ = "STEWARD Development Team"
