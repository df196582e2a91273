"""
STEWARD - Audit Logging System

Append-only trail of authorization decisions and review actions.
Writing an entry never raises to, or changes the outcome for, the caller.
"""

import csv
import io
import json
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from steward.api.db.models import AuditLog


logger = logging.getLogger(__name__)


# ============================================================
# Audit Actions
# ============================================================


class AuditAction(str, Enum):
    """Actions recorded by the engine."""

    ROUTE_ACCESS = "route_access"
    PERMISSION_REVIEW = "permission_review"
    PERMISSION_DELEGATION = "permission_delegation"
    AUDIT_EXPORT = "audit_export"
    ROLE_PERMISSIONS_UPDATE = "role_permissions_update"
    USER_ROLE_CHANGE = "user_role_change"


# Actions counted as permission administration in statistics
PERMISSION_ACTIONS = {
    AuditAction.PERMISSION_REVIEW.value,
    AuditAction.PERMISSION_DELEGATION.value,
    AuditAction.ROLE_PERMISSIONS_UPDATE.value,
    AuditAction.USER_ROLE_CHANGE.value,
}


# ============================================================
# Audit Entry Structure
# ============================================================


@dataclass
class AuditEntry:
    """A single audit record before persistence."""

    user_id: Optional[UUID]
    action: str
    resource: str
    success: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resource_id: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored record shape."""
        return {
            "user_id": str(self.user_id) if self.user_id else None,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "success": self.success,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "additional_data": self.additional_data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def compute_hash(self) -> str:
        """Compute SHA256 hash for integrity verification."""
        content = f"{self.timestamp.isoformat()}{self.user_id}{self.action}{self.resource}{self.success}"
        return hashlib.sha256(content.encode()).hexdigest()


def audit_log_to_dict(row: AuditLog) -> Dict[str, Any]:
    """Serialize a stored audit row."""
    return {
        "id": str(row.id),
        "user_id": str(row.user_id) if row.user_id else None,
        "action": row.action,
        "resource": row.resource,
        "resource_id": row.resource_id,
        "success": row.success,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "additional_data": row.additional_data,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


# ============================================================
# Audit Logger
# ============================================================


class AuditLogger:
    """
    Central audit logging service.

    All decision and review records flow through this class. Persistence
    runs inside a SAVEPOINT so a failed insert cannot poison the caller's
    transaction, and every failure is caught and logged.
    """

    def __init__(self, db_session: Optional[AsyncSession] = None):
        self.db_session = db_session

    async def log(
        self,
        user_id: Optional[UUID],
        action: str,
        resource: str,
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        additional_data: Optional[Dict[str, Any]] = None,
        resource_id: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """Append an audit entry. Returns None if it could not be written."""
        try:
            entry = AuditEntry(
                user_id=user_id,
                action=action.value if isinstance(action, AuditAction) else action,
                resource=resource,
                success=success,
                ip_address=ip_address,
                user_agent=user_agent,
                resource_id=resource_id,
                additional_data=_sanitize_for_audit(additional_data or {}),
            )

            # Log to structured logger
            logger.info(
                "AUDIT",
                extra={
                    "audit_event": entry.to_dict(),
                    "event_hash": entry.compute_hash(),
                },
            )

            if self.db_session is not None:
                await self._persist_entry(entry)

            return entry

        except Exception as e:
            logger.warning(f"Audit log failed: {e}")
            return None

    async def _persist_entry(self, entry: AuditEntry) -> None:
        """Persist entry to the audit_logs table."""
        async with self.db_session.begin_nested():
            self.db_session.add(
                AuditLog(
                    user_id=entry.user_id,
                    action=entry.action,
                    resource=entry.resource,
                    resource_id=entry.resource_id,
                    success=entry.success,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    additional_data=entry.additional_data or None,
                    created_at=entry.timestamp,
                )
            )

    async def query(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        action: Optional[str] = None,
        user_id: Optional[UUID] = None,
        success: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AuditLog], int]:
        """Query audit rows with filters, newest first."""
        conditions = []
        if start_time is not None:
            conditions.append(AuditLog.created_at >= start_time)
        if end_time is not None:
            conditions.append(AuditLog.created_at <= end_time)
        if action:
            conditions.append(AuditLog.action == action)
        if user_id is not None:
            conditions.append(AuditLog.user_id == user_id)
        if success is not None:
            conditions.append(AuditLog.success == success)

        total = await self.db_session.scalar(
            select(func.count(AuditLog.id)).where(*conditions)
        )

        result = await self.db_session.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(desc(AuditLog.created_at))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def statistics(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Counts over the last 24 hours."""
        now = now or datetime.now(timezone.utc)
        result = await self.db_session.execute(
            select(AuditLog.action, AuditLog.success).where(
                AuditLog.created_at >= now - timedelta(hours=24)
            )
        )
        rows = result.all()

        return {
            "total_24h": len(rows),
            "denied_24h": len([r for r in rows if not r.success]),
            "permission_related": len([r for r in rows if r.action in PERMISSION_ACTIONS]),
            "route_denials": len(
                [r for r in rows if r.action == AuditAction.ROUTE_ACCESS.value and not r.success]
            ),
        }

    async def export(
        self,
        start_time: datetime,
        end_time: datetime,
        format: str = "json",
        include_hash: bool = True,
    ) -> str:
        """Export audit rows for compliance review."""
        rows, _ = await self.query(
            start_time=start_time,
            end_time=end_time,
            limit=10000,
        )
        records = [audit_log_to_dict(r) for r in rows]

        if format == "json":
            export_data = {
                "export_timestamp": datetime.now(timezone.utc).isoformat(),
                "period_start": start_time.isoformat(),
                "period_end": end_time.isoformat(),
                "event_count": len(records),
                "events": records,
            }
            if include_hash:
                content = json.dumps(export_data, sort_keys=True, default=str)
                export_data["integrity_hash"] = hashlib.sha256(content.encode()).hexdigest()

            return json.dumps(export_data, indent=2, default=str)

        if format == "csv":
            return _records_to_csv(records)

        raise ValueError(f"Unsupported format: {format}")


CSV_COLUMNS = [
    "created_at",
    "user_id",
    "action",
    "resource",
    "resource_id",
    "success",
    "ip_address",
    "user_agent",
    "additional_data",
]


def _records_to_csv(records: List[Dict[str, Any]]) -> str:
    """Render records as CSV with a BOM so spreadsheet tools pick UTF-8."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for record in records:
        row = dict(record)
        if row.get("additional_data") is not None:
            row["additional_data"] = json.dumps(row["additional_data"], default=str)
        writer.writerow(row)
    return "\ufeff" + buffer.getvalue()


def _sanitize_for_audit(data: Any) -> Any:
    """Remove sensitive fields from data before logging."""
    sensitive_fields = {
        "password", "password_hash", "secret", "token", "api_key",
        "access_token", "refresh_token", "session", "cookie",
    }

    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if k.lower() in sensitive_fields else _sanitize_for_audit(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple, set)):
        return [_sanitize_for_audit(item) for item in data]
    elif isinstance(data, (UUID, datetime)):
        return str(data)
    else:
        return data
