"""
Lead CRM - Routes Audit Log
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from ..models.audit import AuditEventType, AuditFilters, AuditSeverity, ComplianceFramework
from ..services.audit import AuditLogService
from ..services.permissions import require_permission
from .deps import get_audit_log_service

router = APIRouter(prefix="/audit-logs", tags=["AuditLog"])


@router.get("")
async def list_events(
    event_type: Optional[AuditEventType] = None,
    severity: Optional[AuditSeverity] = None,
    user_id: Optional[str] = None,
    resource: Optional[str] = None,
    action: Optional[str] = None,
    is_sensitive: Optional[bool] = None,
    framework: Optional[ComplianceFramework] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(require_permission("audit:read")),
    logs: AuditLogService = Depends(get_audit_log_service),
):
    filters = AuditFilters(
        event_type=event_type, severity=severity, user_id=user_id, resource=resource,
        action=action, is_sensitive=is_sensitive, framework=framework, start=start, end=end,
    )
    return await logs.list(user["tenant_id"], filters, limit=min(limit, 1000), skip=skip)


@router.get("/statistics")
async def statistics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user: dict = Depends(require_permission("audit:read")),
    logs: AuditLogService = Depends(get_audit_log_service),
):
    return await logs.statistics(user["tenant_id"], start, end)


@router.get("/{event_id}")
async def get_event(
    event_id: str,
    user: dict = Depends(require_permission("audit:read")),
    logs: AuditLogService = Depends(get_audit_log_service),
):
    return await logs.get(event_id, user["tenant_id"])


@router.post("/{event_id}/anonymize")
async def anonymize_event(
    event_id: str,
    user: dict = Depends(require_permission("audit:manage")),
    logs: AuditLogService = Depends(get_audit_log_service),
):
    return await logs.anonymize(event_id, user["tenant_id"])
