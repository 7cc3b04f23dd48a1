"""
Shared route dependencies: services built from what server.py put on app.state
"""

from fastapi import Request

from ..services.audit import AuditLogService
from ..services.lead_service import LeadService
from ..services.user_service import UserService


def get_db(request: Request):
    return request.app.state.db


def get_lead_service(request: Request) -> LeadService:
    state = request.app.state
    return LeadService(state.db, state.audit)


def get_user_service(request: Request) -> UserService:
    state = request.app.state
    return UserService(state.db, state.access_control, state.audit)


def get_audit_log_service(request: Request) -> AuditLogService:
    return AuditLogService(request.app.state.db)
