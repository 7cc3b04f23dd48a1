"""
Lead CRM - Permission System
Permission keys + role presets + FastAPI dependencies.
The role table is read-only and handed to AccessControl at construction.
"""

import logging
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional

from fastapi import Depends, HTTPException, Request

from ..errors import ForbiddenError
from ..models.audit import AuditEvent, AuditEventType, AuditSeverity

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL PERMISSION KEYS
# ════════════════════════════════════════════════════════════════════════

ALL_PERMISSION_KEYS = (
    "leads:read",
    "leads:create",
    "leads:update",
    "leads:delete",
    "leads:assign",

    "pipeline:read",

    "users:read",
    "users:update",
    "users:delete",

    "audit:read",
    "audit:manage",
)

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS
# ════════════════════════════════════════════════════════════════════════

ROLE_PRESETS: Mapping[str, FrozenSet[str]] = MappingProxyType({
    "admin": frozenset(ALL_PERMISSION_KEYS),

    "acquisition_rep": frozenset({
        "leads:read", "leads:create", "leads:update",
        "pipeline:read",
    }),

    "disposition_manager": frozenset({
        "leads:read", "leads:update", "leads:assign",
        "pipeline:read",
        "users:read",
    }),
})


class AccessControl:
    """Role -> permission lookups. Unknown roles get nothing."""

    def __init__(self, presets: Mapping[str, FrozenSet[str]] = ROLE_PRESETS):
        self._table = MappingProxyType({role: frozenset(perms) for role, perms in presets.items()})

    @property
    def roles(self):
        return tuple(self._table.keys())

    def permissions_for(self, role: Optional[str]) -> FrozenSet[str]:
        return self._table.get(role or "", frozenset())

    def has_permission(self, role: Optional[str], permission: str) -> bool:
        return permission in self.permissions_for(role)

    def check(self, user: dict, permission: str) -> dict:
        """Raise ForbiddenError unless the user's role grants `permission`."""
        if not self.has_permission(user.get("role"), permission):
            raise ForbiddenError(f"Permission required: {permission}")
        return user


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def get_access_control(request: Request) -> AccessControl:
    return request.app.state.access_control


def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: @router.get("/leads", dependencies=[Depends(require_permission("leads:read"))])
    """
    from ..routes.auth import get_current_user

    async def _check(request: Request, user: dict = Depends(get_current_user)):
        access = get_access_control(request)
        if not access.has_permission(user.get("role"), permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={permission_key} role={user.get('role')}"
            )
            audit = getattr(request.app.state, "audit", None)
            if audit is not None:
                audit.emit(AuditEvent(
                    tenant_id=user.get("tenant_id", ""),
                    event_type=AuditEventType.PERMISSION_DENIED,
                    severity=AuditSeverity.MEDIUM,
                    resource=permission_key.split(":")[0],
                    action=permission_key.split(":")[-1],
                    description=f"Permission denied: {permission_key}",
                    user_id=user.get("id"),
                    user_roles=[user.get("role", "")],
                    ip_address=request.client.host if request.client else "",
                    user_agent=request.headers.get("user-agent", ""),
                ))
            raise HTTPException(
                status_code=403,
                detail=f"Permission required: {permission_key}"
            )
        return user

    return _check
