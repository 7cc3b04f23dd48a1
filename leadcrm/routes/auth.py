"""
Lead CRM - Routes Auth
Session issuing for the identity bridge, current user resolution, logout.
The OAuth handshake itself happens upstream; it posts the verified profile here.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .. import config
from ..models.audit import AuditEvent, AuditEventType
from ..models.auth import OAuthProfile
from ..services.user_service import UserService
from .deps import get_user_service

logger = logging.getLogger("auth")

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def verify_bridge_key(x_bridge_key: Optional[str] = Header(None)):
    """Only the upstream OAuth handler may open sessions."""
    expected = config.IDENTITY_BRIDGE_KEY
    if not expected:
        raise HTTPException(status_code=503, detail="Identity bridge not configured")
    if not x_bridge_key or not hmac.compare_digest(x_bridge_key, expected):
        raise HTTPException(status_code=401, detail="Invalid bridge key")
    return x_bridge_key


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    users: UserService = Depends(get_user_service),
):
    """Authenticated actor: {id, tenant_id, role, ...} from the bearer token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await users.resolve_session(credentials.credentials)
    if not user:
        raise HTTPException(status_code=401, detail="Session expired")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    return user


# ==================== SIGN-IN / LOGOUT ====================

@router.post("/oauth", dependencies=[Depends(verify_bridge_key)])
async def oauth_sign_in(
    profile: OAuthProfile,
    users: UserService = Depends(get_user_service),
):
    """Upsert the user from a verified Google profile and open a session."""
    user = await users.upsert_from_oauth(profile)
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    session = await users.create_session(user)
    return {
        "token": session["token"],
        "expires_at": session["expires_at"],
        "user": {
            "id": user["id"],
            "email": user["email"],
            "name": user.get("name", ""),
            "avatar_url": user.get("avatar_url"),
            "tenant_id": user["tenant_id"],
            "role": user["role"],
            "permissions": user.get("permissions", []),
        },
    }


@router.post("/logout")
async def logout(
    request: Request,
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    users: UserService = Depends(get_user_service),
):
    await users.end_session(credentials.credentials)
    request.app.state.audit.emit(AuditEvent(
        tenant_id=user["tenant_id"],
        event_type=AuditEventType.LOGOUT,
        resource="auth",
        action="logout",
        user_id=user["id"],
        user_roles=[user.get("role", "")],
    ))
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return user
