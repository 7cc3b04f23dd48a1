"""
Lead CRM - Routes Users (tenant-scoped)
"""

from fastapi import APIRouter, Depends, HTTPException

from ..models.auth import PreferencesUpdate, UserUpdate
from ..services.permissions import require_permission
from ..services.user_service import UserService
from .auth import get_current_user
from .deps import get_user_service

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("")
async def list_users(
    include_inactive: bool = True,
    user: dict = Depends(require_permission("users:read")),
    users: UserService = Depends(get_user_service),
):
    items = await users.list(user["tenant_id"], include_inactive=include_inactive)
    return {"users": items, "count": len(items)}


@router.patch("/me/preferences")
async def update_my_preferences(
    data: PreferencesUpdate,
    user: dict = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return await users.update_preferences(user["id"], user["tenant_id"], data)


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    user: dict = Depends(require_permission("users:read")),
    users: UserService = Depends(get_user_service),
):
    return await users.get(user_id, user["tenant_id"])


@router.get("/{user_id}/permissions")
async def get_user_permissions(
    user_id: str,
    user: dict = Depends(require_permission("users:read")),
    users: UserService = Depends(get_user_service),
):
    return {"permissions": await users.get_permissions(user_id, user["tenant_id"])}


@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: dict = Depends(require_permission("users:update")),
    users: UserService = Depends(get_user_service),
):
    return await users.update(user_id, user["tenant_id"], data, actor=user)


@router.post("/{user_id}/activate")
async def activate_user(
    user_id: str,
    user: dict = Depends(require_permission("users:update")),
    users: UserService = Depends(get_user_service),
):
    return await users.set_active(user_id, user["tenant_id"], True, actor=user)


@router.post("/{user_id}/deactivate")
async def deactivate_user(
    user_id: str,
    user: dict = Depends(require_permission("users:update")),
    users: UserService = Depends(get_user_service),
):
    if user_id == user["id"]:
        raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
    return await users.set_active(user_id, user["tenant_id"], False, actor=user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    user: dict = Depends(require_permission("users:delete")),
    users: UserService = Depends(get_user_service),
):
    if user_id == user["id"]:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    await users.delete(user_id, user["tenant_id"], actor=user)
    return {"success": True}
