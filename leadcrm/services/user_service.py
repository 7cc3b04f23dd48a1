"""
Lead CRM - Users & sessions

Users are created or refreshed on every successful OAuth sign-in. The
permission list stored on a user is a snapshot of its role, refreshed only
when the role changes.
"""

import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Union

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..config import SESSION_TTL_DAYS, generate_token, now_iso, utc_now
from ..errors import NotFoundError, ValidationError
from ..models.audit import AuditEvent, AuditEventType, AuditSeverity
from ..models.auth import (
    DEFAULT_ROLE,
    OAuthProfile,
    PreferencesUpdate,
    UserPreferences,
    UserUpdate,
)
from .lead_service import parse_model
from .permissions import AccessControl
from .tenant_store import scoped

logger = logging.getLogger("user_service")

PROFILE_FIELDS = ("email", "name", "first_name", "last_name", "avatar_url")


class UserService:
    def __init__(self, db, access_control: AccessControl, audit=None):
        self.db = db
        self.access = access_control
        self.audit = audit

    def _users(self, tenant_id: str):
        return scoped(self.db, "users", tenant_id)

    def _snapshot(self, role: str) -> list:
        return sorted(self.access.permissions_for(role))

    def _emit(self, user: dict, event_type: AuditEventType, actor: Optional[dict] = None,
              severity: AuditSeverity = AuditSeverity.LOW, metadata: Optional[dict] = None):
        if self.audit is None:
            return
        actor = actor or user
        self.audit.emit(AuditEvent(
            tenant_id=user["tenant_id"],
            event_type=event_type,
            severity=severity,
            resource="users",
            action=event_type.value,
            resource_id=user["id"],
            user_id=actor.get("id"),
            target_user_id=user["id"],
            user_roles=[actor.get("role", "")],
            metadata=metadata or {},
        ))

    # ==================== SIGN-IN ====================

    async def upsert_from_oauth(self, profile: Union[OAuthProfile, dict]) -> dict:
        """Create the user on first sign-in, refresh its profile afterwards."""
        profile = parse_model(OAuthProfile, profile)
        now = now_iso()
        existing = await self.db.users.find_one({"google_id": profile.google_id}, {"_id": 0})

        if existing is None:
            user = {
                "id": str(uuid.uuid4()),
                "google_id": profile.google_id,
                "tenant_id": profile.tenant_id,
                **{k: getattr(profile, k) for k in PROFILE_FIELDS},
                "role": DEFAULT_ROLE,
                "permissions": self._snapshot(DEFAULT_ROLE),
                "is_active": True,
                "preferences": UserPreferences().model_dump(mode="json"),
                "login_count": 1,
                "last_login": now,
                "created_at": now,
                "updated_at": now,
            }
            try:
                await self.db.users.insert_one(user)
            except DuplicateKeyError:
                # concurrent first sign-in already created it
                return await self.upsert_from_oauth(profile)
            user.pop("_id", None)
            logger.info(f"[USER_CREATED] tenant={user['tenant_id']} email={user['email']}")
            self._emit(user, AuditEventType.USER_CREATED)
            self._emit(user, AuditEventType.LOGIN_SUCCESS)
            return user

        # tenant is fixed at creation; the bridge cannot move a user
        if existing.get("tenant_id") != profile.tenant_id:
            logger.warning(
                f"[USER_TENANT_MISMATCH] google_id={profile.google_id} "
                f"stored={existing.get('tenant_id')} claimed={profile.tenant_id}"
            )
        user = await self.db.users.find_one_and_update(
            {"id": existing["id"]},
            {
                "$set": {
                    **{k: getattr(profile, k) for k in PROFILE_FIELDS},
                    "last_login": now,
                    "updated_at": now,
                },
                "$inc": {"login_count": 1},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        self._emit(user, AuditEventType.LOGIN_SUCCESS)
        return user

    async def create_session(self, user: dict) -> dict:
        session = {
            "token": generate_token(),
            "user_id": user["id"],
            "tenant_id": user["tenant_id"],
            "created_at": now_iso(),
            "expires_at": (utc_now() + timedelta(days=SESSION_TTL_DAYS)).isoformat(),
        }
        await self.db.sessions.insert_one(session)
        session.pop("_id", None)
        return session

    async def resolve_session(self, token: str) -> Optional[dict]:
        """User behind a live session token, or None."""
        session = await self.db.sessions.find_one({"token": token, "expires_at": {"$gt": now_iso()}})
        if not session:
            return None
        return await self._users(session["tenant_id"]).find_one({"id": session["user_id"]})

    async def end_session(self, token: str) -> None:
        await self.db.sessions.delete_one({"token": token})

    # ==================== CRUD (tenant-scoped) ====================

    async def get(self, user_id: str, tenant_id: str) -> dict:
        user = await self._users(tenant_id).find_one({"id": user_id})
        if not user:
            raise NotFoundError("User not found")
        return user

    async def list(self, tenant_id: str, include_inactive: bool = True) -> List[dict]:
        query = {} if include_inactive else {"is_active": True}
        return await self._users(tenant_id).find(query, sort=[("created_at", 1)])

    async def update(self, user_id: str, tenant_id: str, patch: Union[UserUpdate, dict], actor: Optional[dict] = None) -> dict:
        changes = parse_model(UserUpdate, patch).model_dump(exclude_unset=True)
        current = await self.get(user_id, tenant_id)
        if not changes:
            return current
        if "role" in changes:
            if changes["role"] is None:
                raise ValidationError("Role cannot be empty", [{"field": "role", "message": "required"}])
            changes["permissions"] = self._snapshot(changes["role"])
        changes["updated_at"] = now_iso()

        user = await self._users(tenant_id).find_one_and_update({"id": user_id}, {"$set": changes})
        if user is None:
            raise NotFoundError("User not found")

        if "role" in changes and changes["role"] != current.get("role"):
            logger.info(f"[ROLE_CHANGED] user={user_id} {current.get('role')} -> {changes['role']}")
            self._emit(
                user, AuditEventType.ROLE_ASSIGNED, actor, AuditSeverity.MEDIUM,
                {"old_value": current.get("role"), "new_value": changes["role"]},
            )
        else:
            self._emit(user, AuditEventType.USER_MODIFIED, actor)
        return user

    async def set_active(self, user_id: str, tenant_id: str, active: bool, actor: Optional[dict] = None) -> dict:
        user = await self._users(tenant_id).find_one_and_update(
            {"id": user_id}, {"$set": {"is_active": active, "updated_at": now_iso()}}
        )
        if user is None:
            raise NotFoundError("User not found")
        if not active:
            await self.db.sessions.delete_many({"user_id": user_id})
        self._emit(
            user, AuditEventType.USER_ACTIVATED if active else AuditEventType.USER_DEACTIVATED, actor
        )
        return user

    async def delete(self, user_id: str, tenant_id: str, actor: Optional[dict] = None) -> None:
        user = await self.get(user_id, tenant_id)
        await self._users(tenant_id).delete_one({"id": user_id})
        await self.db.sessions.delete_many({"user_id": user_id})
        logger.info(f"[USER_DELETED] tenant={tenant_id} id={user_id}")
        self._emit(user, AuditEventType.USER_DELETED, actor, AuditSeverity.MEDIUM)

    async def get_permissions(self, user_id: str, tenant_id: str) -> List[str]:
        user = await self.get(user_id, tenant_id)
        return user.get("permissions") or []

    async def update_preferences(self, user_id: str, tenant_id: str, patch: Union[PreferencesUpdate, dict]) -> dict:
        changes = parse_model(PreferencesUpdate, patch).model_dump(exclude_unset=True, exclude_none=True)
        current = await self.get(user_id, tenant_id)
        if not changes:
            return current
        update = {f"preferences.{k}": v for k, v in changes.items()}
        update["updated_at"] = now_iso()
        return await self._users(tenant_id).find_one_and_update({"id": user_id}, {"$set": update})
