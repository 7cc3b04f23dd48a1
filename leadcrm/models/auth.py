"""
Lead CRM - User & auth models
Roles are presets; the permission list on a user is a snapshot of its role.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .lead import normalize_email


class UserRole(str, Enum):
    ADMIN = "admin"
    ACQUISITION_REP = "acquisition_rep"
    DISPOSITION_MANAGER = "disposition_manager"


VALID_ROLES = [r.value for r in UserRole]
DEFAULT_ROLE = UserRole.ACQUISITION_REP.value


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class DefaultView(str, Enum):
    LIST = "list"
    PIPELINE = "pipeline"
    CARDS = "cards"


class UserPreferences(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    theme: Theme = Theme.SYSTEM
    notifications: bool = True
    default_view: DefaultView = DefaultView.PIPELINE


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    theme: Optional[Theme] = None
    notifications: Optional[bool] = None
    default_view: Optional[DefaultView] = None


class OAuthProfile(BaseModel):
    """Verified Google profile handed over by the identity bridge"""
    google_id: str
    email: str
    tenant_id: str
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: Optional[str] = None

    @field_validator("google_id", "tenant_id")
    @classmethod
    def validate_required(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Field is required")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = normalize_email(v)
        if not v:
            raise ValueError("Email is required")
        return v


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[str] = None

    @field_validator("name", "first_name", "last_name")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v.strip()

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v is not None and v not in VALID_ROLES:
            raise ValueError(f"Invalid role: {v}. Valid: {VALID_ROLES}")
        return v
