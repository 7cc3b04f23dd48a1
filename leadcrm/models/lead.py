"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Lead CRM - Lead model                                                       ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. A lead always belongs to exactly one tenant (tenant_id, immutable)       ║
║  2. (tenant_id, phone) is unique; phones are stored normalized               ║
║  3. Pipeline statuses: new, contacted, under_contract, closed, lost          ║
║  4. A new lead starts at status=new, priority=medium, 0 communications       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    UNDER_CONTRACT = "under_contract"
    CLOSED = "closed"
    LOST = "lost"


# Board column order
VALID_LEAD_STATUSES = [s.value for s in LeadStatus]


class LeadPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class LeadSource(str, Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    SOCIAL_MEDIA = "social_media"
    COLD_CALL = "cold_call"
    EMAIL_CAMPAIGN = "email_campaign"
    SMS_CAMPAIGN = "sms_campaign"
    OPEN_HOUSE = "open_house"
    FOR_SALE_SIGN = "for_sale_sign"
    ONLINE_AD = "online_ad"
    PRINT_AD = "print_ad"
    EVENT = "event"
    PARTNER = "partner"
    OTHER = "other"


class PropertyType(str, Enum):
    SINGLE_FAMILY = "single_family"
    TOWNHOUSE = "townhouse"
    CONDOMINIUM = "condominium"
    DUPLEX = "duplex"
    TRIPLEX = "triplex"
    FOURPLEX = "fourplex"
    MULTI_FAMILY = "multi_family"
    COMMERCIAL = "commercial"
    LAND = "land"
    OTHER = "other"


NAME_MAX_LENGTH = 100
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
_PHONE_SEPARATORS = re.compile(r"[\s\-.()]")


def normalize_phone(phone: str) -> str:
    """
    Strip separators and validate against the E.164-like pattern.
    Returns the normalized phone, raises ValueError otherwise.
    """
    if phone is None or not str(phone).strip():
        raise ValueError("Phone is required")
    cleaned = _PHONE_SEPARATORS.sub("", str(phone))
    if not PHONE_RE.match(cleaned):
        raise ValueError(f"Invalid phone format: {phone}")
    return cleaned


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    if not email:
        return None
    if not EMAIL_RE.match(email):
        raise ValueError(f"Invalid email format: {email}")
    return email


def normalize_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("Name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValueError(f"Name must be at most {NAME_MAX_LENGTH} characters")
    return name


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Strip, drop blanks, dedupe keeping first occurrence."""
    seen: List[str] = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    county: Optional[str] = None
    full_address: Optional[str] = None

    @field_validator("zip")
    @classmethod
    def validate_zip(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not ZIP_RE.match(v):
            raise ValueError(f"Invalid zip code: {v}")
        return v


class PropertyDetails(BaseModel):
    type: Optional[PropertyType] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)
    square_feet: Optional[int] = Field(default=None, ge=0)
    lot_size: Optional[float] = Field(default=None, ge=0)
    year_built: Optional[int] = None

    @field_validator("year_built")
    @classmethod
    def validate_year_built(cls, v):
        if v is None:
            return v
        max_year = datetime.now(timezone.utc).year + 1
        if v < 1800 or v > max_year:
            raise ValueError(f"year_built must be between 1800 and {max_year}")
        return v


class _LeadFields(BaseModel):
    """Fields shared by create and update payloads"""
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    email: Optional[str] = None
    address: Optional[Address] = None
    property_details: Optional[PropertyDetails] = None
    estimated_value: Optional[float] = Field(default=None, ge=0)
    asking_price: Optional[float] = Field(default=None, ge=0)
    source: Optional[LeadSource] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    next_follow_up: Optional[datetime] = None
    custom_fields: Optional[Dict[str, Any]] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)


class LeadCreate(_LeadFields):
    """New lead. status/priority/communication_count are set by the service."""
    name: str
    phone: str
    tags: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return normalize_name(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return normalize_phone(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        return normalize_tags(v)


class LeadUpdate(_LeadFields):
    """Partial update. Only fields explicitly sent are applied."""
    name: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[LeadStatus] = None
    priority: Optional[LeadPriority] = None
    tags: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        # only runs when sent explicitly, so null is rejected
        return normalize_name(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return normalize_phone(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        if v is None:
            raise ValueError("tags cannot be null, send [] to clear")
        return normalize_tags(v)

    @field_validator("status", "priority", "custom_fields")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class LeadFilters(BaseModel):
    """List / pipeline filters. `status` only applies to list views."""
    model_config = ConfigDict(use_enum_values=True)

    status: Optional[LeadStatus] = None
    assigned_to: Optional[str] = None
    source: Optional[str] = None
    priority: Optional[LeadPriority] = None
    tags: Optional[List[str]] = None
    search: Optional[str] = None


class StatusChange(BaseModel):
    status: str


class Assignment(BaseModel):
    user_id: Optional[str] = None


class TagPayload(BaseModel):
    tag: str


# ==================== BULK ====================

MAX_BULK_SIZE = 500


class BulkLeadIds(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lead_ids: List[str] = Field(min_length=1, max_length=MAX_BULK_SIZE)


class BulkLeadUpdate(BulkLeadIds):
    patch: LeadUpdate


class BulkStatusChange(BulkLeadIds):
    status: str


class BulkAssignment(BulkLeadIds):
    user_id: Optional[str] = None


class BulkLeadCreate(BaseModel):
    leads: List[LeadCreate] = Field(min_length=1, max_length=MAX_BULK_SIZE)
