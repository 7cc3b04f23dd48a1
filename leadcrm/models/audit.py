"""
Lead CRM - Audit log models
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEventType(str, Enum):
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    MFA_ENABLED = "mfa_enabled"
    MFA_FAILED = "mfa_failed"

    # Authorization
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_DENIED = "permission_denied"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"

    # Data access
    DATA_ACCESSED = "data_accessed"
    DATA_CREATED = "data_created"
    DATA_MODIFIED = "data_modified"
    DATA_DELETED = "data_deleted"
    DATA_EXPORTED = "data_exported"
    DATA_IMPORTED = "data_imported"

    # Security
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    BRUTE_FORCE_ATTEMPT = "brute_force_attempt"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    SESSION_EXPIRED = "session_expired"
    SESSION_TERMINATED = "session_terminated"

    # Compliance
    GDPR_REQUEST = "gdpr_request"
    GDPR_DELETION = "gdpr_deletion"
    GDPR_EXPORT = "gdpr_export"
    DATA_RETENTION = "data_retention"
    DATA_ANONYMIZATION = "data_anonymization"

    # System
    CONFIGURATION_CHANGE = "configuration_change"

    # User management
    USER_CREATED = "user_created"
    USER_MODIFIED = "user_modified"
    USER_DELETED = "user_deleted"
    USER_ACTIVATED = "user_activated"
    USER_DEACTIVATED = "user_deactivated"

    # API
    API_ACCESS = "api_access"
    API_ERROR = "api_error"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ComplianceFramework(str, Enum):
    GDPR = "gdpr"
    SOC2 = "soc2"
    HIPAA = "hipaa"
    PCI_DSS = "pci_dss"
    ISO27001 = "iso27001"


class AuditEvent(BaseModel):
    """An event as emitted by a service, before enrichment"""
    model_config = ConfigDict(use_enum_values=True)

    tenant_id: str
    event_type: AuditEventType
    resource: str
    action: str
    severity: AuditSeverity = AuditSeverity.LOW
    description: str = ""
    user_id: Optional[str] = None
    target_user_id: Optional[str] = None
    user_roles: List[str] = Field(default_factory=list)
    resource_id: Optional[str] = None
    ip_address: str = ""
    user_agent: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    compliance_frameworks: List[ComplianceFramework] = Field(default_factory=list)
    is_sensitive: bool = False
    timestamp: Optional[datetime] = None


class AuditFilters(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    event_type: Optional[AuditEventType] = None
    severity: Optional[AuditSeverity] = None
    user_id: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    is_sensitive: Optional[bool] = None
    framework: Optional[ComplianceFramework] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
