"""
Lead CRM - Models package
from leadcrm.models import LeadCreate, LeadStatus, OAuthProfile, etc.
"""

from .lead import (
    LeadStatus,
    LeadPriority,
    LeadSource,
    PropertyType,
    VALID_LEAD_STATUSES,
    Address,
    PropertyDetails,
    LeadCreate,
    LeadUpdate,
    LeadFilters,
    StatusChange,
    Assignment,
    TagPayload,
    BulkLeadIds,
    BulkLeadUpdate,
    BulkStatusChange,
    BulkAssignment,
    BulkLeadCreate,
    normalize_phone,
)

from .auth import (
    UserRole,
    VALID_ROLES,
    DEFAULT_ROLE,
    UserPreferences,
    PreferencesUpdate,
    OAuthProfile,
    UserUpdate,
)

from .audit import (
    AuditEventType,
    AuditSeverity,
    ComplianceFramework,
    AuditEvent,
    AuditFilters,
)
