from .tenant import IsolationLevel, Tenant, TenantPlan, TenantStatus
from .tenant_audit_log import AuditLevel, TenantAuditLog
from .tenant_configuration import TenantConfiguration
from .tenant_domain import DomainType, TenantDomain
from .tenant_usage import TenantUsageMetric, UsageAggregation
from .tenant_user import InvitationStatus, TenantInvitation, TenantUser
from .user import User

__all__ = [
    "AuditLevel",
    "DomainType",
    "InvitationStatus",
    "IsolationLevel",
    "Tenant",
    "TenantAuditLog",
    "TenantConfiguration",
    "TenantDomain",
    "TenantInvitation",
    "TenantPlan",
    "TenantStatus",
    "TenantUsageMetric",
    "TenantUser",
    "UsageAggregation",
    "User",
]
