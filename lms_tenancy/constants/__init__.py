"""Constants package for the tenancy service."""

from .plans import UNLIMITED, TenantPlan, get_default_branding, get_default_settings, get_plan_features
from .roles import (
    DEFAULT_TENANT_ROLE,
    OWNER_PERMISSIONS,
    TENANT_ROLE_HIERARCHY,
    TenantRole,
    get_default_permissions,
    has_required_role,
    role_level,
)

__all__ = [
    # Role constants
    "TenantRole",
    "DEFAULT_TENANT_ROLE",
    "OWNER_PERMISSIONS",
    "TENANT_ROLE_HIERARCHY",
    "get_default_permissions",
    "has_required_role",
    "role_level",
    # Plan constants
    "TenantPlan",
    "UNLIMITED",
    "get_plan_features",
    "get_default_branding",
    "get_default_settings",
]
