"""
Plan-derived defaults for new tenants.

Limit values: None means no limit configured, UNLIMITED (-1) means the plan
is explicitly unlimited, and any value >= 0 is enforced as a hard cap.
"""

import copy
from enum import Enum

UNLIMITED = -1


class TenantPlan(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


PLAN_FEATURES: dict[str, dict] = {
    TenantPlan.FREE.value: {
        "max_users": 10,
        "max_courses": 5,
        "max_storage_gb": 1,
        "video_streaming": False,
        "live_streaming": False,
        "custom_branding": False,
        "sso_integration": False,
        "api_access": False,
        "analytics": False,
        "custom_domain": False,
    },
    TenantPlan.STARTER.value: {
        "max_users": 50,
        "max_courses": 25,
        "max_storage_gb": 10,
        "video_streaming": True,
        "live_streaming": False,
        "custom_branding": True,
        "sso_integration": False,
        "api_access": True,
        "analytics": True,
        "custom_domain": False,
    },
    TenantPlan.PROFESSIONAL.value: {
        "max_users": 200,
        "max_courses": 100,
        "max_storage_gb": 50,
        "video_streaming": True,
        "live_streaming": True,
        "custom_branding": True,
        "sso_integration": True,
        "api_access": True,
        "analytics": True,
        "custom_domain": True,
    },
    TenantPlan.ENTERPRISE.value: {
        "max_users": UNLIMITED,
        "max_courses": UNLIMITED,
        "max_storage_gb": 500,
        "video_streaming": True,
        "live_streaming": True,
        "custom_branding": True,
        "sso_integration": True,
        "api_access": True,
        "analytics": True,
        "custom_domain": True,
        "white_labeling": True,
        "advanced_reporting": True,
        "custom_roles": True,
    },
}

DEFAULT_BRANDING: dict = {
    "primary_color": "#3b82f6",
    "secondary_color": "#64748b",
    "accent_color": "#0ea5e9",
    "background_color": "#ffffff",
    "text_color": "#1f2937",
    "font_family": "Inter, sans-serif",
}

DEFAULT_SETTINGS: dict = {
    "timezone": "UTC",
    "language": "en",
    "date_format": "MM/DD/YYYY",
    "currency": "USD",
    "allow_user_registration": True,
    "require_email_verification": True,
    "enable_mfa": False,
    "session_timeout_minutes": 60,
    "password_policy": {
        "min_length": 8,
        "require_uppercase": True,
        "require_numbers": True,
        "require_symbols": False,
        "expire_after_days": 90,
    },
}


def get_plan_features(plan: str) -> dict:
    """Feature set for a plan; unknown plans get the free tier."""
    return copy.deepcopy(PLAN_FEATURES.get(plan, PLAN_FEATURES[TenantPlan.FREE.value]))


def get_default_branding() -> dict:
    return copy.deepcopy(DEFAULT_BRANDING)


def get_default_settings() -> dict:
    return copy.deepcopy(DEFAULT_SETTINGS)
