"""
Tenant role constants.

Roles form a total order: a member satisfies a required role when their
own role sits at the same or a higher position in TENANT_ROLE_HIERARCHY.
"""

from enum import Enum


class TenantRole(str, Enum):
    """Enumeration of roles a user can hold inside a tenant."""

    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    TEACHER = "teacher"
    STUDENT = "student"
    VIEWER = "viewer"


# Lowest to highest
TENANT_ROLE_HIERARCHY: list[str] = [
    TenantRole.VIEWER.value,
    TenantRole.STUDENT.value,
    TenantRole.TEACHER.value,
    TenantRole.MANAGER.value,
    TenantRole.ADMIN.value,
    TenantRole.OWNER.value,
]

DEFAULT_TENANT_ROLE = TenantRole.STUDENT

OWNER_PERMISSIONS: list[str] = [
    "tenant.manage",
    "users.manage",
    "courses.manage",
    "content.manage",
    "analytics.view",
    "settings.manage",
    "billing.manage",
]

DEFAULT_PERMISSIONS_BY_ROLE: dict[str, list[str]] = {
    TenantRole.ADMIN.value: ["users.manage", "courses.manage", "content.manage", "analytics.view"],
    TenantRole.MANAGER.value: ["courses.manage", "content.manage", "users.view"],
    TenantRole.TEACHER.value: ["courses.create", "content.create", "students.view"],
    TenantRole.STUDENT.value: ["courses.view", "content.view"],
    TenantRole.VIEWER.value: ["courses.view"],
}


def role_level(role: str) -> int:
    """Position of a role in the hierarchy, or -1 for unknown roles."""
    try:
        return TENANT_ROLE_HIERARCHY.index(role)
    except ValueError:
        return -1


def has_required_role(user_role: str | None, required_role: str) -> bool:
    """
    Check whether user_role meets or exceeds required_role.

    Unknown role names on either side never satisfy the check.
    """
    if user_role is None:
        return False
    user_level = role_level(user_role)
    required_level = role_level(required_role)
    if user_level < 0 or required_level < 0:
        return False
    return user_level >= required_level


def get_default_permissions(role: str) -> list[str]:
    """Default permission set for an invited role (student set for unknown roles)."""
    if role == TenantRole.OWNER.value:
        return list(OWNER_PERMISSIONS)
    return list(DEFAULT_PERMISSIONS_BY_ROLE.get(role, DEFAULT_PERMISSIONS_BY_ROLE[DEFAULT_TENANT_ROLE.value]))
