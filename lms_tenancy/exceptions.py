"""
Exception classes for the tenancy service.

Every error raised by the service layer derives from TenancyError and
carries an HTTP status code plus a machine-readable ErrorCode, so the
handlers in exception_handlers.py can render a consistent envelope.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in error responses."""

    AUTH_FAILED = "AUTH_FAILED"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    TENANT_OWNER_PROTECTED = "TENANT_OWNER_PROTECTED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_TENANT_NOT_FOUND = "RESOURCE_TENANT_NOT_FOUND"
    RESOURCE_USER_NOT_FOUND = "RESOURCE_USER_NOT_FOUND"
    RESOURCE_MEMBER_NOT_FOUND = "RESOURCE_MEMBER_NOT_FOUND"
    RESOURCE_INVITATION_NOT_FOUND = "RESOURCE_INVITATION_NOT_FOUND"
    RESOURCE_DOMAIN_NOT_FOUND = "RESOURCE_DOMAIN_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_DUPLICATE_RESOURCE = "VALIDATION_DUPLICATE_RESOURCE"
    VALIDATION_INVALID_STATUS_TRANSITION = "VALIDATION_INVALID_STATUS_TRANSITION"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"
    INVALID_OPERATION = "INVALID_OPERATION"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class TenancyError(Exception):
    """Base exception class for all tenancy-related exceptions"""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(TenancyError):
    """Raised when no authenticated user is available"""

    error_code = ErrorCode.AUTH_FAILED

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class AuthorizationError(TenancyError):
    """Raised when a user lacks the tenant role or permission for an action"""

    error_code = ErrorCode.AUTH_PERMISSION_DENIED

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class OwnerProtectedError(AuthorizationError):
    """Raised on any attempt to remove or demote the tenant owner"""

    error_code = ErrorCode.TENANT_OWNER_PROTECTED

    def __init__(self, message: str = "Cannot remove the tenant owner", tenant_id: str | None = None):
        super().__init__(message=message, details={"tenant_id": tenant_id} if tenant_id else None)


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class ResourceNotFoundError(TenancyError):
    """Base class for resource not found errors"""

    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Any | None = None, message: str | None = None):
        if message is None:
            message = f"{resource_type} not found"
            if resource_id is not None:
                message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class TenantNotFoundError(ResourceNotFoundError):
    error_code = ErrorCode.RESOURCE_TENANT_NOT_FOUND

    def __init__(self, tenant_id: Any | None = None):
        super().__init__(resource_type="Tenant", resource_id=tenant_id)


class UserNotFoundError(ResourceNotFoundError):
    error_code = ErrorCode.RESOURCE_USER_NOT_FOUND

    def __init__(self, user_id: Any | None = None):
        super().__init__(resource_type="User", resource_id=user_id)


class TenantMemberNotFoundError(ResourceNotFoundError):
    error_code = ErrorCode.RESOURCE_MEMBER_NOT_FOUND

    def __init__(self, user_id: Any | None = None):
        super().__init__(resource_type="TenantUser", resource_id=user_id, message="User not found in this tenant")


class InvitationNotFoundError(ResourceNotFoundError):
    error_code = ErrorCode.RESOURCE_INVITATION_NOT_FOUND

    def __init__(self):
        super().__init__(resource_type="TenantInvitation", message="Invitation not found or already used")


class DomainNotFoundError(ResourceNotFoundError):
    error_code = ErrorCode.RESOURCE_DOMAIN_NOT_FOUND

    def __init__(self, domain_id: Any | None = None):
        super().__init__(resource_type="TenantDomain", resource_id=domain_id)


# ============================================================================
# Validation & Business Logic Exceptions
# ============================================================================


class ValidationError(TenancyError):
    """Raised when input validation fails"""

    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


class DuplicateResourceError(TenancyError):
    """Raised when a unique value (subdomain, domain, email, key) is already taken"""

    error_code = ErrorCode.VALIDATION_DUPLICATE_RESOURCE

    def __init__(self, resource_type: str, field: str, value: Any, message: str | None = None):
        super().__init__(
            message=message or f"{resource_type} with {field} '{value}' already exists",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource_type": resource_type, "field": field, "value": value},
        )


class InvitationExpiredError(TenancyError):
    error_code = ErrorCode.INVITATION_EXPIRED

    def __init__(self, message: str = "Invitation has expired"):
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST)


class InvalidStatusTransitionError(TenancyError):
    """Raised when an invalid status transition is attempted"""

    error_code = ErrorCode.VALIDATION_INVALID_STATUS_TRANSITION

    def __init__(self, current_status: str, target_status: str, resource_type: str = "Tenant"):
        super().__init__(
            message=f"Cannot transition {resource_type} from '{current_status}' to '{target_status}'",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"resource_type": resource_type, "current_status": current_status, "target_status": target_status},
        )


class InvalidOperationError(TenancyError):
    """Raised when an operation is invalid in the current context"""

    error_code = ErrorCode.INVALID_OPERATION

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


# ============================================================================
# Infrastructure Exceptions
# ============================================================================


class ProvisioningError(TenancyError):
    """Raised when a tenant schema or database cannot be provisioned"""

    error_code = ErrorCode.PROVISIONING_FAILED

    def __init__(self, message: str = "Tenant isolation provisioning failed", isolation_level: str | None = None):
        details = {"isolation_level": isolation_level} if isolation_level else {}
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)
