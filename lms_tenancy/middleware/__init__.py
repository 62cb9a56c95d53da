from .auth import AuthMiddleware
from .logging import StructuredLoggingMiddleware, setup_structured_logging
from .tenant import TenantMiddleware

__all__ = ["AuthMiddleware", "StructuredLoggingMiddleware", "TenantMiddleware", "setup_structured_logging"]
