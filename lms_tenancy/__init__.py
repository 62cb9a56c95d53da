"""EduTech LMS multi-tenancy service."""

__version__ = "1.0.0"
