import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lms_tenancy.config import settings
from lms_tenancy.database import Base, engine
from lms_tenancy.exception_handlers import register_exception_handlers
from lms_tenancy.middleware import AuthMiddleware, StructuredLoggingMiddleware, TenantMiddleware
from lms_tenancy.middleware.logging import setup_structured_logging
from lms_tenancy.routes import tenants

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tasks to run at application startup and shutdown."""
    logger.info("Starting up the application...")
    if settings.debug:
        # Migrations own the schema outside debug runs
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")
    yield
    logger.info("Shutting down the application...")
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    setup_structured_logging(
        log_level="DEBUG" if settings.debug else "INFO",
        json_format=settings.environment == "production",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Multi-tenancy layer for the EduTech LMS",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    # Starlette middleware is LIFO: logging wraps CORS, CORS wraps auth, auth runs before tenant resolution
    app.add_middleware(TenantMiddleware)
    app.add_middleware(AuthMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Tenant-ID", "X-Tenant-Name"],
    )
    app.add_middleware(StructuredLoggingMiddleware)

    app.include_router(tenants.router, prefix="/api/v1/tenants")

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "version": settings.app_version}

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
