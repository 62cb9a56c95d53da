"""
Pytest configuration and fixtures for the tenancy service tests.

Every test that touches the database gets a fresh in-memory SQLite
database. The session factory used outside request scope (middleware,
detached audit writes) is patched to point at the same database.
"""

import os
import sys

# Must be set before lms_tenancy.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH120

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from lms_tenancy import database  # noqa: E402
from lms_tenancy import models  # noqa: E402, F401
from lms_tenancy.config import settings  # noqa: E402
from lms_tenancy.database import Base  # noqa: E402
from lms_tenancy.models.user import User  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_engine():
    """A fresh in-memory database with every table created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine, monkeypatch):
    """Session factory bound to the test database, also installed as database.AsyncSessionLocal."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(database, "AsyncSessionLocal", factory)
    return factory


@pytest.fixture(scope="function")
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def default_tenancy_settings(monkeypatch):
    """Reset the settings tests commonly flip."""
    monkeypatch.setattr(settings, "audit_mode", "transactional")
    monkeypatch.setattr(settings, "enable_multitenancy", True)
    monkeypatch.setattr(settings, "record_api_usage", True)


@pytest.fixture
def make_user(session_factory):
    """Factory fixture: await make_user("bob@x.com") -> persisted User."""

    async def _make_user(email: str, username: str | None = None) -> User:
        async with session_factory() as session:
            user = User(email=email, username=username or email.split("@")[0])
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make_user


@pytest.fixture
async def owner(make_user) -> User:
    return await make_user("owner@acme.test", "owner")


@pytest.fixture
async def active_tenant(session_factory, owner):
    """An active tenant on the starter plan, owned by `owner`, created outside the `db` session."""
    from lms_tenancy.services.tenant_service import create_tenant

    async with session_factory() as session:
        return await create_tenant(name="Acme", subdomain="acme", owner_id=owner.id, db=session, plan="starter")


@pytest.fixture
def auth_headers():
    """Factory fixture: auth_headers(user_id) -> Authorization header for that user."""
    from lms_tenancy.auth import create_access_token

    def _auth_headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}

    return _auth_headers
