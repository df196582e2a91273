"""
Test Configuration and Fixtures

Shared fixtures for STEWARD API tests.
Provides an isolated database, a seeded role/permission store and
identity headers for each seeded user.
"""

import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from steward.api.main import create_app
from steward.api.db.models import Base, Permission, Role, RolePermission, User
from steward.api.db.session import get_db


PERMISSION_NAMES = [
    "system.admin.access",
    "system.settings",
    "system.users.view",
    "system.roles.manage",
    "system.logs.view",
    "members.view.all",
    "members.edit.basic",
    "finance.view.summary",
    "finance.view.detail",
    "ministry.view",
]

ROLE_LEVELS = {
    "admin": 1000,
    "pastor": 800,
    "elder": 600,
    "member": 100,
}

ROLE_GRANTS = {
    "admin": PERMISSION_NAMES,
    "pastor": [
        "system.admin.access",
        "members.view.all",
        "members.edit.basic",
        "finance.view.summary",
        "finance.view.detail",
    ],
    "elder": ["system.admin.access", "members.view.all"],
    "member": ["ministry.view"],
}


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(db_session) -> FastAPI:
    """Create FastAPI app with test database."""
    test_app = create_app()

    async def override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ==================== Store Fixtures ====================


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def permissions(db_session) -> Dict[str, Permission]:
    """Seed the permission catalogue."""
    seeded = {}
    for name in PERMISSION_NAMES:
        permission = Permission(
            id=uuid.uuid4(),
            name=name,
            category=name.split(".")[0],
            is_active=True,
        )
        db_session.add(permission)
        seeded[name] = permission
    await db_session.commit()
    return seeded


@pytest_asyncio.fixture(scope="function")
async def roles(db_session, permissions) -> Dict[str, Role]:
    """Seed roles with their base permission sets."""
    seeded = {}
    for name, level in ROLE_LEVELS.items():
        role = Role(id=uuid.uuid4(), name=name, level=level)
        db_session.add(role)
        seeded[name] = role

    for role_name, granted in ROLE_GRANTS.items():
        for permission_name in granted:
            db_session.add(
                RolePermission(
                    role_id=seeded[role_name].id,
                    permission_id=permissions[permission_name].id,
                )
            )
    await db_session.commit()
    return seeded


@pytest.fixture
def user_factory(db_session, roles, now):
    """Create users with a fresh login and no review history."""

    async def _create(role: str = "member", **kwargs) -> User:
        values = {
            "id": uuid.uuid4(),
            "username": f"{role}-{uuid.uuid4().hex[:6]}",
            "role": role,
            "is_active": True,
            "last_login": now,
            "last_permission_review": None,
        }
        values.update(kwargs)
        values.setdefault("email", f"{values['username']}@example.org")

        user = User(**values)
        db_session.add(user)
        await db_session.commit()
        return user

    return _create


@pytest_asyncio.fixture(scope="function")
async def admin_user(user_factory) -> User:
    return await user_factory("admin")


@pytest_asyncio.fixture(scope="function")
async def pastor_user(user_factory) -> User:
    return await user_factory("pastor")


@pytest_asyncio.fixture(scope="function")
async def member_user(user_factory) -> User:
    return await user_factory("member")


def identity_headers(user: User) -> dict:
    """Headers the session layer forwards for an authenticated user."""
    return {"X-User-Id": str(user.id)}


@pytest.fixture(scope="function")
def admin_headers(admin_user) -> dict:
    return identity_headers(admin_user)


@pytest.fixture(scope="function")
def pastor_headers(pastor_user) -> dict:
    return identity_headers(pastor_user)


@pytest.fixture(scope="function")
def member_headers(member_user) -> dict:
    return identity_headers(member_user)
