"""
Shared pytest configuration for backend tests.

Service tests run against a throwaway SQLite file (via aiosqlite) created per
test. The same database is patched into ``db.AsyncSessionLocal`` so code that
opens its own sessions (notification fan-out, the cleanup worker) sees the
rows the test created.
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENABLE_EMAIL", "false")

import asyncio  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from hoa_courts.database import db  # noqa: E402
from hoa_courts.database.db import Base  # noqa: E402
from hoa_courts.services import hoa_service, user_service, rate_limiting_service  # noqa: E402
from hoa_courts.services.rate_limiting_service import InMemoryRateLimiter  # noqa: E402

SUPER_ADMIN = {
    "id": 0,
    "user_id": 0,
    "hoa_id": None,
    "role": "super_admin",
    "is_active": True,
}

ADMIN_PASSWORD = "adminpass123"
MEMBER_PASSWORD = "memberpass123"


class _SerializedSessionMaker:
    """
    Hands out sessions one at a time.

    SQLite allows a single writer, so concurrent fan-out sessions take turns
    instead of failing with "database is locked".
    """

    def __init__(self, session_maker):
        self._session_maker = session_maker
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def __call__(self):
        async with self._lock:
            async with self._session_maker() as session:
                yield session


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    """Each test starts with empty rate-limit counters."""
    rate_limiting_service.set_rate_limiter(InMemoryRateLimiter())
    yield


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine backed by a temporary SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = _SerializedSessionMaker(test_session_maker)

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Session for the test body."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest_asyncio.fixture
async def hoa(db_session):
    """An active HOA with 4 courts, guests allowed, on UTC time."""
    result = await hoa_service.create_hoa(
        db_session,
        SUPER_ADMIN,
        name="Sunset Ridge HOA",
        slug="sunset-ridge",
        admin_email="admin@sunsetridge.org",
        admin_name="Alex Admin",
        admin_phone="(555) 000-1000",
        total_courts=4,
        admin_password=ADMIN_PASSWORD,
        timezone="UTC",
        allow_guest_bookings=True,
        max_guests_per_booking=2,
    )
    return result


@pytest_asyncio.fixture
async def hoa_admin(db_session, hoa):
    """Profile dict of the HOA's first admin."""
    return await user_service.get_profile_by_user_id(db_session, hoa["admin_user_id"])


@pytest_asyncio.fixture
async def make_member(db_session):
    """Factory registering members into an HOA with its invitation code."""
    counter = {"n": 0}

    async def _make(hoa_dict, full_name=None, email=None, phone_number=None):
        counter["n"] += 1
        n = counter["n"]
        return await user_service.register_user(
            db_session,
            email=email or f"member{n}@{hoa_dict['slug']}.org",
            password=MEMBER_PASSWORD,
            full_name=full_name or f"Member {n}",
            phone_number=phone_number or f"555{n:07d}",
            invitation_code=hoa_dict["invitation_code"],
        )

    return _make


@pytest_asyncio.fixture
async def second_hoa(db_session):
    """Another tenant, used for cross-HOA checks."""
    result = await hoa_service.create_hoa(
        db_session,
        SUPER_ADMIN,
        name="Lakeside Commons",
        slug="lakeside-commons",
        admin_email="admin@lakeside.org",
        admin_name="Lee Admin",
        admin_phone="5550002000",
        total_courts=2,
        admin_password=ADMIN_PASSWORD,
        timezone="UTC",
    )
    return result


@pytest.fixture
def super_admin():
    """Platform-wide actor dict; not tied to any HOA."""
    return dict(SUPER_ADMIN)
