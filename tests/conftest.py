"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.common.constants import HalfDayPeriod, LeaveStatus, UserRole
from backend.config import settings
from backend.database import Base, get_db
from backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Employee → LeaveBalance, Notification, etc.)
import backend.common.audit  # noqa: F401
import backend.core_hr.models  # noqa: F401
import backend.leave.models  # noqa: F401
import backend.notifications.models  # noqa: F401

from backend.core_hr.models import Employee
from backend.leave.models import Holiday, LeaveApplication, LeaveBalance, LeaveType

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from backend.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    reporting_manager_id: Optional[uuid.UUID] = None,
) -> dict:
    code = uuid.uuid4().hex[:6].upper()
    return dict(
        id=uuid.uuid4(),
        employee_code=f"CF-{code}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"user.{code.lower()}@creativefuel.io",
        reporting_manager_id=reporting_manager_id,
        date_of_joining=date(2024, 1, 15),
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


async def seed_employee(db: AsyncSession, **kwargs) -> Employee:
    emp = Employee(**_make_employee(**kwargs))
    db.add(emp)
    await db.flush()
    return emp


async def seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "TL",
    name: str = "Total Leave",
    created_at: Optional[datetime] = None,
) -> LeaveType:
    lt = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        is_active=True,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(lt)
    await db.flush()
    return lt


async def seed_holiday(
    db: AsyncSession,
    day: date,
    *,
    name: str = "Holiday",
    is_optional: bool = False,
) -> Holiday:
    holiday = Holiday(id=uuid.uuid4(), name=name, date=day, is_optional=is_optional)
    db.add(holiday)
    await db.flush()
    return holiday


async def seed_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    year: int = 2025,
    allocated: Decimal = Decimal("18"),
    used: Decimal = Decimal("0"),
) -> LeaveBalance:
    bal = LeaveBalance(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year,
        allocated_days=allocated,
        used_days=used,
    )
    db.add(bal)
    await db.flush()
    return bal


async def seed_application(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    start: date,
    end: Optional[date] = None,
    *,
    status: LeaveStatus = LeaveStatus.pending,
    is_half_day: bool = False,
    days_count: Optional[Decimal] = None,
    applied_at: Optional[datetime] = None,
) -> LeaveApplication:
    """Insert an application directly, bypassing the workflow and ledger."""
    end = end or start
    app = LeaveApplication(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        start_date=start,
        end_date=end,
        is_half_day=is_half_day,
        half_day_period=HalfDayPeriod.first_half if is_half_day else None,
        days_count=days_count if days_count is not None else Decimal((end - start).days + 1),
        status=status,
        applied_at=applied_at or datetime.now(timezone.utc),
    )
    db.add(app)
    await db.flush()
    return app


@pytest.fixture
async def leave_bucket(db) -> LeaveType:
    """The consolidated leave type balances are kept against."""
    return await seed_leave_type(db)


@pytest.fixture
async def manager(db) -> Employee:
    return await seed_employee(db, first_name="Meera", last_name="Manager")


@pytest.fixture
async def test_employee(db, manager) -> Employee:
    """Active employee reporting to ``manager``."""
    return await seed_employee(db, reporting_manager_id=manager.id)


@pytest.fixture
async def hr_admin(db) -> Employee:
    return await seed_employee(db, first_name="Hari", last_name="HR")


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(
    employee_id: uuid.UUID, role: UserRole = UserRole.employee
) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, role)}"}
