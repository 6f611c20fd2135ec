import os
import uuid
from datetime import date, timedelta
from typing import AsyncGenerator, Optional

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.security import create_access_token
from app.core.models import AcademicTerm, Student, Tenant
from app.db.session import Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _create_tenant(db: AsyncSession, code: str, name: str) -> Tenant:
    tenant = Tenant(organization_code=code, organization_name=name, status="ACTIVE")
    db.add(tenant)
    await db.commit()
    return tenant


@pytest.fixture()
async def tenant(db_session: AsyncSession) -> Tenant:
    return await _create_tenant(db_session, "SCH-TEST", "Test School")


@pytest.fixture()
async def other_tenant(db_session: AsyncSession) -> Tenant:
    return await _create_tenant(db_session, "SCH-OTHR", "Other School")


def _make_token(tenant_id, role: str = "SUPER_ADMIN", permissions: Optional[dict] = None) -> str:
    user_id = str(uuid.uuid4())
    subject = {
        "sub": user_id,
        "user_id": user_id,
        "tenant_id": str(tenant_id),
        "role": role,
    }
    if permissions is not None:
        subject["permissions"] = permissions
    return create_access_token(subject=subject)


@pytest.fixture()
def make_token():
    """Signed access token for a tenant, e.g. make_token(tenant.id, role="ACCOUNTANT", permissions={...})."""
    return _make_token


@pytest.fixture()
def auth_headers(tenant: Tenant) -> dict:
    return {"Authorization": f"Bearer {_make_token(tenant.id)}"}


@pytest.fixture()
def other_auth_headers(other_tenant: Tenant) -> dict:
    return {"Authorization": f"Bearer {_make_token(other_tenant.id)}"}


@pytest.fixture()
def make_student(db_session: AsyncSession):
    counter = {"n": 0}

    async def _make(
        tenant: Tenant,
        grade: Optional[str] = "5",
        transport_mode: Optional[str] = None,
        status: str = "ACTIVE",
        full_name: Optional[str] = None,
    ) -> Student:
        counter["n"] += 1
        student = Student(
            tenant_id=tenant.id,
            admission_number=f"ADM{counter['n']:04d}",
            full_name=full_name or f"Student {counter['n']}",
            grade=grade,
            status=status,
            transport_mode=transport_mode,
        )
        db_session.add(student)
        await db_session.commit()
        return student

    return _make


@pytest.fixture()
def make_term(db_session: AsyncSession):
    async def _make(
        tenant: Tenant,
        name: str = "Term 1",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        fee_due_date: Optional[date] = None,
        academic_year: Optional[str] = None,
        status: str = "ACTIVE",
    ) -> AcademicTerm:
        start_date = start_date or date.today() - timedelta(days=10)
        end_date = end_date or start_date + timedelta(days=90)
        academic_year = academic_year or f"{start_date.year}-{start_date.year + 1}"
        term = AcademicTerm(
            tenant_id=tenant.id,
            name=name,
            academic_year=academic_year,
            term_code=AcademicTerm.build_term_code(name, academic_year),
            start_date=start_date,
            end_date=end_date,
            fee_due_date=fee_due_date,
            status=status,
            is_current=False,
            is_current_locked=False,
            break_dates=[],
        )
        db_session.add(term)
        await db_session.commit()
        return term

    return _make
