"""
ComplyTrack - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, List
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.models.audit import Audit, AuditStatus, AuditType, Auditor
from app.models.user import Department, User, UserRole
from app.services.email_service import EmailMessage, EmailService
from app.utils.security import create_access_token
from main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client; each request gets its own session like in production."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> List[EmailMessage]:
    """Record outgoing email instead of delivering it."""
    outbox: List[EmailMessage] = []

    async def record(self, message: EmailMessage) -> bool:
        outbox.append(message)
        return True

    monkeypatch.setattr(EmailService, "send_email", record)
    return outbox


# ===========================================
# DATA FIXTURES
# ===========================================

async def _create_user(db: AsyncSession, email: str, name: str, role: UserRole, department=None) -> User:
    user = User(
        id=uuid4(),
        email=email,
        name=name,
        role=role,
        department_id=department.id if department else None,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def department(db_session: AsyncSession) -> Department:
    department = Department(id=uuid4(), name="Quality Assurance", description="QA and compliance")
    db_session.add(department)
    await db_session.commit()
    return department


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "admin@complytrack.test", "Ada Admin", UserRole.ADMIN)


@pytest_asyncio.fixture
async def manager_user(db_session: AsyncSession, department: Department) -> User:
    return await _create_user(
        db_session, "manager@complytrack.test", "Quinn Manager", UserRole.QUALITY_MANAGER, department
    )


@pytest_asyncio.fixture
async def auditor_user(db_session: AsyncSession, department: Department) -> User:
    return await _create_user(
        db_session, "auditor@complytrack.test", "Ayo Auditor", UserRole.AUDITOR, department
    )


@pytest_asyncio.fixture
async def staff_user(db_session: AsyncSession, department: Department) -> User:
    return await _create_user(
        db_session, "staff@complytrack.test", "Sam Staff", UserRole.STAFF, department
    )


@pytest_asyncio.fixture
async def internal_auditor(db_session: AsyncSession, auditor_user: User) -> Auditor:
    auditor = Auditor(
        id=uuid4(),
        name=auditor_user.name,
        email=auditor_user.email,
        is_external=False,
        user_id=auditor_user.id,
    )
    db_session.add(auditor)
    await db_session.commit()
    return auditor


@pytest_asyncio.fixture
async def planned_audit(
    db_session: AsyncSession,
    internal_auditor: Auditor,
    manager_user: User,
    staff_user: User,
    department: Department,
) -> Audit:
    now = datetime.now(timezone.utc)
    audit = Audit(
        id=uuid4(),
        name="ISO 9001 Surveillance",
        audit_type=AuditType.QUALITY,
        status=AuditStatus.PLANNED,
        start_date=now + timedelta(days=7),
        end_date=now + timedelta(days=9),
        auditor_id=internal_auditor.id,
        auditee_id=staff_user.id,
        department_id=department.id,
        created_by_id=manager_user.id,
        objectives="Verify the quality management system",
        scope="Production line 2",
    )
    db_session.add(audit)
    await db_session.commit()
    return audit


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def manager_headers(manager_user: User) -> Dict[str, str]:
    return auth_headers(manager_user)


@pytest.fixture
def admin_headers(admin_user: User) -> Dict[str, str]:
    return auth_headers(admin_user)


@pytest.fixture
def staff_headers(staff_user: User) -> Dict[str, str]:
    return auth_headers(staff_user)
