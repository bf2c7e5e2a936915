import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from types import SimpleNamespace
from typing import AsyncGenerator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.dependencies import get_current_user
from app.auth.models import ParentProfile, ParentStudent, StudentProfile, TeacherProfile, User
from app.auth.schemas import CurrentUser
from app.core.cache import InMemoryCacheService
from app.core.models import SchoolClass, Section, SectionTeacher, Subject, Tenant
from app.db.session import Base, get_db
from app.main import create_app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """A fresh in-memory database per test, shared by every connection of the engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest.fixture()
def cache() -> InMemoryCacheService:
    return InMemoryCacheService()


async def _add(db: AsyncSession, *objs):
    db.add_all(objs)
    await db.flush()
    return objs[0] if len(objs) == 1 else objs


def _current(user: User) -> CurrentUser:
    return CurrentUser(id=user.id, tenant_id=user.tenant_id, role=user.role)


@pytest.fixture()
async def school(db_session: AsyncSession) -> SimpleNamespace:
    """
    One school with two classes:

    - Grade 7 / A: Ana (roll 1) and Ben (roll 2), class teacher Tara.
    - Grade 8 / A: Cal (roll 1), no teacher.
    - Pam is the parent of Ana and Cal, Pete the parent of Ben.
    """
    db = db_session
    tenant = await _add(db, Tenant(organization_code="SCH-TEST", organization_name="Test School"))
    grade7, grade8 = await _add(
        db,
        SchoolClass(tenant_id=tenant.id, name="Grade 7", display_order=7),
        SchoolClass(tenant_id=tenant.id, name="Grade 8", display_order=8),
    )
    sec7a, sec8a = await _add(
        db,
        Section(tenant_id=tenant.id, class_id=grade7.id, name="A"),
        Section(tenant_id=tenant.id, class_id=grade8.id, name="A"),
    )
    math = await _add(db, Subject(tenant_id=tenant.id, name="Mathematics", code="MATH", color="#3366ff"))

    def user(name: str, email: str, role: str) -> User:
        return User(tenant_id=tenant.id, full_name=name, email=email, role=role)

    admin_u, tara_u, ana_u, ben_u, cal_u, pam_u, pete_u = await _add(
        db,
        user("Alex Admin", "admin@test.school", "ADMIN"),
        user("Tara Teacher", "tara@test.school", "TEACHER"),
        user("Ana Lopez", "ana@test.school", "STUDENT"),
        user("Ben Okafor", "ben@test.school", "STUDENT"),
        user("Cal Smith", "cal@test.school", "STUDENT"),
        user("Pam Lopez", "pam@test.school", "PARENT"),
        user("Pete Okafor", "pete@test.school", "PARENT"),
    )
    tara = await _add(db, TeacherProfile(user_id=tara_u.id, employee_code="T-001"))
    ana, ben, cal = await _add(
        db,
        StudentProfile(user_id=ana_u.id, section_id=sec7a.id, roll_number="1"),
        StudentProfile(user_id=ben_u.id, section_id=sec7a.id, roll_number="2"),
        StudentProfile(user_id=cal_u.id, section_id=sec8a.id, roll_number="1"),
    )
    pam, pete = await _add(
        db,
        ParentProfile(user_id=pam_u.id, phone="+100000001"),
        ParentProfile(user_id=pete_u.id, phone="+100000002"),
    )
    await _add(
        db,
        ParentStudent(parent_id=pam.id, student_id=ana.id, relationship_type="MOTHER"),
        ParentStudent(parent_id=pam.id, student_id=cal.id, relationship_type="MOTHER"),
        ParentStudent(parent_id=pete.id, student_id=ben.id, relationship_type="FATHER"),
    )
    await _add(db, SectionTeacher(section_id=sec7a.id, teacher_id=tara.id, is_class_teacher=True))
    await db.commit()

    return SimpleNamespace(
        tenant=tenant,
        grade7=grade7,
        grade8=grade8,
        sec7a=sec7a,
        sec8a=sec8a,
        math=math,
        tara=tara,
        ana=ana,
        ben=ben,
        cal=cal,
        pam=pam,
        pete=pete,
        admin_user=_current(admin_u),
        tara_user=_current(tara_u),
        ana_user=_current(ana_u),
        ben_user=_current(ben_u),
        pam_user=_current(pam_u),
        pete_user=_current(pete_u),
    )


@pytest.fixture()
def app(db_session: AsyncSession, cache: InMemoryCacheService) -> FastAPI:
    """The API wired to the test session and cache."""
    application = create_app(cache)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture()
def login(app: FastAPI) -> Callable[[CurrentUser], None]:
    """Act as the given user for subsequent requests."""

    def _login(user: CurrentUser) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _login


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
