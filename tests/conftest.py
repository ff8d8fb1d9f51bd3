import os

# Settings are read on import; point the app at SQLite before anything loads it
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, get_db
from app.main import app
from app.models import (
    AcademicYear,
    FeeCatalogItem,
    FeeTemplate,
    FeeTemplateItem,
    Role,
    School,
    Student,
    Subject,
    User,
)
from app.schemas.finance import AssessmentCreate
from app.services.assessments import create_assessment
from app.services.auth import create_access_token


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'finance.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(db):
    """
    One school with a current year (2025-2026), a draft year (2026-2027),
    three Grade 7 students, a fee catalog and a "Grade 7 Regular" template
    worth 6200 (tuition 5000 + miscellaneous 1200).
    """
    school = School(name="San Isidro Academy", code="SIA", address="Poblacion, San Isidro")
    db.add(school)
    await db.flush()

    roles = {name: Role(name=name) for name in ("super_admin", "admin_staff", "finance_staff", "teacher")}
    db.add_all(roles.values())
    await db.flush()

    admin = User(school_id=school.id, role_id=roles["admin_staff"].id, full_name="Maria Santos", email="admin@sia.edu.ph")
    cashier = User(school_id=school.id, role_id=roles["finance_staff"].id, full_name="Jose Reyes", email="cashier@sia.edu.ph")
    teacher = User(school_id=school.id, role_id=roles["teacher"].id, full_name="Ana Cruz", email="teacher@sia.edu.ph")
    db.add_all([admin, cashier, teacher])

    students = [
        Student(school_id=school.id, admission_number=f"SIA-2025-{n:04d}", full_name=name, grade_level="Grade 7")
        for n, name in enumerate(["Juan Dela Cruz", "Liza Mercado", "Paolo Garcia"], start=1)
    ]
    db.add_all(students)

    year = AcademicYear(
        school_id=school.id, name="2025-2026", start_date=date(2025, 6, 2), end_date=date(2026, 3, 31),
        is_current=True, is_archived=False,
    )
    next_year = AcademicYear(
        school_id=school.id, name="2026-2027", start_date=date(2026, 6, 1), end_date=date(2027, 3, 31),
        is_current=False, is_archived=False,
    )
    db.add_all([year, next_year])

    tuition = FeeCatalogItem(
        school_id=school.id, name="Tuition Fee", category="tuition", amount=Decimal("5000.00"),
        is_mandatory=True, is_active=True,
    )
    misc = FeeCatalogItem(
        school_id=school.id, name="Miscellaneous Fee", category="misc", amount=Decimal("1200.00"),
        is_mandatory=True, is_active=True,
    )
    books = FeeCatalogItem(
        school_id=school.id, name="Books", category="books", amount=Decimal("800.00"),
        is_mandatory=False, is_active=True,
    )
    db.add_all([tuition, misc, books])
    await db.flush()

    template = FeeTemplate(
        school_id=school.id, academic_year_id=year.id, name="Grade 7 Regular", grade_level="Grade 7", is_active=True,
    )
    db.add(template)
    await db.flush()
    db.add_all([
        FeeTemplateItem(template_id=template.id, fee_catalog_item_id=tuition.id, amount=Decimal("5000.00"), is_mandatory=True, position=0),
        FeeTemplateItem(template_id=template.id, fee_catalog_item_id=misc.id, amount=Decimal("1200.00"), is_mandatory=True, position=1),
    ])
    await db.commit()

    return SimpleNamespace(
        school=school,
        roles=roles,
        admin=admin,
        cashier=cashier,
        teacher=teacher,
        students=students,
        student=students[0],
        year=year,
        next_year=next_year,
        tuition=tuition,
        misc=misc,
        books=books,
        template=template,
    )


@pytest.fixture
def new_statement(db, seed):
    """Issue a statement from the seeded template to a student (the first by default)."""
    async def _create(student=None, template=None):
        payload = AssessmentCreate(
            student_id=(student or seed.student).id,
            school_id=seed.school.id,
            academic_year_id=seed.year.id,
            template_id=(template or seed.template).id,
        )
        return await create_assessment(db, payload, actor_id=seed.admin.id)
    return _create


@pytest.fixture
async def subjects(db, seed):
    rows = [Subject(school_id=seed.school.id, name=name) for name in (
        "Filipino", "English", "Mathematics", "Science", "Araling Panlipunan",
        "MAPEH", "TLE", "Values Education", "Computer", "Reading",
    )]
    db.add_all(rows)
    await db.commit()
    return rows


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}
    return _headers
