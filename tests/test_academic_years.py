from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.exceptions import ConflictError, StateError, ValidationError
from app.models import AcademicYear, FinanceAuditLog, StudentGrade
from app.repositories.academic_years import AcademicYearRepository, GradeSnapshotRepository
from app.schemas.academics import AcademicYearCreate, AcademicYearUpdate
from app.schemas.finance import FeeTemplateUpdate, TemplateItemInput
from app.services import academic_years
from app.services.assessments import edit_assessment
from app.services.fee_templates import update_template


async def _add_grades(db, seed, subjects, year):
    for student in seed.students:
        for subject in subjects:
            db.add(StudentGrade(
                school_id=seed.school.id,
                student_id=student.id,
                subject_id=subject.id,
                academic_year_id=year.id,
                quarter=1,
                written_work=Decimal("85.50"),
                performance_task=Decimal("88.00"),
                quarterly_assessment=Decimal("90.00"),
                final_grade=Decimal("87.83"),
                remarks="Passed",
            ))
    await db.commit()


async def test_create_year_in_draft(db, seed):
    year = await academic_years.create_year(
        db,
        AcademicYearCreate(school_id=seed.school.id, name="2027-2028", start_date=date(2027, 6, 1), end_date=date(2028, 3, 31)),
        actor_id=seed.admin.id,
    )
    assert year.lifecycle_state == "draft"
    assert (await academic_years.current(db, seed.school.id)).id == seed.year.id


async def test_create_current_year_unsets_previous(db, seed):
    year = await academic_years.create_year(
        db,
        AcademicYearCreate(
            school_id=seed.school.id, name="2027-2028", start_date=date(2027, 6, 1), end_date=date(2028, 3, 31),
            is_current=True,
        ),
        actor_id=seed.admin.id,
    )
    current = await academic_years.current(db, seed.school.id)
    assert current.id == year.id
    assert (await db.get(AcademicYear, seed.year.id)).is_current is False


async def test_create_year_rejects_inverted_dates(db, seed):
    with pytest.raises(ValidationError):
        await academic_years.create_year(
            db,
            AcademicYearCreate(school_id=seed.school.id, name="Bad", start_date=date(2028, 6, 1), end_date=date(2027, 6, 1)),
        )


async def test_activate_switches_current_year(db, seed):
    year = await academic_years.activate(db, seed.next_year.id, actor_id=seed.admin.id)
    assert year.is_current is True

    years = await AcademicYearRepository(db).list_for_school(seed.school.id)
    assert [y.id for y in years if y.is_current] == [seed.next_year.id]


async def test_activate_archived_year_conflicts(db, seed):
    await academic_years.archive(db, seed.next_year.id, actor_id=seed.admin.id)
    with pytest.raises(ConflictError):
        await academic_years.activate(db, seed.next_year.id)


async def test_archive_preserves_grades(db, seed, subjects):
    await _add_grades(db, seed, subjects, seed.year)

    year, preserved = await academic_years.archive(db, seed.year.id, actor_id=seed.admin.id)

    assert preserved == 30
    assert year.is_archived is True
    assert year.is_current is False
    assert year.archived_by == seed.admin.id
    assert year.lifecycle_state == "archived"
    assert await GradeSnapshotRepository(db).count_for_year(seed.year.id) == 30


async def test_archive_twice_is_rejected(db, seed):
    await academic_years.archive(db, seed.year.id, actor_id=seed.admin.id)
    with pytest.raises(StateError):
        await academic_years.archive(db, seed.year.id, actor_id=seed.admin.id)


async def test_snapshot_upsert_does_not_duplicate(db, seed, subjects):
    await _add_grades(db, seed, subjects, seed.year)
    repo = GradeSnapshotRepository(db)
    grades = await repo.grades_for_year(seed.year.id)

    await repo.upsert_snapshots(grades)
    await repo.upsert_snapshots(grades)
    await db.commit()

    assert await repo.count_for_year(seed.year.id) == 30


async def test_archived_year_is_read_only(db, seed, new_statement):
    statement = await new_statement()
    await academic_years.archive(db, seed.year.id, actor_id=seed.admin.id)

    with pytest.raises(StateError):
        await academic_years.update_year(db, seed.year.id, AcademicYearUpdate(name="2025-2026 (old)"))
    with pytest.raises(StateError):
        await update_template(
            db,
            seed.template.id,
            FeeTemplateUpdate(items=[TemplateItemInput(fee_catalog_item_id=seed.tuition.id)]),
        )
    with pytest.raises(StateError):
        await edit_assessment(db, statement.id, seed.template.id + 1)


async def test_delete_year_rules(db, seed):
    with pytest.raises(StateError):
        await academic_years.delete_year(db, seed.year.id)

    await academic_years.delete_year(db, seed.next_year.id, actor_id=seed.admin.id)
    assert await db.get(AcademicYear, seed.next_year.id) is None


async def test_year_with_templates_cannot_be_deleted(db, seed):
    await academic_years.activate(db, seed.next_year.id)
    with pytest.raises(StateError):
        await academic_years.delete_year(db, seed.year.id)


async def test_update_year_dates_is_audited(db, seed):
    year = await academic_years.update_year(
        db, seed.next_year.id, AcademicYearUpdate(start_date=date(2026, 6, 8), end_date=date(2027, 4, 30)),
        actor_id=seed.admin.id,
    )
    assert year.start_date == date(2026, 6, 8)
    assert year.end_date == date(2027, 4, 30)

    result = await db.execute(
        select(FinanceAuditLog).where(
            FinanceAuditLog.table_name == "academic_years", FinanceAuditLog.record_id == year.id
        )
    )
    entry = result.scalars().one()
    assert entry.new_values == {"start_date": "2026-06-08", "end_date": "2027-04-30"}


async def test_update_year_rejects_end_before_start(db, seed):
    with pytest.raises(ValidationError):
        await academic_years.update_year(db, seed.next_year.id, AcademicYearUpdate(end_date=date(2026, 1, 1)))
