"""
Academic year lifecycle: draft -> current -> archived.

Only one year per school may be current. Archiving snapshots the year's grade
rows and freezes the year; nothing leaves the archived state.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.models.academics import AcademicYear
from app.repositories.academic_years import AcademicYearRepository, GradeSnapshotRepository
from app.schemas.academics import AcademicYearCreate, AcademicYearUpdate
from app.services.audit import log_finance_action

logger = logging.getLogger(__name__)


async def get_year(db: AsyncSession, year_id: int, for_update: bool = False) -> AcademicYear:
    year = await AcademicYearRepository(db).get(year_id, for_update=for_update)
    if not year:
        raise NotFoundError("Academic year not found", {"academic_year_id": year_id})
    return year


def ensure_year_writable(year: AcademicYear) -> None:
    if year.is_archived:
        raise StateError(
            f"Academic year {year.name} is archived and can no longer be modified",
            {"academic_year_id": year.id},
        )


async def list_years(db: AsyncSession, school_id: int) -> List[AcademicYear]:
    return await AcademicYearRepository(db).list_for_school(school_id)


async def current(db: AsyncSession, school_id: int) -> Optional[AcademicYear]:
    return await AcademicYearRepository(db).current(school_id)


def _validate_dates(name: Optional[str], start_date, end_date) -> str:
    if not name or not name.strip():
        raise ValidationError("Academic year name is required")
    if not start_date or not end_date:
        raise ValidationError("Start and end dates are required")
    if end_date < start_date:
        raise ValidationError("End date must not be before start date")
    return name.strip()


async def create_year(db: AsyncSession, payload: AcademicYearCreate, actor_id: Optional[int] = None) -> AcademicYear:
    name = _validate_dates(payload.name, payload.start_date, payload.end_date)
    repo = AcademicYearRepository(db)

    async with atomic(db):
        if payload.is_current:
            await repo.lock_school_years(payload.school_id)
            await repo.clear_current(payload.school_id)
        year = repo.add(
            AcademicYear(
                school_id=payload.school_id,
                name=name,
                start_date=payload.start_date,
                end_date=payload.end_date,
                is_current=payload.is_current,
                is_archived=False,
            )
        )
        await db.flush()
        log_finance_action(
            db, year.school_id, actor_id, "create", "academic_years", year.id,
            {"name": year.name, "is_current": year.is_current},
        )

    logger.info(f"Academic year {year.name} created for school {year.school_id}")
    return year


async def update_year(
    db: AsyncSession, year_id: int, payload: AcademicYearUpdate, actor_id: Optional[int] = None
) -> AcademicYear:
    year = await get_year(db, year_id)
    ensure_year_writable(year)

    changes = payload.model_dump(exclude_unset=True)
    name = _validate_dates(
        changes.get("name", year.name),
        changes.get("start_date", year.start_date),
        changes.get("end_date", year.end_date),
    )
    if "name" in changes:
        changes["name"] = name

    async with atomic(db):
        for key, value in changes.items():
            setattr(year, key, value)
        log_finance_action(db, year.school_id, actor_id, "update", "academic_years", year.id, changes)

    return year


async def delete_year(db: AsyncSession, year_id: int, actor_id: Optional[int] = None) -> None:
    repo = AcademicYearRepository(db)
    year = await get_year(db, year_id)
    if year.is_archived:
        raise StateError("Archived academic years cannot be deleted")
    if year.is_current:
        raise StateError("The current academic year cannot be deleted; activate another year first")
    if await repo.has_dependents(year.id):
        raise StateError("Academic year has fee templates or statements and cannot be deleted")

    async with atomic(db):
        log_finance_action(db, year.school_id, actor_id, "delete", "academic_years", year.id, {"name": year.name})
        await repo.delete(year)

    logger.info(f"Academic year {year_id} deleted")


async def activate(db: AsyncSession, year_id: int, actor_id: Optional[int] = None) -> AcademicYear:
    """
    Make a year the school's current year, unsetting every other year in the
    same transaction. Callers holding a "selected year" should refresh it.
    """
    repo = AcademicYearRepository(db)
    year = await get_year(db, year_id)
    if year.is_archived:
        raise ConflictError(f"Academic year {year.name} is archived and cannot be activated")

    try:
        async with atomic(db):
            await repo.lock_school_years(year.school_id)
            await db.refresh(year)
            if year.is_archived:
                raise ConflictError(f"Academic year {year.name} is archived and cannot be activated")
            await repo.clear_current(year.school_id, except_id=year.id)
            year.is_current = True
            await db.flush()
            log_finance_action(db, year.school_id, actor_id, "activate", "academic_years", year.id, {"name": year.name})
    except IntegrityError as exc:
        # Another activation for the same school committed first
        logger.warning(f"Concurrent activation detected for school {year.school_id}: {exc}")
        raise ConflictError("Another academic year was activated at the same time; please retry") from exc

    logger.info(f"Academic year {year.name} is now current for school {year.school_id}")
    return year


async def archive(db: AsyncSession, year_id: int, actor_id: Optional[int] = None) -> Tuple[AcademicYear, int]:
    """
    Snapshot every grade row of the year, then mark it archived.

    Both steps share one transaction. Snapshots are inserted with
    ON CONFLICT DO NOTHING on their natural key, so a retry after a failure
    never duplicates rows. Returns the year and the number of grade rows
    preserved.
    """
    year = await get_year(db, year_id, for_update=True)
    if year.is_archived:
        raise StateError(f"Academic year {year.name} is already archived")

    snapshots = GradeSnapshotRepository(db)
    async with atomic(db):
        grades = await snapshots.grades_for_year(year.id)
        preserved = await snapshots.upsert_snapshots(grades)

        year.is_archived = True
        year.is_current = False
        year.archived_at = datetime.now(timezone.utc)
        year.archived_by = actor_id
        await db.flush()
        log_finance_action(
            db, year.school_id, actor_id, "archive", "academic_years", year.id,
            {"name": year.name, "grades_preserved": preserved},
        )

    logger.info(f"Academic year {year.name} archived; {preserved} grade records preserved")
    return year, preserved
