from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.exceptions import NotFoundError
from app.middleware.authentication import (
    allow_admin,
    allow_finance_staff,
    validate_school_access,
)
from app.models.users import User
from app.schemas.academics import (
    AcademicYearCreate,
    AcademicYearInDB,
    AcademicYearStatus,
    AcademicYearUpdate,
    ArchiveResult,
)
from app.services import academic_years as years

router = APIRouter()


async def _load_year(db: AsyncSession, year_id: int, current_user: User):
    year = await years.get_year(db, year_id)
    validate_school_access(current_user, year.school_id)
    return year


@router.get("/academic-years", response_model=List[AcademicYearInDB])
async def list_academic_years(
    school_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    List the academic years of a school, newest first.
    """
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    return await years.list_years(db, school_id)


@router.get("/academic-years/current", response_model=AcademicYearInDB)
async def get_current_academic_year(
    school_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Get the school's current academic year.
    """
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    year = await years.current(db, school_id)
    if not year:
        raise NotFoundError("No current academic year is set for this school", {"school_id": school_id})
    return year


@router.get("/academic-years/{year_id}", response_model=AcademicYearInDB)
async def get_academic_year(
    year_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    return await _load_year(db, year_id, current_user)


@router.get("/academic-years/{year_id}/status", response_model=AcademicYearStatus)
async def get_academic_year_status(
    year_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Whether records of the year may still be modified.
    """
    year = await _load_year(db, year_id, current_user)
    return AcademicYearStatus(
        id=year.id,
        name=year.name,
        is_current=year.is_current,
        is_archived=year.is_archived,
        is_writable=not year.is_archived,
    )


@router.post("/academic-years", response_model=AcademicYearInDB, status_code=status.HTTP_201_CREATED)
async def create_academic_year(
    year_data: AcademicYearCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Create a new academic year, optionally making it current.
    """
    validate_school_access(current_user, year_data.school_id)
    return await years.create_year(db, year_data, actor_id=current_user.id)


@router.put("/academic-years/{year_id}", response_model=AcademicYearInDB)
async def update_academic_year(
    year_data: AcademicYearUpdate,
    year_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    await _load_year(db, year_id, current_user)
    return await years.update_year(db, year_id, year_data, actor_id=current_user.id)


@router.delete("/academic-years/{year_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_academic_year(
    year_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    await _load_year(db, year_id, current_user)
    await years.delete_year(db, year_id, actor_id=current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/academic-years/{year_id}/activate", response_model=AcademicYearInDB)
async def activate_academic_year(
    year_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Make this year the current one; the previous current year is unset.
    """
    await _load_year(db, year_id, current_user)
    return await years.activate(db, year_id, actor_id=current_user.id)


@router.post("/academic-years/{year_id}/archive", response_model=ArchiveResult)
async def archive_academic_year(
    year_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Snapshot the year's grades and freeze it. This cannot be undone.
    """
    await _load_year(db, year_id, current_user)
    year, preserved = await years.archive(db, year_id, actor_id=current_user.id)
    return ArchiveResult(
        year=AcademicYearInDB.model_validate(year),
        grades_preserved=preserved,
        message=f"{year.name} archived; {preserved} grade records preserved",
    )
