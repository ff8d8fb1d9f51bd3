"""
Academic Year Repository

Typed access to academic years and the grade rows that are frozen into
snapshots when a year is archived.
"""

from typing import List, Optional

from sqlalchemy import select, update, func, exists
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.academics import AcademicYear, StudentGrade, GradeSnapshot
from app.models.finance import Assessment, FeeTemplate

SNAPSHOT_KEY = ["student_id", "subject_id", "academic_year_id", "quarter"]
SNAPSHOT_COLUMNS = [
    "school_id", "student_id", "subject_id", "academic_year_id", "quarter",
    "written_work", "performance_task", "quarterly_assessment", "final_grade", "remarks",
]


class AcademicYearRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, year_id: int, for_update: bool = False) -> Optional[AcademicYear]:
        query = select(AcademicYear).where(AcademicYear.id == year_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalars().first()

    async def list_for_school(self, school_id: int) -> List[AcademicYear]:
        result = await self.session.execute(
            select(AcademicYear)
            .where(AcademicYear.school_id == school_id)
            .order_by(AcademicYear.is_current.desc(), AcademicYear.start_date.desc())
        )
        return list(result.scalars().all())

    async def current(self, school_id: int) -> Optional[AcademicYear]:
        result = await self.session.execute(
            select(AcademicYear).where(
                AcademicYear.school_id == school_id,
                AcademicYear.is_current.is_(True),
                AcademicYear.is_archived.is_(False),
            )
        )
        return result.scalars().first()

    async def lock_school_years(self, school_id: int) -> List[AcademicYear]:
        """Take row locks on every year of the school (no-op on SQLite)."""
        result = await self.session.execute(
            select(AcademicYear)
            .where(AcademicYear.school_id == school_id)
            .order_by(AcademicYear.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def clear_current(self, school_id: int, except_id: Optional[int] = None) -> None:
        stmt = (
            update(AcademicYear)
            .where(AcademicYear.school_id == school_id, AcademicYear.is_current.is_(True))
            .values(is_current=False)
        )
        if except_id is not None:
            stmt = stmt.where(AcademicYear.id != except_id)
        await self.session.execute(stmt, execution_options={"synchronize_session": "fetch"})

    async def has_dependents(self, year_id: int) -> bool:
        assessments = await self.session.execute(
            select(exists().where(Assessment.academic_year_id == year_id))
        )
        templates = await self.session.execute(
            select(exists().where(FeeTemplate.academic_year_id == year_id))
        )
        return bool(assessments.scalar()) or bool(templates.scalar())

    def add(self, year: AcademicYear) -> AcademicYear:
        self.session.add(year)
        return year

    async def delete(self, year: AcademicYear) -> None:
        await self.session.delete(year)


class GradeSnapshotRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def grades_for_year(self, year_id: int) -> List[StudentGrade]:
        result = await self.session.execute(
            select(StudentGrade)
            .where(StudentGrade.academic_year_id == year_id)
            .order_by(StudentGrade.id)
        )
        return list(result.scalars().all())

    async def count_for_year(self, year_id: int) -> int:
        result = await self.session.execute(
            select(func.count(GradeSnapshot.id)).where(GradeSnapshot.academic_year_id == year_id)
        )
        return result.scalar() or 0

    async def list_for_year(self, year_id: int) -> List[GradeSnapshot]:
        result = await self.session.execute(
            select(GradeSnapshot)
            .where(GradeSnapshot.academic_year_id == year_id)
            .order_by(GradeSnapshot.student_id, GradeSnapshot.subject_id, GradeSnapshot.quarter)
        )
        return list(result.scalars().all())

    async def upsert_snapshots(self, grades: List[StudentGrade]) -> int:
        """
        Copy grade rows into grade_snapshots, skipping rows whose natural key
        (student, subject, year, quarter) is already present.

        Returns the number of grade rows considered.
        """
        if not grades:
            return 0

        rows = [{column: getattr(grade, column) for column in SNAPSHOT_COLUMNS} for grade in grades]
        dialect = self.session.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(GradeSnapshot).values(rows).on_conflict_do_nothing(index_elements=SNAPSHOT_KEY)
            await self.session.execute(stmt)
        else:
            year_ids = {row["academic_year_id"] for row in rows}
            result = await self.session.execute(
                select(
                    GradeSnapshot.student_id,
                    GradeSnapshot.subject_id,
                    GradeSnapshot.academic_year_id,
                    GradeSnapshot.quarter,
                ).where(GradeSnapshot.academic_year_id.in_(year_ids))
            )
            existing = {tuple(row) for row in result.all()}
            for row in rows:
                if tuple(row[key] for key in SNAPSHOT_KEY) not in existing:
                    self.session.add(GradeSnapshot(**row))
            await self.session.flush()

        return len(rows)
