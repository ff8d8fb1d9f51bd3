from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text, Numeric, Boolean, Index, UniqueConstraint, text
from sqlalchemy.sql import func
from app.database import Base

# Academic Year model
class AcademicYear(Base):
    __tablename__ = "academic_years"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_current = Column(Boolean, default=False, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True))
    archived_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Only one current year per school
    __table_args__ = (
        Index(
            "uq_academic_years_current_per_school",
            "school_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
    )

    @property
    def lifecycle_state(self) -> str:
        if self.is_archived:
            return "archived"
        if self.is_current:
            return "current"
        return "draft"

# Student Grade model (owned by the grading module, read here at archival time)
class StudentGrade(Base):
    __tablename__ = "student_grades"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False, index=True)
    quarter = Column(Integer, nullable=False)
    written_work = Column(Numeric(5, 2))
    performance_task = Column(Numeric(5, 2))
    quarterly_assessment = Column(Numeric(5, 2))
    final_grade = Column(Numeric(5, 2))
    remarks = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Grade Snapshot model, written once when a year is archived
class GradeSnapshot(Base):
    __tablename__ = "grade_snapshots"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False)
    quarter = Column(Integer, nullable=False)
    written_work = Column(Numeric(5, 2))
    performance_task = Column(Numeric(5, 2))
    quarterly_assessment = Column(Numeric(5, 2))
    final_grade = Column(Numeric(5, 2))
    remarks = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint("student_id", "subject_id", "academic_year_id", "quarter", name="uq_grade_snapshot_natural_key"),
    )
