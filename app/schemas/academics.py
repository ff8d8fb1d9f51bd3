from datetime import datetime, date
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class YearStateEnum(str, Enum):
    draft = "draft"
    current = "current"
    archived = "archived"


# Academic Year schemas
class AcademicYearBase(BaseModel):
    name: str = Field(..., max_length=50)
    start_date: date
    end_date: date


class AcademicYearCreate(AcademicYearBase):
    school_id: int
    is_current: bool = False


class AcademicYearUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AcademicYearInDB(BaseModel):
    id: int
    school_id: int
    name: str
    start_date: date
    end_date: date
    is_current: bool
    is_archived: bool
    archived_at: Optional[datetime] = None
    archived_by: Optional[int] = None
    lifecycle_state: YearStateEnum

    model_config = ConfigDict(from_attributes=True)


class AcademicYearStatus(BaseModel):
    id: int
    name: str
    is_current: bool
    is_archived: bool
    is_writable: bool


class ArchiveResult(BaseModel):
    year: AcademicYearInDB
    grades_preserved: int
    message: str
