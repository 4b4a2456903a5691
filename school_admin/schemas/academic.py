# school_admin/schemas/academic.py
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from uuid import UUID


# Academic Year schemas
class AcademicYearCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    start_date: date
    end_date: date
    is_active: bool = False


class TermOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    academic_year_id: UUID
    name: str
    ordinal: int
    is_active: bool
    start_date: date
    end_date: date


class AcademicYearOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    start_date: date
    end_date: date
    is_active: bool
    created_at: datetime


class AcademicYearDetail(AcademicYearOut):
    terms: List[TermOut] = []


# Term schemas
class TermCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=48)
    start_date: date
    end_date: date
    ordinal: Optional[int] = Field(default=None, ge=1)
    is_active: bool = False


class ActiveCalendarOut(BaseModel):
    academic_year: Optional[AcademicYearOut] = None
    term: Optional[TermOut] = None
