# school_admin/schemas/enrollment.py
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal
from uuid import UUID

EnrollmentStatus = Literal["active", "completed", "dropped", "transferred", "expelled"]


class EnrollmentCreate(BaseModel):
    student_id: UUID
    class_id: UUID
    academic_year_id: UUID
    status: EnrollmentStatus = "active"


class EnrollmentStatusUpdate(BaseModel):
    status: EnrollmentStatus


class PromotionRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    target_class_id: UUID
    target_year_id: UUID


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    class_id: UUID
    class_name: str
    academic_year_id: UUID
    academic_year_name: str
    status: str
    enrolled_at: datetime
