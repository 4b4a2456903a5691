# school_admin/schemas/student.py
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional, List, Literal
from datetime import date, datetime
from uuid import UUID


class StudentRegistration(BaseModel):
    """Registration fields as produced by the form or a bulk-upload row.

    Required fields are checked by the orchestrator so that a missing value
    comes back as a validation result instead of a 422.
    """
    student_id: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    email: Optional[EmailStr] = None
    student_type: Literal["internal", "external"] = "internal"
    class_id: Optional[UUID] = None
    date_of_birth: Optional[date] = None
    guardian_email: Optional[EmailStr] = None
    stream: Optional[str] = None

    @field_validator("student_id", "first_name", "middle_name", "last_name", "gender", "stream", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("email", "guardian_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class StepOutcomeOut(BaseModel):
    step: str
    kind: str
    status: str
    message: str = ""


class RegistrationOut(BaseModel):
    success: bool
    message: str
    error_code: Optional[str] = None
    student_id: Optional[UUID] = None
    student_number: Optional[str] = None
    email: Optional[str] = None
    steps: List[StepOutcomeOut] = []


class BulkRegistration(BaseModel):
    rows: List[StudentRegistration] = Field(..., min_length=1)


class StudentIdAvailability(BaseModel):
    student_id: str
    available: bool


class SubjectSyncRequest(BaseModel):
    term_id: Optional[UUID] = None
    dry_run: bool = False


class StudentSubjectOut(BaseModel):
    id: UUID
    subject_id: UUID
    subject_name: str
    subject_code: str
    term_id: Optional[UUID]
    is_optional: bool
    enrolled_at: datetime


class StudentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: str
    class_id: UUID
    gender: str
    student_type: str
    stream: Optional[str]
    date_of_birth: Optional[date]
    guardian_email: Optional[str]
    is_active: bool
    created_at: datetime
