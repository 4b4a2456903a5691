# school_admin/schemas/fee.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Literal
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


# Fee Item Schemas
class FeeItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: Optional[str] = Field(default=None, max_length=255)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    is_mandatory: bool = True

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Item name cannot be empty or whitespace')
        return v.strip()


class FeeItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str]
    amount: Decimal
    is_mandatory: bool
    display_order: int


# Fee Structure Schemas
class FeeStructureCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    academic_year_id: UUID
    term_id: UUID
    student_type: Literal["internal", "external"]
    due_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[FeeItemCreate] = Field(..., min_length=1)


class FeeStructureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    academic_year_id: UUID
    term_id: UUID
    student_type: str
    due_date: Optional[date]
    is_active: bool
    notes: Optional[str]
    total_amount: Decimal
    created_at: datetime
    items: List[FeeItemOut] = []


# Assignment
class TermScope(BaseModel):
    academic_year_id: UUID
    term_id: UUID


class FeeAssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    fee_structure_id: UUID
    academic_year_id: UUID
    term_id: UUID
    total_amount: Decimal
    due_date: Optional[date]
    assigned_at: datetime
