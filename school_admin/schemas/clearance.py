# school_admin/schemas/clearance.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class ClearanceTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    display_name: str = Field(..., min_length=1, max_length=128)
    minimum_payment_percentage: Decimal = Field(..., ge=0, le=100)
    display_order: int = 0


class ClearanceTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    display_name: str
    minimum_payment_percentage: Decimal
    is_active: bool
    display_order: int


class ClearanceRequestCreate(BaseModel):
    student_id: UUID
    clearance_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None


class BulkClearanceScope(BaseModel):
    clearance_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    class_id: Optional[UUID] = None


class ClearanceDecision(BaseModel):
    approve: bool
    reason: Optional[str] = None


class PendingClearanceOut(BaseModel):
    id: UUID
    student_id: UUID
    student_number: str
    clearance_type_id: UUID
    clearance_type: str
    academic_year_id: UUID
    term_id: Optional[UUID]
    total_fees_amount: Decimal
    amount_paid: Decimal
    outstanding_balance: Decimal
    payment_percentage: Decimal
    minimum_payment_percentage: Decimal
    eligible: bool
    created_at: datetime


class ClearanceRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    clearance_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID]
    total_fees_amount: Decimal
    amount_paid: Decimal
    payment_percentage: Decimal
    status: str
    approver_id: Optional[UUID]
    reason: Optional[str]
    decided_at: Optional[datetime]
    created_at: datetime
