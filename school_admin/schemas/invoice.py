# school_admin/schemas/invoice.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Literal
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


class InvoiceItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    item_name: str
    description: Optional[str]
    quantity: int
    unit_price: Decimal
    total_amount: Decimal


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    method: str
    reference: Optional[str]
    posted_at: datetime


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    student_id: UUID
    academic_year_id: UUID
    term_id: UUID
    invoice_date: date
    due_date: Optional[date]
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str


class InvoiceDetail(InvoiceOut):
    notes: Optional[str]
    items: List[InvoiceItemOut] = []
    payments: List[PaymentOut] = []


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: Literal["cash", "bank", "mobile_money"]
    reference: Optional[str] = Field(default=None, max_length=64)


class InvoiceCancel(BaseModel):
    reason: Optional[str] = None
