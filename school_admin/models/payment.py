# school_admin/models/payment.py - Invoices, invoice items, payments and numbering
from __future__ import annotations
import uuid
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import (
    String, Integer, Numeric, Date, DateTime, ForeignKey, CheckConstraint, Index, Uuid, Text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from school_admin.models.base import Base, utcnow

INVOICE_STATUSES = ("unpaid", "partial", "paid", "cancelled")


class Invoice(Base):
    """Snapshot of a fee assignment at generation time"""
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    student_fee_assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("student_fee_assignments.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id"), nullable=False, index=True)
    academic_year_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("academic_years.id"), nullable=False)
    term_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("terms.id"), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="unpaid")
    notes: Mapped[Optional[str]] = mapped_column(Text)
    generated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.position"
    )
    payments: Mapped[list["Payment"]] = relationship(
        "Payment", back_populates="invoice", cascade="all, delete-orphan", order_by="Payment.posted_at"
    )

    @property
    def balance(self) -> Decimal:
        if self.status == "cancelled":
            return Decimal("0.00")
        return self.total_amount - self.amount_paid

    __table_args__ = (
        CheckConstraint("status IN ('unpaid','partial','paid','cancelled')", name="status_valid"),
        CheckConstraint("total_amount >= 0", name="total_non_negative"),
        CheckConstraint("amount_paid >= 0", name="paid_non_negative"),
        Index("ix_invoices_student_year_term", "student_id", "academic_year_id", "term_id"),
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    item_name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="total_non_negative"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("invoices.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(16), nullable=False)  # cash|bank|mobile_money
    reference: Mapped[Optional[str]] = mapped_column(String(64))
    recorded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    posted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")

    __table_args__ = (
        CheckConstraint("method IN ('cash','bank','mobile_money')", name="method_valid"),
        CheckConstraint("amount > 0", name="amount_positive"),
    )


class InvoiceSequence(Base):
    """Last issued invoice sequence per (year, term); only ever moves forward"""
    __tablename__ = "invoice_sequences"

    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), primary_key=True
    )
    term_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("terms.id", ondelete="RESTRICT"), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
