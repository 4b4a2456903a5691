# school_admin/models/clearance.py - Fee clearance types and requests
from __future__ import annotations
import uuid
from typing import Optional
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, Boolean, Numeric, ForeignKey, DateTime, CheckConstraint, Index, Uuid, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from school_admin.models.base import Base, utcnow

CLEARANCE_STATUSES = ("pending", "approved", "rejected")


class ClearanceType(Base):
    __tablename__ = "clearance_types"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)  # "exam"
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)  # "Exam Clearance"
    minimum_payment_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "minimum_payment_percentage >= 0 AND minimum_payment_percentage <= 100", name="threshold_range"
        ),
    )


class ClearanceRequest(Base):
    """Terminal once approved or rejected; a retry is a new row"""
    __tablename__ = "clearance_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    clearance_type_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("clearance_types.id"), nullable=False)
    academic_year_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("academic_years.id"), nullable=False)
    term_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("terms.id"), nullable=True)
    total_fees_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    payment_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    clearance_type: Mapped["ClearanceType"] = relationship("ClearanceType")
    student: Mapped["Student"] = relationship("Student")

    __table_args__ = (
        CheckConstraint("status IN ('pending','approved','rejected')", name="status_valid"),
        Index("ix_clearance_requests_status_year", "status", "academic_year_id"),
    )
