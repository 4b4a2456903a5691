# school_admin/models/fee.py - Fee structures, their items, and per-student assignments
from __future__ import annotations

import uuid
from typing import Optional
from decimal import Decimal
from datetime import date, datetime

from sqlalchemy import (
    String, Integer, Boolean, Numeric, ForeignKey, Date, DateTime, Text,
    CheckConstraint, Index, UniqueConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_admin.models.base import Base, utcnow

STUDENT_TYPES = ("internal", "external")


class FeeStructure(Base):
    """Named list of fee items for one (year, term, student type)"""
    __tablename__ = "fee_structures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False
    )
    term_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("terms.id", ondelete="RESTRICT"), nullable=False)
    student_type: Mapped[str] = mapped_column(String(16), nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items: Mapped[list["FeeItem"]] = relationship(
        "FeeItem",
        back_populates="structure",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FeeItem.display_order",
    )

    @property
    def total_amount(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0.00"))

    __table_args__ = (
        CheckConstraint("student_type IN ('internal','external')", name="student_type_valid"),
        Index("ix_fee_structures_year_term_type", "academic_year_id", "term_id", "student_type"),
    )


class FeeItem(Base):
    __tablename__ = "fee_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    fee_structure_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("fee_structures.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    structure: Mapped["FeeStructure"] = relationship("FeeStructure", back_populates="items")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="amount_non_negative"),
        UniqueConstraint("fee_structure_id", "name", name="uq_fee_items_structure_name"),
    )


class StudentFeeAssignment(Base):
    """
    Fee obligation of one student for one term.
    Written with check-then-insert; an existing row is never overwritten.
    """
    __tablename__ = "student_fee_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False
    )
    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False
    )
    term_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("terms.id", ondelete="RESTRICT"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    assigned_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    structure: Mapped["FeeStructure"] = relationship("FeeStructure")

    __table_args__ = (
        UniqueConstraint("student_id", "academic_year_id", "term_id", name="uq_student_fee_assignments_scope"),
        CheckConstraint("total_amount >= 0", name="total_non_negative"),
    )
