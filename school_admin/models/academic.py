# school_admin/models/academic.py - Academic calendar: years and terms
from __future__ import annotations
import uuid
from datetime import date, datetime
from sqlalchemy import String, Integer, Boolean, ForeignKey, Date, DateTime, Index, Uuid, CheckConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from school_admin.models.base import Base, utcnow


class AcademicYear(Base):
    __tablename__ = "academic_years"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)  # "2025" or "2025/2026"
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    terms: Mapped[list["Term"]] = relationship(
        "Term", back_populates="academic_year", cascade="all, delete-orphan", order_by="Term.ordinal"
    )

    @property
    def label(self) -> str:
        """Short label used in invoice numbers"""
        return str(self.start_date.year)

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="date_order"),
        # At most one active year at any time
        Index(
            "uq_academic_years_single_active", "is_active", unique=True,
            postgresql_where=text("is_active"), sqlite_where=text("is_active"),
        ),
    )


class Term(Base):
    __tablename__ = "terms"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(48), nullable=False)  # "Term 1"
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)  # 1,2,3
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    academic_year: Mapped["AcademicYear"] = relationship("AcademicYear", back_populates="terms")

    __table_args__ = (
        Index("uq_terms_year_ordinal", "academic_year_id", "ordinal", unique=True),
        CheckConstraint("ordinal >= 1", name="ordinal_positive"),
        # At most one active term per academic year
        Index(
            "uq_terms_single_active_per_year", "academic_year_id", unique=True,
            postgresql_where=text("is_active"), sqlite_where=text("is_active"),
        ),
    )
