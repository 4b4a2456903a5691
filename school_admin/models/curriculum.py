# school_admin/models/curriculum.py - Subjects, curriculum bands and subject enrollments
from __future__ import annotations
import uuid
from typing import Optional
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey, DateTime, CheckConstraint, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from school_admin.models.base import Base, utcnow


class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class CurriculumSubject(Base):
    """Static reference data: which subjects attach to which band and stream"""
    __tablename__ = "curriculum_subjects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    level: Mapped[str] = mapped_column(String(16), nullable=False)  # junior|senior
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    stream: Mapped[Optional[str]] = mapped_column(String(32))
    is_compulsory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    subject: Mapped["Subject"] = relationship("Subject")

    __table_args__ = (
        CheckConstraint("level IN ('junior','senior')", name="level_valid"),
        Index("ix_curriculum_subjects_level_stream", "level", "stream"),
    )


class StudentSubjectEnrollment(Base):
    """
    A student's enrollment in one subject for a year (and optionally a term).

    Uniqueness is (student, subject, year, term). A null term is its own scope,
    so it gets a separate partial index instead of relying on NULL comparison.
    """
    __tablename__ = "student_subjects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False
    )
    term_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("terms.id", ondelete="CASCADE"), nullable=True)
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enrolled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    enrolled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "uq_student_subjects_term_scope", "student_id", "subject_id", "academic_year_id", "term_id",
            unique=True,
            postgresql_where=text("term_id IS NOT NULL"), sqlite_where=text("term_id IS NOT NULL"),
        ),
        Index(
            "uq_student_subjects_year_scope", "student_id", "subject_id", "academic_year_id",
            unique=True,
            postgresql_where=text("term_id IS NULL"), sqlite_where=text("term_id IS NULL"),
        ),
    )
