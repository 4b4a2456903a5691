# school_admin/models/enrollment.py - Year enrollment of a student in a class
from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, CheckConstraint, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from school_admin.models.base import Base, utcnow

ENROLLMENT_STATUSES = ("active", "completed", "dropped", "transferred", "expelled")


class Enrollment(Base):
    """
    Enrollment links a student to a class for one academic year.
    One row per (student, academic year); writes go through an upsert on that pair.
    """
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("classes.id", ondelete="RESTRICT"), nullable=False, index=True)
    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    enrolled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    student: Mapped["Student"] = relationship("Student", back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint("student_id", "academic_year_id", name="uq_enrollments_student_year"),
        CheckConstraint(
            "status IN ('active','completed','dropped','transferred','expelled')", name="status_valid"
        ),
    )
