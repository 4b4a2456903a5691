# school_admin/models/student.py - Student records
from __future__ import annotations
import uuid
from typing import Optional
from datetime import date, datetime
from sqlalchemy import String, Date, ForeignKey, DateTime, Boolean, Uuid, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from school_admin.models.base import Base, utcnow


class Student(Base):
    __tablename__ = "students"

    # Shares its id with the identity record
    id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)  # administrator-assigned
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("classes.id", ondelete="RESTRICT"), index=True, nullable=False)
    gender: Mapped[str] = mapped_column(String(16), nullable=False)
    student_type: Mapped[str] = mapped_column(String(16), nullable=False, default="internal")
    stream: Mapped[Optional[str]] = mapped_column(String(32))
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    guardian_email: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    profile: Mapped["Profile"] = relationship(
        "Profile", primaryjoin="Student.id == foreign(Profile.id)", uselist=False, viewonly=True
    )
    enrollments: Mapped[list["Enrollment"]] = relationship("Enrollment", back_populates="student", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("student_type IN ('internal','external')", name="student_type_valid"),
    )
