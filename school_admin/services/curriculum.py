# school_admin/services/curriculum.py - Default subject resolution and subject enrollment
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4
import logging

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from school_admin.core.config import settings
from school_admin.core.db import unit_of_work, upsert
from school_admin.models.base import utcnow
from school_admin.models.class_model import Class
from school_admin.models.curriculum import CurriculumSubject, StudentSubjectEnrollment, Subject
from school_admin.models.student import Student
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.results import (
    ActionResult,
    DependencyNotFound,
    PipelineError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

JUNIOR = "junior"
SENIOR = "senior"


class SubjectKind(str, Enum):
    CORE_COMPULSORY = "core_compulsory"
    STREAM_REQUIRED = "stream_required"
    TRUE_ELECTIVE = "true_elective"


class ResolvedSubject(BaseModel):
    subject_id: UUID
    name: str
    kind: SubjectKind

    @property
    def is_optional(self) -> bool:
        # Stream subjects are stored as optional enrollments even when the stream requires them
        return self.kind != SubjectKind.CORE_COMPULSORY


class SubjectResolution(BaseModel):
    band: str
    stream: Optional[str] = None
    subjects: List[ResolvedSubject] = Field(default_factory=list)
    stream_lookup_failed: bool = False

    @property
    def subject_ids(self) -> List[UUID]:
        return [s.subject_id for s in self.subjects]


def band_for_grade(grade_level: int) -> str:
    return JUNIOR if grade_level <= settings.JUNIOR_MAX_GRADE_LEVEL else SENIOR


class CurriculumSubjectResolver:
    """Works out which subjects a student takes from grade level and stream"""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, grade_level: int, stream: Optional[str] = None) -> SubjectResolution:
        """
        Resolve the default subject set.

        Junior students get the junior compulsory stream-less subjects. Senior
        students get the senior core set plus, when a stream is given, every
        subject attached to that stream. A failed stream lookup degrades to the
        core set and is reported through ``stream_lookup_failed``.

        Raises:
            SQLAlchemyError: If the core subjects cannot be read
        """
        band = band_for_grade(grade_level)
        stream = (stream or "").strip() or None
        resolution = SubjectResolution(band=band, stream=stream if band == SENIOR else None)

        seen = set()
        for subject_id, name in self._core_subjects(band):
            if subject_id not in seen:
                seen.add(subject_id)
                resolution.subjects.append(
                    ResolvedSubject(subject_id=subject_id, name=name, kind=SubjectKind.CORE_COMPULSORY)
                )

        if band == SENIOR and stream:
            try:
                stream_rows = self._stream_subjects(stream)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.warning(f"Stream subject lookup failed for '{stream}', using core subjects only: {e}")
                resolution.stream_lookup_failed = True
                stream_rows = []

            for subject_id, name, is_compulsory in stream_rows:
                if subject_id in seen:
                    continue
                seen.add(subject_id)
                kind = SubjectKind.STREAM_REQUIRED if is_compulsory else SubjectKind.TRUE_ELECTIVE
                resolution.subjects.append(ResolvedSubject(subject_id=subject_id, name=name, kind=kind))

        logger.debug(
            f"Resolved {len(resolution.subjects)} subject(s) for grade {grade_level} ({band}, stream={stream})"
        )
        return resolution

    def _core_subjects(self, band: str):
        return self.db.execute(
            select(CurriculumSubject.subject_id, Subject.name)
            .join(Subject, Subject.id == CurriculumSubject.subject_id)
            .where(
                CurriculumSubject.level == band,
                CurriculumSubject.is_compulsory.is_(True),
                CurriculumSubject.stream.is_(None),
            )
            .order_by(Subject.name)
        ).all()

    def _stream_subjects(self, stream: str):
        return self.db.execute(
            select(CurriculumSubject.subject_id, Subject.name, CurriculumSubject.is_compulsory)
            .join(Subject, Subject.id == CurriculumSubject.subject_id)
            .where(CurriculumSubject.level == SENIOR, CurriculumSubject.stream == stream)
            .order_by(Subject.name)
        ).all()


class SubjectEnrollmentService:
    """Writes StudentSubjectEnrollment rows; every write is an idempotent upsert"""

    def __init__(self, db: Session, resolver: Optional[CurriculumSubjectResolver] = None):
        self.db = db
        self.resolver = resolver or CurriculumSubjectResolver(db)
        self.calendar = AcademicCalendarRegistry(db)

    def enroll_student_in_default_subjects(
        self,
        student_id: UUID,
        class_id: UUID,
        stream: Optional[str] = None,
        term_id: Optional[UUID] = None,
        enrolled_by: Optional[UUID] = None,
        academic_year_id: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Enroll a student in the default subjects for their class and stream.

        Runs against the active year unless ``academic_year_id`` is given.
        Safe to repeat: rows are keyed on (student, subject, year, term).
        """
        try:
            if academic_year_id is None:
                year = self.calendar.get_active_year()
                if year is None:
                    raise DependencyNotFound("No active academic year found")
                academic_year_id = year.id

            klass = self.db.get(Class, class_id)
            if klass is None:
                raise DependencyNotFound("Class not found")

            resolution = self.resolver.resolve(klass.grade_level, stream)
            if not resolution.subjects:
                logger.warning(f"No subjects configured for {klass.name} ({resolution.band})")
                return ActionResult.ok(
                    "No subjects found for this class level and stream",
                    enrolled_count=0,
                    stream_lookup_failed=resolution.stream_lookup_failed,
                )

            with unit_of_work(self.db):
                enrolled_count = self._upsert_subjects(
                    student_id, academic_year_id, term_id, resolution.subjects, enrolled_by
                )
        except PipelineError as e:
            logger.warning(f"Subject enrollment skipped for student {student_id}: {e.message}")
            return ActionResult.from_error(e)
        except SQLAlchemyError as e:
            return ActionResult.from_error(e)

        message = f"Enrolled in {enrolled_count} subject{'s' if enrolled_count != 1 else ''}"
        if resolution.stream_lookup_failed:
            message += " (stream subjects could not be loaded; core subjects only)"
        logger.info(f"Student {student_id}: {message}")
        return ActionResult.ok(
            message,
            enrolled_count=enrolled_count,
            stream_lookup_failed=resolution.stream_lookup_failed,
        )

    def sync_student_subjects(
        self,
        student_id: UUID,
        term_id: Optional[UUID] = None,
        dry_run: bool = False,
        enrolled_by: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Re-run default enrollment from the student's current class and stream.

        With ``dry_run`` nothing is written; the result lists the subjects the
        student is missing in the active year.
        """
        student = self.db.get(Student, student_id)
        if student is None:
            return ActionResult.from_error(DependencyNotFound("Student not found"))

        if not dry_run:
            return self.enroll_student_in_default_subjects(
                student.id, student.class_id, student.stream, term_id, enrolled_by
            )

        year = self.calendar.get_active_year()
        if year is None:
            return ActionResult.from_error(DependencyNotFound("No active academic year found"))
        klass = self.db.get(Class, student.class_id)
        if klass is None:
            return ActionResult.from_error(DependencyNotFound("Class not found"))

        try:
            resolution = self.resolver.resolve(klass.grade_level, student.stream)
            existing = set(self.db.execute(
                select(StudentSubjectEnrollment.subject_id).where(
                    StudentSubjectEnrollment.student_id == student.id,
                    StudentSubjectEnrollment.academic_year_id == year.id,
                    StudentSubjectEnrollment.term_id.is_(None) if term_id is None
                    else StudentSubjectEnrollment.term_id == term_id,
                )
            ).scalars().all())
        except SQLAlchemyError as e:
            return ActionResult.from_error(e)

        missing = [s for s in resolution.subjects if s.subject_id not in existing]
        return ActionResult.ok(
            f"Dry run: {len(missing)} subject(s) would be added",
            dry_run=True,
            would_add_count=len(missing),
            would_add=[{"subject_id": s.subject_id, "name": s.name, "is_optional": s.is_optional} for s in missing],
            stream_lookup_failed=resolution.stream_lookup_failed,
        )

    def list_student_subjects(
        self,
        student_id: UUID,
        academic_year_id: Optional[UUID] = None,
        term_id: Optional[UUID] = None,
    ) -> List[dict]:
        """Subjects for a student in the given (or active) year"""
        if academic_year_id is None:
            year = self.calendar.get_active_year()
            if year is None:
                return []
            academic_year_id = year.id

        query = (
            select(StudentSubjectEnrollment, Subject)
            .join(Subject, Subject.id == StudentSubjectEnrollment.subject_id)
            .where(
                StudentSubjectEnrollment.student_id == student_id,
                StudentSubjectEnrollment.academic_year_id == academic_year_id,
            )
            .order_by(StudentSubjectEnrollment.is_optional, Subject.name)
        )
        if term_id is not None:
            query = query.where(StudentSubjectEnrollment.term_id == term_id)

        return [
            {
                "id": row.id,
                "subject_id": subject.id,
                "subject_name": subject.name,
                "subject_code": subject.code,
                "term_id": row.term_id,
                "is_optional": row.is_optional,
                "enrolled_at": row.enrolled_at,
            }
            for row, subject in self.db.execute(query).all()
        ]

    def add_student_subject(
        self,
        student_id: UUID,
        subject_id: UUID,
        academic_year_id: UUID,
        term_id: Optional[UUID] = None,
        is_optional: bool = True,
        enrolled_by: Optional[UUID] = None,
    ) -> ActionResult:
        """Manually attach one subject (an elective picked outside the defaults)"""
        try:
            if self.db.get(Subject, subject_id) is None:
                raise DependencyNotFound("Subject not found")
            with unit_of_work(self.db):
                row = StudentSubjectEnrollment(
                    student_id=student_id,
                    subject_id=subject_id,
                    academic_year_id=academic_year_id,
                    term_id=term_id,
                    is_optional=is_optional,
                    enrolled_by=enrolled_by,
                )
                self.db.add(row)
        except IntegrityError:
            return ActionResult.from_error(ValidationFailed("Student is already enrolled in this subject"))
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        return ActionResult.ok("Subject added", student_subject_id=row.id)

    def remove_student_subject(self, student_subject_id: UUID) -> ActionResult:
        try:
            row = self.db.get(StudentSubjectEnrollment, student_subject_id)
            if row is None:
                raise DependencyNotFound("Subject enrollment not found")
            with unit_of_work(self.db):
                self.db.delete(row)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        return ActionResult.ok("Subject removed")

    def _upsert_subjects(
        self,
        student_id: UUID,
        academic_year_id: UUID,
        term_id: Optional[UUID],
        subjects: List[ResolvedSubject],
        enrolled_by: Optional[UUID],
    ) -> int:
        now = utcnow()
        rows = [
            {
                "id": uuid4(),
                "student_id": student_id,
                "subject_id": s.subject_id,
                "academic_year_id": academic_year_id,
                "term_id": term_id,
                "is_optional": s.is_optional,
                "enrolled_by": enrolled_by,
                "enrolled_at": now,
                "updated_at": now,
            }
            for s in subjects
        ]

        # A null term is its own uniqueness scope with its own partial index
        if term_id is None:
            index_elements = ["student_id", "subject_id", "academic_year_id"]
        else:
            index_elements = ["student_id", "subject_id", "academic_year_id", "term_id"]

        return upsert(
            self.db,
            StudentSubjectEnrollment,
            rows,
            index_elements=index_elements,
            update_columns=["is_optional", "enrolled_by", "updated_at"],
            index_where=_term_scope(term_id),
        )


def _term_scope(term_id: Optional[UUID]):
    if term_id is None:
        return StudentSubjectEnrollment.term_id.is_(None)
    return StudentSubjectEnrollment.term_id.is_not(None)


__all__ = [
    "SubjectKind",
    "ResolvedSubject",
    "SubjectResolution",
    "CurriculumSubjectResolver",
    "SubjectEnrollmentService",
    "band_for_grade",
]
