# school_admin/services/enrollment_service.py - Student registration, cohort enrollment and promotion
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from school_admin.core.config import settings
from school_admin.core.db import unit_of_work, upsert
from school_admin.models.academic import AcademicYear
from school_admin.models.base import utcnow
from school_admin.models.class_model import Class
from school_admin.models.enrollment import ENROLLMENT_STATUSES, Enrollment
from school_admin.models.student import Student
from school_admin.models.user import Profile, User
from school_admin.schemas.student import StudentRegistration
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.curriculum import SubjectEnrollmentService
from school_admin.services.fee_assignment import FeeAssignmentEngine
from school_admin.services.identity import IdentityProvider, LocalIdentityProvider
from school_admin.services.results import (
    ActionResult,
    DependencyNotFound,
    ErrorCode,
    IdentityProviderError,
    PipelineError,
    RegistrationResult,
    StepKind,
    StepStatus,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "first_name": "first name",
    "last_name": "last name",
    "gender": "gender",
    "class_id": "class",
}


def fallback_email(student_id: str) -> str:
    return f"{student_id.strip().lower()}@{settings.INSTITUTION_EMAIL_DOMAIN}"


class EnrollmentOrchestrator:
    """
    Registers students and attaches them to the current year.

    Registration is a sequence of separately committed steps. Identity,
    profile and student row are required: if profile or student creation
    fails the identity is deleted again. Enrollment, default subjects and
    fee assignment are best-effort: a failure is recorded in the result and
    logged, the registration still succeeds, and ``sync_student_subjects`` or
    a bulk fee commit can repair it later.
    """

    def __init__(
        self,
        db: Session,
        identity: Optional[IdentityProvider] = None,
        subjects: Optional[SubjectEnrollmentService] = None,
        fees: Optional[FeeAssignmentEngine] = None,
    ):
        self.db = db
        self.identity = identity or LocalIdentityProvider(db)
        self.calendar = AcademicCalendarRegistry(db)
        self.subjects = subjects or SubjectEnrollmentService(db)
        self.fees = fees or FeeAssignmentEngine(db)

    def check_student_id_availability(self, student_id: Optional[str]) -> ActionResult:
        student_id = (student_id or "").strip()
        if not student_id:
            return ActionResult.from_error(ValidationFailed("Student ID is required"))
        try:
            taken = self._student_id_taken(student_id)
        except SQLAlchemyError as e:
            return ActionResult.from_error(e)
        return ActionResult.ok(
            "Student ID is already in use" if taken else "Student ID is available",
            available=not taken,
        )

    def register_student(
        self, registration: StudentRegistration, registered_by: Optional[UUID] = None
    ) -> RegistrationResult:
        result = RegistrationResult(success=False, message="")

        # 1. Validate before any mutation
        try:
            klass = self._validate(registration)
        except ValidationFailed as e:
            logger.info(f"Registration rejected: {e.message}")
            result.record("validate", StepKind.REQUIRED, StepStatus.FAILED, e.message)
            return self._finish(result, False, e.message, e.code)
        except SQLAlchemyError as e:
            logger.error(f"Registration pre-check failed: {e}")
            result.record("validate", StepKind.REQUIRED, StepStatus.FAILED, "Failed to validate Student ID")
            return self._finish(result, False, "Failed to validate Student ID. Please try again.", ErrorCode.STORE_ERROR)
        result.record("validate", StepKind.REQUIRED, StepStatus.SUCCEEDED)

        student_number = registration.student_id
        email = str(registration.email) if registration.email else fallback_email(student_number)

        # 2. Identity
        try:
            identity_id = self.identity.create_identity(
                email,
                settings.DEFAULT_STUDENT_PASSWORD,
                {
                    "first_name": registration.first_name,
                    "middle_name": registration.middle_name,
                    "last_name": registration.last_name,
                    "role": "student",
                    "must_change_password": True,
                },
            )
        except IdentityProviderError as e:
            logger.error(f"Identity creation failed for {student_number}: {e.message}")
            result.record("identity", StepKind.REQUIRED, StepStatus.FAILED, e.message)
            return self._finish(result, False, f"Failed to create user account: {e.message}", e.code)
        result.record("identity", StepKind.REQUIRED, StepStatus.SUCCEEDED)

        # 3. Profile, keyed by identity id and tolerant of a row created elsewhere
        try:
            with unit_of_work(self.db):
                self._upsert_profile(identity_id, email, registration)
        except SQLAlchemyError as e:
            result.record("profile", StepKind.REQUIRED, StepStatus.FAILED, str(getattr(e, "orig", None) or e))
            return self._compensate(result, identity_id, "Failed to create student profile", e)
        result.record("profile", StepKind.REQUIRED, StepStatus.SUCCEEDED)

        # 4. Student row
        try:
            with unit_of_work(self.db):
                student = Student(
                    id=identity_id,
                    student_id=student_number,
                    class_id=klass.id,
                    gender=registration.gender,
                    student_type=registration.student_type,
                    stream=registration.stream,
                    date_of_birth=registration.date_of_birth,
                    guardian_email=str(registration.guardian_email) if registration.guardian_email else None,
                )
                self.db.add(student)
        except SQLAlchemyError as e:
            result.record("student", StepKind.REQUIRED, StepStatus.FAILED, str(getattr(e, "orig", None) or e))
            return self._compensate(result, identity_id, "Failed to create student record", e)
        result.record("student", StepKind.REQUIRED, StepStatus.SUCCEEDED)
        logger.info(f"Student {student_number} created ({email})")

        # 5. Best-effort attachment to the active year
        self._attach_to_active_year(result, student, registered_by)

        message = "Student registered successfully"
        if result.degraded:
            message += " (some enrollment steps failed; run a subject sync to repair)"
        return self._finish(
            result, True, message, None,
            student_id=identity_id, student_number=student_number, email=email,
        )

    def register_students(
        self, rows: Sequence[StudentRegistration], registered_by: Optional[UUID] = None
    ) -> ActionResult:
        """
        Register a batch of already-parsed upload rows, one pipeline run per row.

        Rows whose student ID or email is already taken (in the store or by an
        earlier row of the same batch) are skipped without touching the
        identity provider. Every other row goes through ``register_student``
        and its outcome is reported against its 1-based row number.
        """
        rows = list(rows)
        if not rows:
            return ActionResult.from_error(ValidationFailed("No students to register"))

        try:
            taken_ids, taken_emails = self._taken_in_store(rows)
        except SQLAlchemyError as e:
            logger.error(f"Bulk registration duplicate check failed: {e}")
            return ActionResult.from_error(e)

        outcomes = []
        registered = failed = skipped = 0
        for row_number, registration in enumerate(rows, start=1):
            student_number = registration.student_id
            email = self._registration_email(registration)
            outcome = {"row": row_number, "student_id": student_number, "email": email}

            if student_number and student_number.lower() in taken_ids:
                skipped += 1
                outcomes.append({**outcome, "status": "skipped",
                                 "error": f'Student ID "{student_number}" already exists in the system'})
                continue
            if email and email in taken_emails:
                skipped += 1
                outcomes.append({**outcome, "status": "skipped", "error": "Email already exists in the system"})
                continue

            result = self.register_student(registration, registered_by=registered_by)
            if result.success:
                registered += 1
                taken_ids.add(student_number.lower())
                taken_emails.add(email)
                outcomes.append({**outcome, "status": "registered", "user_id": result.data["student_id"],
                                 "degraded": result.degraded, "error": None})
            else:
                failed += 1
                outcomes.append({**outcome, "status": "failed", "error_code": result.error_code,
                                 "error": result.message})

        if registered == len(rows):
            message = f"Successfully registered all {registered} students"
        elif registered:
            message = f"Registered {registered} out of {len(rows)} students. {failed} failed, {skipped} skipped."
        else:
            message = f"Failed to register any students. {failed} failed, {skipped} skipped."
        logger.info(f"Bulk registration: {registered} registered, {failed} failed, {skipped} skipped")
        return ActionResult.ok(
            message,
            total_processed=len(rows),
            success_count=registered,
            failure_count=failed,
            skipped_count=skipped,
            rows=outcomes,
        )

    def enroll_student(
        self,
        student_id: UUID,
        class_id: UUID,
        academic_year_id: UUID,
        status: str = "active",
    ) -> ActionResult:
        """Upsert the (student, year) enrollment; repeating it never adds a row"""
        try:
            if status not in ENROLLMENT_STATUSES:
                raise ValidationFailed(f"Status must be one of: {', '.join(ENROLLMENT_STATUSES)}")
            if self.db.get(Student, student_id) is None:
                raise DependencyNotFound("Student not found")
            if self.db.get(Class, class_id) is None:
                raise DependencyNotFound("Class not found")
            if self.db.get(AcademicYear, academic_year_id) is None:
                raise DependencyNotFound("Academic year not found")

            with unit_of_work(self.db):
                self._upsert_enrollments([student_id], class_id, academic_year_id, status)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Student {student_id} enrolled in class {class_id} for year {academic_year_id}")
        return ActionResult.ok("Student enrolled")

    def list_student_enrollments(self, student_id: UUID) -> List[dict]:
        rows = self.db.execute(
            select(Enrollment, AcademicYear, Class)
            .join(AcademicYear, AcademicYear.id == Enrollment.academic_year_id)
            .join(Class, Class.id == Enrollment.class_id)
            .where(Enrollment.student_id == student_id)
            .order_by(AcademicYear.start_date.desc())
        ).all()
        return [
            {
                "id": enrollment.id,
                "student_id": enrollment.student_id,
                "class_id": enrollment.class_id,
                "class_name": klass.name,
                "academic_year_id": enrollment.academic_year_id,
                "academic_year_name": year.name,
                "status": enrollment.status,
                "enrolled_at": enrollment.enrolled_at,
            }
            for enrollment, year, klass in rows
        ]

    def update_enrollment_status(self, enrollment_id: UUID, status: str) -> ActionResult:
        try:
            if status not in ENROLLMENT_STATUSES:
                raise ValidationFailed(f"Status must be one of: {', '.join(ENROLLMENT_STATUSES)}")
            enrollment = self.db.get(Enrollment, enrollment_id)
            if enrollment is None:
                raise DependencyNotFound("Enrollment not found")
            previous = enrollment.status
            with unit_of_work(self.db):
                enrollment.status = status
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Enrollment {enrollment_id}: {previous} -> {status}")
        return ActionResult.ok("Enrollment status updated", status=status)

    def promote_students(
        self, student_ids: Sequence[UUID], target_class_id: UUID, target_year_id: UUID
    ) -> ActionResult:
        """
        Enroll students into a class for the target year and move them to that class.

        Uses the same (student, year) upsert as single enrollment, so promoting
        twice leaves one row per student.
        """
        student_ids = list(dict.fromkeys(student_ids))
        try:
            if not student_ids:
                raise ValidationFailed("No students selected for promotion")
            if self.db.get(AcademicYear, target_year_id) is None:
                raise DependencyNotFound("Invalid target academic year")
            if self.db.get(Class, target_class_id) is None:
                raise DependencyNotFound("Invalid target class")
            found = set(self.db.execute(
                select(Student.id).where(Student.id.in_(student_ids))
            ).scalars().all())
            missing = [sid for sid in student_ids if sid not in found]
            if missing:
                raise ValidationFailed(f"{len(missing)} selected student(s) do not exist")

            with unit_of_work(self.db):
                self._upsert_enrollments(student_ids, target_class_id, target_year_id, "active")
                self.db.execute(
                    update(Student)
                    .where(Student.id.in_(student_ids))
                    .values(class_id=target_class_id, updated_at=utcnow())
                )
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Promoted {len(student_ids)} student(s) to class {target_class_id}")
        return ActionResult.ok(f"Promoted {len(student_ids)} student(s)", promoted=len(student_ids))

    # Registration internals

    def _validate(self, registration: StudentRegistration) -> Class:
        missing = [label for field, label in REQUIRED_FIELDS.items() if not getattr(registration, field)]
        if missing:
            raise ValidationFailed(f"Please fill in all required fields: {', '.join(missing)}")
        if not registration.student_id:
            raise ValidationFailed("Student ID is required")
        if self._student_id_taken(registration.student_id):
            raise ValidationFailed(
                f'Student ID "{registration.student_id}" is already in use. Please use a unique Student ID.'
            )
        klass = self.db.get(Class, registration.class_id)
        if klass is None:
            raise ValidationFailed("Selected class does not exist")
        return klass

    def _student_id_taken(self, student_id: str) -> bool:
        return self.db.execute(
            select(Student.id).where(func.lower(Student.student_id) == student_id.strip().lower())
        ).first() is not None

    @staticmethod
    def _registration_email(registration: StudentRegistration) -> Optional[str]:
        if registration.email:
            return str(registration.email).strip().lower()
        if registration.student_id:
            return fallback_email(registration.student_id)
        return None

    def _taken_in_store(self, rows: Sequence[StudentRegistration]):
        """Lowercased student IDs and emails from the batch that already exist"""
        student_ids = {r.student_id.lower() for r in rows if r.student_id}
        emails = {e for e in (self._registration_email(r) for r in rows) if e}
        taken_ids = set()
        if student_ids:
            taken_ids = {
                sid.lower() for sid in self.db.execute(
                    select(Student.student_id).where(func.lower(Student.student_id).in_(student_ids))
                ).scalars().all()
            }
        taken_emails = set()
        if emails:
            taken_emails = set(self.db.execute(
                select(User.email).where(User.email.in_(emails))
            ).scalars().all())
        return taken_ids, taken_emails

    def _upsert_profile(self, identity_id: UUID, email: str, registration: StudentRegistration) -> None:
        now = utcnow()
        upsert(
            self.db,
            Profile,
            [{
                "id": identity_id,
                "email": email,
                "first_name": registration.first_name,
                "middle_name": registration.middle_name,
                "last_name": registration.last_name,
                "role": "student",
                "created_at": now,
                "updated_at": now,
            }],
            index_elements=["id"],
            update_columns=["email", "first_name", "middle_name", "last_name", "role", "updated_at"],
        )

    def _upsert_enrollments(
        self, student_ids: List[UUID], class_id: UUID, academic_year_id: UUID, status: str
    ) -> int:
        now = utcnow()
        rows = [
            {
                "id": uuid4(),
                "student_id": sid,
                "class_id": class_id,
                "academic_year_id": academic_year_id,
                "status": status,
                "enrolled_at": now,
                "updated_at": now,
            }
            for sid in student_ids
        ]
        return upsert(
            self.db,
            Enrollment,
            rows,
            index_elements=["student_id", "academic_year_id"],
            update_columns=["class_id", "status", "updated_at"],
        )

    def _compensate(
        self, result: RegistrationResult, identity_id: UUID, reason: str, error: SQLAlchemyError
    ) -> RegistrationResult:
        """Delete the identity created for a registration that could not complete"""
        code = ErrorCode.ALREADY_EXISTS if isinstance(error, IntegrityError) else ErrorCode.STORE_ERROR
        logger.error(f"{reason} for identity {identity_id}: {error}")
        try:
            self.identity.delete_identity(identity_id)
        except IdentityProviderError as e:
            logger.critical(
                f"LEAKED IDENTITY {identity_id}: registration failed ({reason}) and the identity "
                f"could not be deleted: {e.message}. Manual cleanup required."
            )
            result.record("compensation", StepKind.REQUIRED, StepStatus.FAILED, e.message)
            return self._finish(
                result, False,
                f"{reason}. The created account could not be removed; contact an administrator.",
                ErrorCode.COMPENSATION_FAILED,
                identity_id=identity_id,
            )
        result.record("compensation", StepKind.REQUIRED, StepStatus.SUCCEEDED, "Identity removed")
        return self._finish(result, False, reason, code)

    def _attach_to_active_year(
        self, result: RegistrationResult, student: Student, registered_by: Optional[UUID]
    ) -> None:
        year = self.calendar.get_active_year()
        if year is None:
            logger.warning(f"No active academic year; {student.student_id} registered without enrollment")
            for step in ("enrollment", "subjects", "fees"):
                result.record(step, StepKind.BEST_EFFORT, StepStatus.SKIPPED, "No active academic year")
            return

        self._best_effort(result, "enrollment", lambda: self.enroll_student(
            student.id, student.class_id, year.id, "active"
        ))
        self._best_effort(result, "subjects", lambda: self.subjects.enroll_student_in_default_subjects(
            student.id, student.class_id, student.stream, None, registered_by, year.id
        ))

        term = self.calendar.get_active_term(year.id)
        if term is None:
            logger.warning(f"No active term in {year.name}; fee assignment skipped for {student.student_id}")
            result.record("fees", StepKind.BEST_EFFORT, StepStatus.SKIPPED, "No active term")
            return
        self._best_effort(result, "fees", lambda: self.fees.assign_student_fees(
            student.id, year.id, term.id, registered_by
        ))

    def _best_effort(self, result: RegistrationResult, step: str, action: Callable[[], ActionResult]) -> None:
        try:
            outcome = action()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Registration step '{step}' raised: {e}", exc_info=True)
            result.record(step, StepKind.BEST_EFFORT, StepStatus.FAILED, str(e))
            return

        if not outcome.success:
            logger.warning(f"Registration step '{step}' failed: {outcome.message}")
            result.record(step, StepKind.BEST_EFFORT, StepStatus.FAILED, outcome.message)
        elif outcome.data.get("fee_assigned") is False:
            result.record(step, StepKind.BEST_EFFORT, StepStatus.SKIPPED, outcome.message)
        else:
            if outcome.data.get("stream_lookup_failed"):
                logger.warning(f"Registration step '{step}' degraded: {outcome.message}")
            result.record(step, StepKind.BEST_EFFORT, StepStatus.SUCCEEDED, outcome.message)

    @staticmethod
    def _finish(
        result: RegistrationResult, success: bool, message: str, code: Optional[ErrorCode], **data
    ) -> RegistrationResult:
        result.success = success
        result.message = message
        result.error_code = code
        result.data.update(data)
        return result


__all__ = ["EnrollmentOrchestrator", "fallback_email"]
