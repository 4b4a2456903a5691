# school_admin/api/routers/students.py - Registration, ID checks and per-student views
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from school_admin.core.db import get_db
from school_admin.api.deps.auth import get_current_user, require_admin
from school_admin.api.errors import raise_for_result, STATUS_BY_CODE
from school_admin.models.student import Student
from school_admin.schemas.student import (
    StudentRegistration, BulkRegistration, RegistrationOut, StudentIdAvailability,
    SubjectSyncRequest, StudentSubjectOut, StudentOut
)
from school_admin.schemas.enrollment import EnrollmentOut
from school_admin.schemas.fee import FeeAssignmentOut
from school_admin.schemas.invoice import InvoiceOut
from school_admin.schemas.clearance import ClearanceRequestOut
from school_admin.services.clearance import ClearanceWorkflow
from school_admin.services.curriculum import SubjectEnrollmentService
from school_admin.services.enrollment_service import EnrollmentOrchestrator
from school_admin.services.fee_assignment import FeeAssignmentEngine
from school_admin.services.invoice_generator import InvoiceGenerator
from school_admin.services.results import ActionResult

router = APIRouter()


def _require_self_or_staff(ctx: dict, student_id: UUID) -> None:
    user = ctx["user"]
    if user.id != student_id and not user.is_staff():
        raise HTTPException(status_code=403, detail="Access denied")


@router.post("/", response_model=RegistrationOut, status_code=status.HTTP_201_CREATED)
def register_student(
    data: StudentRegistration,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Register a student and attach them to the active year"""
    result = EnrollmentOrchestrator(db).register_student(data, registered_by=ctx["user"].id)
    if not result.success:
        raise HTTPException(status_code=STATUS_BY_CODE[result.error_code], detail=result.message)
    return RegistrationOut(
        success=result.success,
        message=result.message,
        student_id=result.data.get("student_id"),
        student_number=result.data.get("student_number"),
        email=result.data.get("email"),
        steps=[s.model_dump(mode="json") for s in result.steps],
    )


@router.post("/bulk", response_model=ActionResult)
def register_students(
    data: BulkRegistration,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Register parsed upload rows; per-row outcomes come back in ``data.rows``"""
    return raise_for_result(EnrollmentOrchestrator(db).register_students(data.rows, registered_by=ctx["user"].id))


@router.get("/check-id", response_model=StudentIdAvailability)
def check_student_id(
    student_id: str = Query(..., min_length=1),
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    result = raise_for_result(EnrollmentOrchestrator(db).check_student_id_availability(student_id))
    return StudentIdAvailability(student_id=student_id.strip(), available=result.data["available"])


@router.get("/{student_id}", response_model=StudentOut)
def get_student(student_id: UUID, ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_self_or_staff(ctx, student_id)
    student = db.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@router.get("/{student_id}/subjects", response_model=List[StudentSubjectOut])
def get_student_subjects(
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _require_self_or_staff(ctx, student_id)
    return SubjectEnrollmentService(db).list_student_subjects(student_id, academic_year_id, term_id)


@router.post("/{student_id}/subjects/sync", response_model=ActionResult)
def sync_subjects(
    student_id: UUID,
    data: SubjectSyncRequest,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Enroll the student in any default subjects they are missing"""
    return raise_for_result(SubjectEnrollmentService(db).sync_student_subjects(
        student_id, data.term_id, data.dry_run, enrolled_by=ctx["user"].id
    ))


@router.get("/{student_id}/enrollments", response_model=List[EnrollmentOut])
def get_student_enrollments(student_id: UUID, ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_self_or_staff(ctx, student_id)
    return EnrollmentOrchestrator(db).list_student_enrollments(student_id)


@router.get("/{student_id}/fees", response_model=List[FeeAssignmentOut])
def get_student_fees(student_id: UUID, ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_self_or_staff(ctx, student_id)
    return FeeAssignmentEngine(db).list_student_assignments(student_id)


@router.get("/{student_id}/invoices", response_model=List[InvoiceOut])
def get_student_invoices(
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _require_self_or_staff(ctx, student_id)
    return InvoiceGenerator(db).list_student_invoices(student_id, academic_year_id, term_id)


@router.get("/{student_id}/clearances", response_model=List[ClearanceRequestOut])
def get_student_clearances(
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID] = None,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _require_self_or_staff(ctx, student_id)
    return ClearanceWorkflow(db).get_clearance_status(student_id, academic_year_id, term_id)
