# school_admin/api/routers/enrollments.py - Year enrollment, status changes and promotion
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uuid import UUID

from school_admin.core.db import get_db
from school_admin.api.deps.auth import require_admin
from school_admin.api.errors import raise_for_result
from school_admin.schemas.enrollment import EnrollmentCreate, EnrollmentStatusUpdate, PromotionRequest
from school_admin.services.enrollment_service import EnrollmentOrchestrator
from school_admin.services.results import ActionResult

router = APIRouter()


@router.post("/", response_model=ActionResult)
def enroll_student(data: EnrollmentCreate, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    """Enroll (or re-enroll) a student for a year; one row per student and year"""
    return raise_for_result(EnrollmentOrchestrator(db).enroll_student(
        data.student_id, data.class_id, data.academic_year_id, data.status
    ))


@router.post("/promote", response_model=ActionResult)
def promote_students(data: PromotionRequest, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(EnrollmentOrchestrator(db).promote_students(
        data.student_ids, data.target_class_id, data.target_year_id
    ))


@router.patch("/{enrollment_id}/status", response_model=ActionResult)
def update_status(
    enrollment_id: UUID,
    data: EnrollmentStatusUpdate,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return raise_for_result(EnrollmentOrchestrator(db).update_enrollment_status(enrollment_id, data.status))
