# school_admin/api/routers/clearances.py - Clearance types, requests and decisions
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from school_admin.core.db import get_db
from school_admin.api.deps.auth import get_current_user, require_admin, require_staff
from school_admin.api.errors import raise_for_result
from school_admin.schemas.clearance import (
    ClearanceTypeCreate, ClearanceTypeOut, ClearanceRequestCreate,
    ClearanceDecision, PendingClearanceOut, BulkClearanceScope
)
from school_admin.services.clearance import ClearanceWorkflow
from school_admin.services.results import ActionResult

router = APIRouter()


@router.get("/types", response_model=List[ClearanceTypeOut])
def list_clearance_types(
    active_only: bool = True,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return ClearanceWorkflow(db).list_types(active_only)


@router.post("/types", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_clearance_type(data: ClearanceTypeCreate, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(ClearanceWorkflow(db).create_type(
        data.name, data.display_name, data.minimum_payment_percentage, data.display_order
    ))


@router.post("/types/{type_id}/toggle", response_model=ActionResult)
def toggle_clearance_type(type_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(ClearanceWorkflow(db).toggle_type(type_id))


@router.post("/requests", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def request_clearance(
    data: ClearanceRequestCreate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Students request their own clearance; staff may request for any student"""
    user = ctx["user"]
    if user.id != data.student_id and not user.is_staff():
        raise HTTPException(
            status_code=403,
            detail="You do not have permission to request clearance for this student"
        )
    return raise_for_result(ClearanceWorkflow(db).request_clearance(
        data.student_id, data.clearance_type_id, data.academic_year_id, data.term_id,
        requested_by=user.id,
    ))


@router.get("/pending", response_model=List[PendingClearanceOut])
def list_pending(
    academic_year_id: UUID,
    term_id: Optional[UUID] = None,
    clearance_type_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
    ctx: dict = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return ClearanceWorkflow(db).list_pending(academic_year_id, term_id, clearance_type_id, class_id)


@router.post("/requests/{request_id}/decision", response_model=ActionResult)
def decide(
    request_id: UUID,
    data: ClearanceDecision,
    ctx: dict = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return raise_for_result(ClearanceWorkflow(db).decide(
        request_id, data.approve, approver_id=ctx["user"].id, reason=data.reason
    ))


@router.post("/bulk/preview", response_model=ActionResult)
def preview_bulk_clearance(data: BulkClearanceScope, ctx: dict = Depends(require_staff), db: Session = Depends(get_db)):
    """Who in the class (or school) meets the threshold right now"""
    return raise_for_result(ClearanceWorkflow(db).preview_bulk(
        data.clearance_type_id, data.academic_year_id, data.term_id, data.class_id
    ))


@router.post("/bulk", response_model=ActionResult)
def bulk_request_clearance(data: BulkClearanceScope, ctx: dict = Depends(require_staff), db: Session = Depends(get_db)):
    return raise_for_result(ClearanceWorkflow(db).bulk_request(
        data.clearance_type_id, data.academic_year_id, data.term_id, data.class_id,
        requested_by=ctx["user"].id,
    ))
