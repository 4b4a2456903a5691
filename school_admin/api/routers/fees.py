# school_admin/api/routers/fees.py - Fee structures and bulk fee assignment
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from school_admin.core.db import get_db
from school_admin.api.deps.auth import require_admin, require_staff
from school_admin.api.errors import raise_for_result
from school_admin.schemas.fee import FeeStructureCreate, FeeStructureOut, TermScope
from school_admin.services.fee_assignment import FeeAssignmentEngine
from school_admin.services.results import ActionResult

router = APIRouter()


@router.post("/structures", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_fee_structure(
    data: FeeStructureCreate,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return raise_for_result(FeeAssignmentEngine(db).create_structure(
        name=data.name,
        academic_year_id=data.academic_year_id,
        term_id=data.term_id,
        student_type=data.student_type,
        items=[item.model_dump() for item in data.items],
        due_date=data.due_date,
        notes=data.notes,
        created_by=ctx["user"].id,
    ))


@router.get("/structures", response_model=List[FeeStructureOut])
def list_fee_structures(
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    student_type: Optional[str] = None,
    active_only: bool = False,
    ctx: dict = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return FeeAssignmentEngine(db).list_structures(academic_year_id, term_id, student_type, active_only)


@router.get("/structures/{structure_id}", response_model=FeeStructureOut)
def get_fee_structure(structure_id: UUID, ctx: dict = Depends(require_staff), db: Session = Depends(get_db)):
    structure = FeeAssignmentEngine(db).get_structure(structure_id)
    if not structure:
        raise HTTPException(status_code=404, detail="Fee structure not found")
    return structure


@router.post("/structures/{structure_id}/toggle", response_model=ActionResult)
def toggle_fee_structure(structure_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(FeeAssignmentEngine(db).toggle_structure(structure_id))


@router.post("/assignments/preview", response_model=ActionResult)
def preview_assignment(data: TermScope, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    """What a bulk assignment would do; writes nothing"""
    return raise_for_result(FeeAssignmentEngine(db).preview(data.academic_year_id, data.term_id))


@router.post("/assignments/commit", response_model=ActionResult)
def commit_assignment(data: TermScope, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(FeeAssignmentEngine(db).commit(
        data.academic_year_id, data.term_id, assigned_by=ctx["user"].id
    ))
