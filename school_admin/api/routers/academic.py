# school_admin/api/routers/academic.py - Academic years and terms
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from school_admin.core.db import get_db
from school_admin.api.deps.auth import get_current_user, require_admin
from school_admin.api.errors import raise_for_result
from school_admin.schemas.academic import (
    AcademicYearCreate, AcademicYearOut, AcademicYearDetail,
    TermCreate, TermOut, ActiveCalendarOut
)
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.results import ActionResult

router = APIRouter()


@router.get("/years", response_model=List[AcademicYearOut])
def list_years(ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    return AcademicCalendarRegistry(db).list_years()


@router.post("/years", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_year(
    data: AcademicYearCreate,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return raise_for_result(AcademicCalendarRegistry(db).create_year(
        data.name, data.start_date, data.end_date, data.is_active
    ))


@router.get("/active", response_model=ActiveCalendarOut)
def get_active_calendar(ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    """Active year and its active term; either may be null on a fresh install"""
    registry = AcademicCalendarRegistry(db)
    year = registry.get_active_year()
    term = registry.get_active_term(year.id) if year else None
    return ActiveCalendarOut(academic_year=year, term=term)


@router.get("/years/{year_id}", response_model=AcademicYearDetail)
def get_year(year_id: UUID, ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    year = AcademicCalendarRegistry(db).get_year(year_id)
    if not year:
        raise HTTPException(status_code=404, detail="Academic year not found")
    return year


@router.post("/years/{year_id}/activate", response_model=ActionResult)
def activate_year(year_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(AcademicCalendarRegistry(db).activate(year_id))


@router.post("/years/{year_id}/deactivate", response_model=ActionResult)
def deactivate_year(year_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(AcademicCalendarRegistry(db).deactivate(year_id))


@router.delete("/years/{year_id}", response_model=ActionResult)
def delete_year(year_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(AcademicCalendarRegistry(db).delete_year(year_id))


@router.get("/years/{year_id}/terms", response_model=List[TermOut])
def list_terms(year_id: UUID, ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    return AcademicCalendarRegistry(db).list_terms(year_id)


@router.post("/years/{year_id}/terms", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_term(
    year_id: UUID,
    data: TermCreate,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return raise_for_result(AcademicCalendarRegistry(db).create_term(
        year_id, data.name, data.start_date, data.end_date, data.ordinal, data.is_active
    ))


@router.post("/terms/{term_id}/activate", response_model=ActionResult)
def activate_term(term_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(AcademicCalendarRegistry(db).activate_term(term_id))


@router.post("/terms/{term_id}/deactivate", response_model=ActionResult)
def deactivate_term(term_id: UUID, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(AcademicCalendarRegistry(db).deactivate_term(term_id))
