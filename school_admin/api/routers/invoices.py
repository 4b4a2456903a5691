# school_admin/api/routers/invoices.py - Invoice generation, payments and cancellation
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID

from school_admin.core.db import get_db
from school_admin.api.deps.auth import get_current_user, require_admin, require_staff
from school_admin.api.errors import raise_for_result
from school_admin.schemas.fee import TermScope
from school_admin.schemas.invoice import InvoiceDetail, PaymentCreate, InvoiceCancel
from school_admin.services.invoice_generator import InvoiceGenerator
from school_admin.services.results import ActionResult

router = APIRouter()


@router.post("/preview", response_model=ActionResult)
def preview_invoices(data: TermScope, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return raise_for_result(InvoiceGenerator(db).preview(data.academic_year_id, data.term_id))


@router.post("/generate", response_model=ActionResult)
def generate_invoices(data: TermScope, ctx: dict = Depends(require_admin), db: Session = Depends(get_db)):
    """Generate invoices for every fee assignment of the term that has none"""
    return raise_for_result(InvoiceGenerator(db).commit(
        data.academic_year_id, data.term_id, generated_by=ctx["user"].id
    ))


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: UUID, ctx: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    invoice = InvoiceGenerator(db).get_invoice(invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    user = ctx["user"]
    if invoice.student_id != user.id and not user.is_staff():
        raise HTTPException(status_code=403, detail="Access denied")
    return invoice


@router.post("/{invoice_id}/payments", response_model=ActionResult)
def record_payment(
    invoice_id: UUID,
    data: PaymentCreate,
    ctx: dict = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return raise_for_result(InvoiceGenerator(db).record_payment(
        invoice_id, data.amount, data.method, data.reference, recorded_by=ctx["user"].id
    ))


@router.post("/{invoice_id}/cancel", response_model=ActionResult)
def cancel_invoice(
    invoice_id: UUID,
    data: InvoiceCancel,
    ctx: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return raise_for_result(InvoiceGenerator(db).cancel_invoice(invoice_id, data.reason))
