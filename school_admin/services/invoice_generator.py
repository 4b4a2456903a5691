# school_admin/services/invoice_generator.py - Invoice generation, payments and cancellation
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from school_admin.core.config import settings
from school_admin.core.db import unit_of_work
from school_admin.models.academic import AcademicYear, Term
from school_admin.models.fee import FeeStructure, StudentFeeAssignment
from school_admin.models.payment import Invoice, InvoiceItem, InvoiceSequence, Payment
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.fee_assignment import ZERO, to_amount
from school_admin.services.results import (
    ActionResult,
    DependencyNotFound,
    PipelineError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "bank", "mobile_money")


def format_invoice_number(year: AcademicYear, term: Term, sequence: int) -> str:
    """INV-2025-T1-000001"""
    return (
        f"{settings.INVOICE_NUMBER_PREFIX}-{year.label}-T{term.ordinal}-"
        f"{sequence:0{settings.INVOICE_SEQUENCE_WIDTH}d}"
    )


class InvoiceGenerator:
    """
    Turns fee assignments into invoices.

    Numbers come from a per-(year, term) sequence row that only moves
    forward, so a cancelled invoice's number is never handed out again.
    Items are copied from the fee structure at generation time; editing the
    structure later leaves existing invoices untouched.
    """

    def __init__(self, db: Session):
        self.db = db
        self.calendar = AcademicCalendarRegistry(db)

    def preview(self, academic_year_id: UUID, term_id: UUID) -> ActionResult:
        try:
            self._require_scope(academic_year_id, term_id)
            pending, already_generated = self._uninvoiced(academic_year_id, term_id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        by_type: Dict[str, int] = {"internal": 0, "external": 0}
        total_amount = ZERO
        for assignment, student_type in pending:
            by_type[student_type] = by_type.get(student_type, 0) + 1
            total_amount += assignment.total_amount

        return ActionResult.ok(
            f"{len(pending)} invoice(s) would be generated",
            internal_count=by_type["internal"],
            external_count=by_type["external"],
            total_count=len(pending),
            total_amount=total_amount,
            already_generated=already_generated,
        )

    def commit(self, academic_year_id: UUID, term_id: UUID, generated_by: Optional[UUID] = None) -> ActionResult:
        """
        Generate one invoice per assignment that has none yet.

        The whole batch and its numbers are written in one transaction. If the
        batch collides with a concurrent run, each assignment is retried on its
        own and the ones already invoiced are counted as skipped.
        """
        try:
            year, term = self._require_scope(academic_year_id, term_id)
            pending, already_generated = self._uninvoiced(academic_year_id, term_id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        if not pending:
            return ActionResult.ok(
                "No invoices to generate",
                invoice_count=0,
                skipped_count=already_generated,
                total_amount=ZERO,
                invoices=[],
            )

        assignments = [assignment for assignment, _ in pending]
        items_by_structure = self._structure_items([a.fee_structure_id for a in assignments])

        created: List[Invoice] = []
        skipped = already_generated
        try:
            with unit_of_work(self.db):
                created = self._generate(year, term, assignments, items_by_structure, generated_by)
        except IntegrityError:
            logger.warning(f"Invoice batch for {year.name} T{term.ordinal} collided; retrying per assignment")
            for assignment in assignments:
                try:
                    with unit_of_work(self.db):
                        created.extend(
                            self._generate(year, term, [assignment], items_by_structure, generated_by)
                        )
                except IntegrityError:
                    skipped += 1
                except SQLAlchemyError as e:
                    return ActionResult.from_error(e)
        except SQLAlchemyError as e:
            return ActionResult.from_error(e)

        total_amount = sum((inv.total_amount for inv in created), ZERO)
        logger.info(
            f"Generated {len(created)} invoice(s) for {year.name} T{term.ordinal}; skipped {skipped}"
        )
        message = f"Generated {len(created)} invoice{'s' if len(created) != 1 else ''}"
        if skipped:
            message += f"; skipped {skipped} already invoiced"
        return ActionResult.ok(
            message,
            invoice_count=len(created),
            skipped_count=skipped,
            total_amount=total_amount,
            invoices=[
                {"invoice_id": inv.id, "invoice_number": inv.invoice_number,
                 "student_fee_assignment_id": inv.student_fee_assignment_id}
                for inv in created
            ],
        )

    def get_invoice(self, invoice_id: UUID) -> Optional[Invoice]:
        return self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.items), selectinload(Invoice.payments))
            .where(Invoice.id == invoice_id)
        ).scalar_one_or_none()

    def list_student_invoices(
        self,
        student_id: UUID,
        academic_year_id: Optional[UUID] = None,
        term_id: Optional[UUID] = None,
    ) -> List[Invoice]:
        query = select(Invoice).where(Invoice.student_id == student_id)
        if academic_year_id:
            query = query.where(Invoice.academic_year_id == academic_year_id)
        if term_id:
            query = query.where(Invoice.term_id == term_id)
        query = query.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number.desc())
        return list(self.db.execute(query).scalars().all())

    def record_payment(
        self,
        invoice_id: UUID,
        amount,
        method: str,
        reference: Optional[str] = None,
        recorded_by: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Post a payment against an invoice and move its status.

        Overpayment and payments on cancelled invoices are rejected.
        """
        try:
            invoice = self.db.get(Invoice, invoice_id)
            if invoice is None:
                raise DependencyNotFound("Invoice not found")
            if invoice.status == "cancelled":
                raise ValidationFailed("Cannot record a payment on a cancelled invoice")
            if method not in PAYMENT_METHODS:
                raise ValidationFailed(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
            amount = to_amount(amount)
            if amount <= 0:
                raise ValidationFailed("Payment amount must be positive")
            if amount > invoice.balance:
                raise ValidationFailed(
                    f"Payment of {amount} exceeds the outstanding balance of {invoice.balance}"
                )

            with unit_of_work(self.db):
                payment = Payment(
                    invoice_id=invoice.id,
                    amount=amount,
                    method=method,
                    reference=reference,
                    recorded_by=recorded_by,
                )
                self.db.add(payment)
                invoice.amount_paid = invoice.amount_paid + amount
                invoice.status = "paid" if invoice.amount_paid >= invoice.total_amount else "partial"
        except ValidationFailed as e:
            logger.info(f"Payment rejected for invoice {invoice_id}: {e.message}")
            return ActionResult.from_error(e)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Payment of {amount} recorded on {invoice.invoice_number} ({invoice.status})")
        return ActionResult.ok(
            "Payment recorded",
            payment_id=payment.id,
            amount_paid=invoice.amount_paid,
            balance=invoice.balance,
            status=invoice.status,
        )

    def cancel_invoice(self, invoice_id: UUID, reason: Optional[str] = None) -> ActionResult:
        """Cancel an invoice with no payments; its number stays used"""
        try:
            invoice = self.db.get(Invoice, invoice_id)
            if invoice is None:
                raise DependencyNotFound("Invoice not found")
            if invoice.status == "cancelled":
                raise ValidationFailed("Invoice is already cancelled")
            if invoice.amount_paid > 0:
                raise ValidationFailed("Cannot cancel an invoice that has payments")

            with unit_of_work(self.db):
                invoice.status = "cancelled"
                if reason:
                    invoice.notes = f"Cancelled: {reason.strip()}"
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Invoice {invoice.invoice_number} cancelled")
        return ActionResult.ok("Invoice cancelled", invoice_number=invoice.invoice_number)

    # Helpers

    def _require_scope(self, academic_year_id: UUID, term_id: UUID) -> Tuple[AcademicYear, Term]:
        year = self.calendar.get_year(academic_year_id)
        if year is None:
            raise DependencyNotFound("Academic year not found")
        term = self.calendar.get_term(term_id)
        if term is None:
            raise DependencyNotFound("Term not found")
        if term.academic_year_id != year.id:
            raise ValidationFailed("Term does not belong to the given academic year")
        return year, term

    def _uninvoiced(self, academic_year_id: UUID, term_id: UUID) -> Tuple[List[Tuple[StudentFeeAssignment, str]], int]:
        """Assignments without an invoice (with their student type), and how many already have one"""
        rows = self.db.execute(
            select(StudentFeeAssignment, FeeStructure.student_type, Invoice.id)
            .join(FeeStructure, FeeStructure.id == StudentFeeAssignment.fee_structure_id)
            .outerjoin(Invoice, Invoice.student_fee_assignment_id == StudentFeeAssignment.id)
            .where(
                StudentFeeAssignment.academic_year_id == academic_year_id,
                StudentFeeAssignment.term_id == term_id,
            )
            .order_by(StudentFeeAssignment.assigned_at, StudentFeeAssignment.id)
        ).all()

        pending = [(assignment, student_type) for assignment, student_type, invoice_id in rows if invoice_id is None]
        return pending, len(rows) - len(pending)

    def _structure_items(self, structure_ids: List[UUID]) -> Dict[UUID, list]:
        structures = self.db.execute(
            select(FeeStructure)
            .options(selectinload(FeeStructure.items))
            .where(FeeStructure.id.in_(set(structure_ids)))
        ).scalars().all()
        return {s.id: list(s.items) for s in structures}

    def _reserve_numbers(self, year: AcademicYear, term: Term, count: int) -> int:
        """Advance the sequence by ``count``; returns the first reserved value"""
        sequence = self.db.execute(
            select(InvoiceSequence)
            .where(InvoiceSequence.academic_year_id == year.id, InvoiceSequence.term_id == term.id)
            .with_for_update()
        ).scalar_one_or_none()
        if sequence is None:
            sequence = InvoiceSequence(academic_year_id=year.id, term_id=term.id, last_value=0)
            self.db.add(sequence)
        first = sequence.last_value + 1
        sequence.last_value = sequence.last_value + count
        return first

    def _generate(
        self,
        year: AcademicYear,
        term: Term,
        assignments: List[StudentFeeAssignment],
        items_by_structure: Dict[UUID, list],
        generated_by: Optional[UUID],
    ) -> List[Invoice]:
        today = date.today()
        next_value = self._reserve_numbers(year, term, len(assignments))
        invoices = []
        for offset, assignment in enumerate(assignments):
            invoice = Invoice(
                invoice_number=format_invoice_number(year, term, next_value + offset),
                student_fee_assignment_id=assignment.id,
                student_id=assignment.student_id,
                academic_year_id=assignment.academic_year_id,
                term_id=assignment.term_id,
                invoice_date=today,
                due_date=assignment.due_date or today + timedelta(days=settings.INVOICE_DUE_DAYS),
                total_amount=assignment.total_amount,
                amount_paid=Decimal("0.00"),
                status="unpaid",
                generated_by=generated_by,
            )
            for position, item in enumerate(items_by_structure.get(assignment.fee_structure_id, [])):
                invoice.items.append(InvoiceItem(
                    position=position,
                    item_name=item.name,
                    description=item.description,
                    quantity=1,
                    unit_price=item.amount,
                    total_amount=item.amount,
                ))
            self.db.add(invoice)
            invoices.append(invoice)
        self.db.flush()
        return invoices


__all__ = ["InvoiceGenerator", "format_invoice_number", "PAYMENT_METHODS"]
