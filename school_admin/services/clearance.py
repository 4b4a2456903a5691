# school_admin/services/clearance.py - Fee clearance requests and their approval workflow
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from school_admin.core.config import settings
from school_admin.core.db import unit_of_work
from school_admin.models.base import utcnow
from school_admin.models.clearance import ClearanceRequest, ClearanceType
from school_admin.models.payment import Invoice
from school_admin.models.student import Student
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.results import (
    ActionResult,
    AlreadyExists,
    DependencyNotFound,
    ErrorCode,
    PipelineError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ACTIVE_STATUSES = ("pending", "approved")


def payment_percentage(total: Decimal, paid: Decimal) -> Decimal:
    """Share of fees paid, 0-100 with two decimals. Nothing owed counts as fully paid."""
    if total <= 0:
        return HUNDRED.quantize(Decimal("0.01"))
    return min(paid * HUNDRED / total, HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class ClearanceWorkflow:
    """
    pending -> approved | rejected. Decided requests are final; a retry is a
    new request. Clearance never touches invoices or payments.
    """

    def __init__(self, db: Session):
        self.db = db
        self.calendar = AcademicCalendarRegistry(db)

    # Clearance types

    def create_type(
        self,
        name: str,
        display_name: str,
        minimum_payment_percentage,
        display_order: int = 0,
    ) -> ActionResult:
        name = (name or "").strip().lower()
        try:
            if not name or not (display_name or "").strip():
                raise ValidationFailed("Clearance type name and display name are required")
            threshold = Decimal(str(minimum_payment_percentage))
            if threshold < 0 or threshold > 100:
                raise ValidationFailed("Minimum payment percentage must be between 0 and 100")
            exists = self.db.execute(
                select(ClearanceType.id).where(ClearanceType.name == name)
            ).scalar_one_or_none()
            if exists:
                raise AlreadyExists(f"Clearance type '{name}' already exists")

            with unit_of_work(self.db):
                clearance_type = ClearanceType(
                    name=name,
                    display_name=display_name.strip(),
                    minimum_payment_percentage=threshold,
                    display_order=display_order,
                    is_active=True,
                )
                self.db.add(clearance_type)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)
        except ArithmeticError:
            return ActionResult.from_error(ValidationFailed("Minimum payment percentage must be a number"))

        return ActionResult.ok("Clearance type created", clearance_type_id=clearance_type.id)

    def list_types(self, active_only: bool = True) -> List[ClearanceType]:
        query = select(ClearanceType)
        if active_only:
            query = query.where(ClearanceType.is_active.is_(True))
        return list(self.db.execute(
            query.order_by(ClearanceType.display_order, ClearanceType.display_name)
        ).scalars().all())

    def toggle_type(self, clearance_type_id: UUID) -> ActionResult:
        try:
            clearance_type = self.db.get(ClearanceType, clearance_type_id)
            if clearance_type is None:
                raise DependencyNotFound("Clearance type not found")
            with unit_of_work(self.db):
                clearance_type.is_active = not clearance_type.is_active
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)
        return ActionResult.ok("Clearance type updated", is_active=clearance_type.is_active)

    # Payment progress

    def payment_summary(
        self, student_id: UUID, academic_year_id: UUID, term_id: Optional[UUID] = None
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """(total, paid, percentage) over the student's non-cancelled invoices in scope"""
        query = select(
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(Invoice.amount_paid), 0),
        ).where(
            Invoice.student_id == student_id,
            Invoice.academic_year_id == academic_year_id,
            Invoice.status != "cancelled",
        )
        if term_id is not None:
            query = query.where(Invoice.term_id == term_id)

        total, paid = self.db.execute(query).one()
        total = Decimal(str(total)).quantize(Decimal("0.01"))
        paid = Decimal(str(paid)).quantize(Decimal("0.01"))
        return total, paid, payment_percentage(total, paid)

    # Requests

    def request_clearance(
        self,
        student_id: UUID,
        clearance_type_id: UUID,
        academic_year_id: UUID,
        term_id: Optional[UUID] = None,
        requested_by: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Open a clearance request with a snapshot of the student's payment progress.

        A request that already meets the threshold is approved straight away
        when CLEARANCE_AUTO_APPROVE is on. A second pending or approved request
        for the same type and scope is refused.
        """
        try:
            if self.db.get(Student, student_id) is None:
                raise DependencyNotFound("Student not found")
            clearance_type = self.db.get(ClearanceType, clearance_type_id)
            if clearance_type is None or not clearance_type.is_active:
                raise DependencyNotFound("Clearance type not found")
            if self.calendar.get_year(academic_year_id) is None:
                raise DependencyNotFound("Academic year not found")
            if term_id is not None:
                term = self.calendar.get_term(term_id)
                if term is None:
                    raise DependencyNotFound("Term not found")
                if term.academic_year_id != academic_year_id:
                    raise ValidationFailed("Term does not belong to the given academic year")

            scope_term = (
                ClearanceRequest.term_id.is_(None) if term_id is None else ClearanceRequest.term_id == term_id
            )
            active = self.db.execute(
                select(ClearanceRequest.id, ClearanceRequest.status).where(
                    ClearanceRequest.student_id == student_id,
                    ClearanceRequest.clearance_type_id == clearance_type_id,
                    ClearanceRequest.academic_year_id == academic_year_id,
                    scope_term,
                    ClearanceRequest.status.in_(ACTIVE_STATUSES),
                )
            ).first()
            if active:
                raise AlreadyExists(f"An active clearance request already exists ({active.status})")

            total, paid, percentage = self.payment_summary(student_id, academic_year_id, term_id)
            eligible = percentage >= clearance_type.minimum_payment_percentage
            auto_approve = eligible and settings.CLEARANCE_AUTO_APPROVE

            with unit_of_work(self.db):
                request = ClearanceRequest(
                    student_id=student_id,
                    clearance_type_id=clearance_type_id,
                    academic_year_id=academic_year_id,
                    term_id=term_id,
                    total_fees_amount=total,
                    amount_paid=paid,
                    payment_percentage=percentage,
                    status="approved" if auto_approve else "pending",
                    requested_by=requested_by,
                    approver_id=requested_by if auto_approve else None,
                    decided_at=utcnow() if auto_approve else None,
                )
                self.db.add(request)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        if auto_approve:
            message = f"{clearance_type.display_name} automatically approved"
        else:
            message = (
                f"{clearance_type.display_name} request submitted for approval. "
                f"Payment: {percentage}% (Required: {clearance_type.minimum_payment_percentage}%)"
            )
        logger.info(f"Clearance request {request.id} for student {student_id}: {request.status}")
        return ActionResult.ok(
            message,
            clearance_request_id=request.id,
            status=request.status,
            payment_percentage=percentage,
            eligible=eligible,
            auto_approved=auto_approve,
        )

    # Bulk clearance over a class or the whole school

    def preview_bulk(
        self,
        clearance_type_id: UUID,
        academic_year_id: UUID,
        term_id: Optional[UUID] = None,
        class_id: Optional[UUID] = None,
    ) -> ActionResult:
        """Split active students into those meeting the threshold and those not; writes nothing"""
        try:
            clearance_type = self._active_type(clearance_type_id)
            if self.calendar.get_year(academic_year_id) is None:
                raise DependencyNotFound("Academic year not found")
            students = self._bulk_population(class_id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        threshold = clearance_type.minimum_payment_percentage
        eligible, ineligible = [], []
        for student in students:
            total, paid, percentage = self.payment_summary(student.id, academic_year_id, term_id)
            row = {
                "id": student.id,
                "student_id": student.student_id,
                "class_id": student.class_id,
                "payment_percentage": percentage,
                "total_fees": total,
                "amount_paid": paid,
                "outstanding": total - paid,
            }
            (eligible if percentage >= threshold else ineligible).append(row)

        return ActionResult.ok(
            f"{len(eligible)} of {len(students)} student(s) meet the {threshold}% requirement",
            clearance_type=clearance_type.display_name,
            threshold=threshold,
            eligible=eligible,
            ineligible=ineligible,
        )

    def bulk_request(
        self,
        clearance_type_id: UUID,
        academic_year_id: UUID,
        term_id: Optional[UUID] = None,
        class_id: Optional[UUID] = None,
        requested_by: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Open a clearance request for every active student in scope.

        Each student goes through ``request_clearance``, so the active-request
        check and auto-approval behave exactly as for a single request.
        """
        try:
            clearance_type = self._active_type(clearance_type_id)
            if self.calendar.get_year(academic_year_id) is None:
                raise DependencyNotFound("Academic year not found")
            students = self._bulk_population(class_id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        results = {"approved": [], "pending": [], "existing": [], "failed": []}
        for student in students:
            result = self.request_clearance(
                student.id, clearance_type_id, academic_year_id, term_id, requested_by=requested_by
            )
            if result.success:
                results[result.data["status"]].append(student.student_id)
            elif result.error_code == ErrorCode.ALREADY_EXISTS:
                results["existing"].append(student.student_id)
            else:
                logger.error(f"Bulk clearance failed for {student.student_id}: {result.message}")
                results["failed"].append(student.student_id)

        counts = {key: len(value) for key, value in results.items()}
        logger.info(f"Bulk {clearance_type.name} clearance for year {academic_year_id}: {counts}")
        return ActionResult.ok(
            f"Bulk clearance complete: {counts['approved']} approved, {counts['pending']} pending review, "
            f"{counts['existing']} already requested, {counts['failed']} failed",
            total=len(students),
            results=results,
            **counts,
        )

    def _active_type(self, clearance_type_id: UUID) -> ClearanceType:
        clearance_type = self.db.get(ClearanceType, clearance_type_id)
        if clearance_type is None or not clearance_type.is_active:
            raise DependencyNotFound("Clearance type not found")
        return clearance_type

    def _bulk_population(self, class_id: Optional[UUID]) -> List[Student]:
        query = select(Student).where(Student.is_active.is_(True)).order_by(Student.student_id)
        if class_id is not None:
            query = query.where(Student.class_id == class_id)
        students = list(self.db.execute(query).scalars().all())
        if not students:
            raise DependencyNotFound("No students found matching criteria")
        return students

    def list_pending(
        self,
        academic_year_id: UUID,
        term_id: Optional[UUID] = None,
        clearance_type_id: Optional[UUID] = None,
        class_id: Optional[UUID] = None,
    ) -> List[Dict[str, Any]]:
        """
        Pending requests with the student's current payment percentage.

        ``eligible`` compares the live percentage (not the snapshot taken at
        request time) with the type's threshold.
        """
        query = (
            select(ClearanceRequest)
            .options(joinedload(ClearanceRequest.clearance_type), joinedload(ClearanceRequest.student))
            .where(
                ClearanceRequest.status == "pending",
                ClearanceRequest.academic_year_id == academic_year_id,
            )
            .order_by(ClearanceRequest.created_at)
        )
        if term_id is not None:
            query = query.where(ClearanceRequest.term_id == term_id)
        if clearance_type_id is not None:
            query = query.where(ClearanceRequest.clearance_type_id == clearance_type_id)
        if class_id is not None:
            query = query.join(Student, Student.id == ClearanceRequest.student_id).where(Student.class_id == class_id)

        pending = []
        for request in self.db.execute(query).unique().scalars().all():
            total, paid, percentage = self.payment_summary(
                request.student_id, request.academic_year_id, request.term_id
            )
            threshold = request.clearance_type.minimum_payment_percentage
            pending.append({
                "id": request.id,
                "student_id": request.student_id,
                "student_number": request.student.student_id,
                "clearance_type_id": request.clearance_type_id,
                "clearance_type": request.clearance_type.display_name,
                "academic_year_id": request.academic_year_id,
                "term_id": request.term_id,
                "total_fees_amount": total,
                "amount_paid": paid,
                "outstanding_balance": total - paid,
                "payment_percentage": percentage,
                "minimum_payment_percentage": threshold,
                "eligible": percentage >= threshold,
                "created_at": request.created_at,
            })
        return pending

    def decide(
        self,
        clearance_request_id: UUID,
        approve: bool,
        approver_id: Optional[UUID] = None,
        reason: Optional[str] = None,
    ) -> ActionResult:
        """
        Approve or reject a pending request.

        Rejection needs a reason. Approval below the threshold is allowed; the
        reason is then the only record of the override.
        """
        reason = (reason or "").strip() or None
        try:
            request = self.db.execute(
                select(ClearanceRequest)
                .options(joinedload(ClearanceRequest.clearance_type))
                .where(ClearanceRequest.id == clearance_request_id)
            ).scalar_one_or_none()
            if request is None:
                raise DependencyNotFound("Clearance request not found")
            if request.status != "pending":
                raise ValidationFailed(f"Clearance already {request.status}")
            if not approve and not reason:
                raise ValidationFailed("Rejection reason is required")

            # Same live figure the approver saw in list_pending
            _, _, percentage = self.payment_summary(request.student_id, request.academic_year_id, request.term_id)
            threshold = request.clearance_type.minimum_payment_percentage
            below_threshold = percentage < threshold
            if approve and below_threshold and not reason:
                logger.warning(
                    f"Clearance {request.id} approved below threshold "
                    f"({percentage}% < {threshold}%) without a reason"
                )

            with unit_of_work(self.db):
                request.status = "approved" if approve else "rejected"
                request.approver_id = approver_id
                request.reason = reason
                request.decided_at = utcnow()
        except ValidationFailed as e:
            logger.info(f"Clearance decision rejected: {e.message}")
            return ActionResult.from_error(e)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        display_name = request.clearance_type.display_name
        logger.info(f"Clearance {request.id} {request.status} by {approver_id}")
        if approve:
            message = f"{display_name} approved" + (" (override)" if below_threshold else "")
        else:
            message = f"{display_name} rejected"
        return ActionResult.ok(
            message, status=request.status, override=approve and below_threshold, payment_percentage=percentage
        )

    def get_clearance_status(
        self, student_id: UUID, academic_year_id: UUID, term_id: Optional[UUID] = None
    ) -> List[ClearanceRequest]:
        """All requests of a student in the year (optionally one term), newest first"""
        query = (
            select(ClearanceRequest)
            .options(joinedload(ClearanceRequest.clearance_type))
            .where(
                ClearanceRequest.student_id == student_id,
                ClearanceRequest.academic_year_id == academic_year_id,
            )
            .order_by(ClearanceRequest.created_at.desc())
        )
        if term_id is not None:
            query = query.where(ClearanceRequest.term_id == term_id)
        return list(self.db.execute(query).unique().scalars().all())


__all__ = ["ClearanceWorkflow", "payment_percentage"]
