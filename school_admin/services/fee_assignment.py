# school_admin/services/fee_assignment.py - Fee structures and per-student fee assignment
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from school_admin.core.db import unit_of_work
from school_admin.models.academic import Term
from school_admin.models.enrollment import Enrollment
from school_admin.models.fee import STUDENT_TYPES, FeeItem, FeeStructure, StudentFeeAssignment
from school_admin.models.student import Student
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.results import (
    ActionResult,
    DependencyNotFound,
    PipelineError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")


def to_amount(value: Any) -> Decimal:
    """Parse a currency amount exactly, rounded to cents"""
    try:
        amount = Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(f"Invalid amount: {value!r}")
    if amount < 0:
        raise ValidationFailed("Amounts cannot be negative")
    return amount


class FeeAssignmentEngine:
    """
    Fee structures and the obligations derived from them.

    Assignment is check-then-insert: a student already assigned for a
    (year, term) is skipped and never overwritten, so a manually adjusted
    amount survives a re-run. The population is every student with an active
    enrollment in the year.
    """

    def __init__(self, db: Session):
        self.db = db
        self.calendar = AcademicCalendarRegistry(db)

    # Fee structures

    def create_structure(
        self,
        name: str,
        academic_year_id: UUID,
        term_id: UUID,
        student_type: str,
        items: Iterable[Dict[str, Any]],
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        created_by: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Create a fee structure with its ordered items.

        Each item is a dict with ``name``, ``amount`` and optionally
        ``description`` and ``is_mandatory``. Item order is kept as given.
        """
        name = (name or "").strip()
        try:
            if not name:
                raise ValidationFailed("Fee structure name is required")
            if student_type not in STUDENT_TYPES:
                raise ValidationFailed(f"student_type must be one of: {', '.join(STUDENT_TYPES)}")
            self._require_term(academic_year_id, term_id)

            structure = FeeStructure(
                name=name,
                academic_year_id=academic_year_id,
                term_id=term_id,
                student_type=student_type,
                due_date=due_date,
                notes=notes,
                created_by=created_by,
                is_active=True,
            )
            seen_names = set()
            for position, item in enumerate(items or []):
                item_name = (item.get("name") or "").strip()
                if not item_name:
                    raise ValidationFailed(f"Fee item {position + 1} has no name")
                if item_name.lower() in seen_names:
                    raise ValidationFailed(f"Duplicate fee item '{item_name}'")
                seen_names.add(item_name.lower())
                structure.items.append(FeeItem(
                    name=item_name,
                    description=item.get("description"),
                    amount=to_amount(item.get("amount")),
                    is_mandatory=item.get("is_mandatory", True),
                    display_order=position,
                ))
            if not structure.items:
                raise ValidationFailed("A fee structure needs at least one item")

            with unit_of_work(self.db):
                self.db.add(structure)
        except ValidationFailed as e:
            logger.info(f"Fee structure rejected: {e.message}")
            return ActionResult.from_error(e)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        total = structure.total_amount
        logger.info(f"Fee structure created: {name} ({student_type}) total {total}")
        return ActionResult.ok(
            "Fee structure created",
            fee_structure_id=structure.id,
            total_amount=total,
        )

    def get_structure(self, fee_structure_id: UUID) -> Optional[FeeStructure]:
        return self.db.execute(
            select(FeeStructure)
            .options(selectinload(FeeStructure.items))
            .where(FeeStructure.id == fee_structure_id)
        ).scalar_one_or_none()

    def list_structures(
        self,
        academic_year_id: Optional[UUID] = None,
        term_id: Optional[UUID] = None,
        student_type: Optional[str] = None,
        active_only: bool = False,
    ) -> List[FeeStructure]:
        query = select(FeeStructure).options(selectinload(FeeStructure.items))
        if academic_year_id:
            query = query.where(FeeStructure.academic_year_id == academic_year_id)
        if term_id:
            query = query.where(FeeStructure.term_id == term_id)
        if student_type:
            query = query.where(FeeStructure.student_type == student_type)
        if active_only:
            query = query.where(FeeStructure.is_active.is_(True))
        query = query.order_by(FeeStructure.created_at.desc())
        return list(self.db.execute(query).scalars().all())

    def toggle_structure(self, fee_structure_id: UUID) -> ActionResult:
        try:
            structure = self.db.get(FeeStructure, fee_structure_id)
            if structure is None:
                raise DependencyNotFound("Fee structure not found")
            with unit_of_work(self.db):
                structure.is_active = not structure.is_active
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        state = "activated" if structure.is_active else "deactivated"
        logger.info(f"Fee structure {structure.name} {state}")
        return ActionResult.ok(f"Fee structure {state}", is_active=structure.is_active)

    def find_structure(self, academic_year_id: UUID, term_id: UUID, student_type: str) -> Optional[FeeStructure]:
        """Latest active structure for (year, term, type); more than one is tolerated"""
        return self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.academic_year_id == academic_year_id,
                FeeStructure.term_id == term_id,
                FeeStructure.student_type == student_type,
                FeeStructure.is_active.is_(True),
            )
            .order_by(FeeStructure.created_at.desc(), FeeStructure.id)
            .limit(1)
        ).scalar_one_or_none()

    # Bulk assignment

    def preview(self, academic_year_id: UUID, term_id: UUID) -> ActionResult:
        """
        Read-only summary of what ``commit`` would do.

        ``already_assigned`` counts students of the population that already
        hold an assignment for the term; they are left out of the per-type
        counts because commit will skip them.
        """
        try:
            self._require_term(academic_year_id, term_id)
            structures = self._structures_by_type(academic_year_id, term_id)
            population = self._population(academic_year_id)
            assigned = self._assigned_students(academic_year_id, term_id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        breakdown: Dict[str, Dict[str, Any]] = {}
        total_students = 0
        total_revenue = ZERO
        for student_type in STUDENT_TYPES:
            structure = structures.get(student_type)
            count = sum(1 for sid, stype in population if stype == student_type and sid not in assigned)
            per_student = structure.total_amount if structure else ZERO
            subtotal = per_student * count
            breakdown[student_type] = {
                "count": count,
                "amount_per_student": per_student,
                "total": subtotal,
                "structure_name": structure.name if structure else None,
            }
            total_students += count
            total_revenue += subtotal

        already_assigned = sum(1 for sid, _ in population if sid in assigned)
        return ActionResult.ok(
            f"{total_students} student(s) would be assigned fees",
            **breakdown,
            total_students=total_students,
            total_expected_revenue=total_revenue,
            already_assigned=already_assigned,
        )

    def commit(self, academic_year_id: UUID, term_id: UUID, assigned_by: Optional[UUID] = None) -> ActionResult:
        """
        Assign fees to every student of the population not yet assigned.

        The population and existing assignments are re-read here, so a stale
        preview cannot cause a second assignment. A row that loses a race with
        a concurrent commit hits the unique constraint and counts as skipped.
        """
        try:
            self._require_term(academic_year_id, term_id)
            structures = self._structures_by_type(academic_year_id, term_id)
            if not structures:
                raise DependencyNotFound("No active fee structures found for this term")
            population = self._population(academic_year_id)
            assigned = self._assigned_students(academic_year_id, term_id)
        except (PipelineError, SQLAlchemyError) as e:
            if isinstance(e, DependencyNotFound):
                logger.warning(f"Fee commit for term {term_id}: {e.message}")
            return ActionResult.from_error(e)

        skipped = 0
        no_structure = 0
        pending: List[StudentFeeAssignment] = []
        for student_id, student_type in population:
            if student_id in assigned:
                skipped += 1
                continue
            structure = structures.get(student_type)
            if structure is None:
                no_structure += 1
                continue
            pending.append(self._new_assignment(student_id, structure, assigned_by))

        try:
            created, raced = self._insert_assignments(pending)
        except SQLAlchemyError as e:
            return ActionResult.from_error(e)

        skipped += raced
        type_of = dict(population)
        counts = {
            student_type: sum(1 for a in created if type_of[a.student_id] == student_type)
            for student_type in STUDENT_TYPES
        }
        total_amount = sum((a.total_amount for a in created), ZERO)

        logger.info(
            f"Fee assignment committed for term {term_id}: {len(created)} assigned, "
            f"{skipped} skipped, {no_structure} without structure"
        )
        message = f"Assigned fees to {len(created)} student(s)"
        if skipped:
            message += f"; skipped {skipped} already assigned"
        return ActionResult.ok(
            message,
            assigned=len(created),
            skipped=skipped,
            no_structure=no_structure,
            internal_count=counts["internal"],
            external_count=counts["external"],
            total_amount=total_amount,
        )

    # Single student (used at registration)

    def assign_student_fees(
        self,
        student_id: UUID,
        academic_year_id: UUID,
        term_id: UUID,
        assigned_by: Optional[UUID] = None,
    ) -> ActionResult:
        """
        Assign the matching fee structure to one student.

        A missing structure or an existing assignment is a successful no-op
        with ``fee_assigned=False`` and the reason in the message.
        """
        try:
            student = self.db.get(Student, student_id)
            if student is None:
                raise DependencyNotFound("Student not found")

            existing = self.db.execute(
                select(StudentFeeAssignment.id).where(
                    StudentFeeAssignment.student_id == student_id,
                    StudentFeeAssignment.academic_year_id == academic_year_id,
                    StudentFeeAssignment.term_id == term_id,
                )
            ).scalar_one_or_none()
            if existing:
                return ActionResult.ok(
                    "Student already has fees assigned for this term", fee_assigned=False
                )

            structure = self.find_structure(academic_year_id, term_id, student.student_type)
            if structure is None:
                logger.warning(
                    f"No active {student.student_type} fee structure for term {term_id}; "
                    f"fee assignment skipped for {student.student_id}"
                )
                return ActionResult.ok(
                    f"No active fee structure found for {student.student_type} students. Fee assignment skipped.",
                    fee_assigned=False,
                )

            assignment = self._new_assignment(student_id, structure, assigned_by)
            with unit_of_work(self.db):
                self.db.add(assignment)
        except IntegrityError:
            return ActionResult.ok("Student already has fees assigned for this term", fee_assigned=False)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Assigned {assignment.total_amount} in fees to {student.student_id}")
        return ActionResult.ok(
            f"Assigned {assignment.total_amount} in fees",
            fee_assigned=True,
            amount=assignment.total_amount,
            student_fee_assignment_id=assignment.id,
        )

    def list_student_assignments(self, student_id: UUID) -> List[StudentFeeAssignment]:
        return list(self.db.execute(
            select(StudentFeeAssignment)
            .where(StudentFeeAssignment.student_id == student_id)
            .order_by(StudentFeeAssignment.assigned_at.desc())
        ).scalars().all())

    # Helpers

    def _require_term(self, academic_year_id: UUID, term_id: UUID) -> Term:
        if self.calendar.get_year(academic_year_id) is None:
            raise DependencyNotFound("Academic year not found")
        term = self.calendar.get_term(term_id)
        if term is None:
            raise DependencyNotFound("Term not found")
        if term.academic_year_id != academic_year_id:
            raise ValidationFailed("Term does not belong to the given academic year")
        return term

    def _structures_by_type(self, academic_year_id: UUID, term_id: UUID) -> Dict[str, FeeStructure]:
        structures = {}
        for student_type in STUDENT_TYPES:
            structure = self.find_structure(academic_year_id, term_id, student_type)
            if structure is not None:
                structures[student_type] = structure
        return structures

    def _population(self, academic_year_id: UUID) -> List[Tuple[UUID, str]]:
        rows = self.db.execute(
            select(Student.id, Student.student_type)
            .join(Enrollment, Enrollment.student_id == Student.id)
            .where(
                Enrollment.academic_year_id == academic_year_id,
                Enrollment.status == "active",
                Student.is_active.is_(True),
            )
            .order_by(Student.student_id)
        ).all()
        return [(row[0], row[1]) for row in rows]

    def _assigned_students(self, academic_year_id: UUID, term_id: UUID) -> Set[UUID]:
        return set(self.db.execute(
            select(StudentFeeAssignment.student_id).where(
                StudentFeeAssignment.academic_year_id == academic_year_id,
                StudentFeeAssignment.term_id == term_id,
            )
        ).scalars().all())

    def _new_assignment(
        self, student_id: UUID, structure: FeeStructure, assigned_by: Optional[UUID]
    ) -> StudentFeeAssignment:
        return StudentFeeAssignment(
            student_id=student_id,
            fee_structure_id=structure.id,
            academic_year_id=structure.academic_year_id,
            term_id=structure.term_id,
            total_amount=structure.total_amount,
            due_date=structure.due_date,
            assigned_by=assigned_by,
        )

    def _insert_assignments(
        self, pending: List[StudentFeeAssignment]
    ) -> Tuple[List[StudentFeeAssignment], int]:
        """Insert as one batch; if the batch collides, retry row by row"""
        if not pending:
            return [], 0
        try:
            with unit_of_work(self.db):
                self.db.add_all(pending)
            return pending, 0
        except IntegrityError:
            logger.warning("Fee assignment batch collided with existing rows; retrying per student")

        created, raced = [], 0
        for assignment in pending:
            row = StudentFeeAssignment(
                student_id=assignment.student_id,
                fee_structure_id=assignment.fee_structure_id,
                academic_year_id=assignment.academic_year_id,
                term_id=assignment.term_id,
                total_amount=assignment.total_amount,
                due_date=assignment.due_date,
                assigned_by=assignment.assigned_by,
            )
            try:
                with unit_of_work(self.db):
                    self.db.add(row)
                created.append(row)
            except IntegrityError:
                raced += 1
        return created, raced


__all__ = ["FeeAssignmentEngine", "to_amount"]
