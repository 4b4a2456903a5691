# school_admin/services/academic_calendar.py - Academic years, terms and the single-active invariant
from datetime import date
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from school_admin.core.db import unit_of_work
from school_admin.models.academic import AcademicYear, Term
from school_admin.models.enrollment import Enrollment
from school_admin.services.results import (
    ActionResult,
    DependencyNotFound,
    PipelineError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)


class AcademicCalendarRegistry:
    """
    Owns academic years and terms.

    At most one year is active, and at most one term per year. Activation
    deactivates the previous holder and activates the target in a single
    transaction; partial unique indexes back this up in the store.
    """

    def __init__(self, db: Session):
        self.db = db

    # Lookups. "No active year" is a normal outcome and comes back as None.

    def get_active_year(self) -> Optional[AcademicYear]:
        return self.db.execute(
            select(AcademicYear).where(AcademicYear.is_active.is_(True))
        ).scalar_one_or_none()

    def get_active_term(self, academic_year_id: UUID) -> Optional[Term]:
        return self.db.execute(
            select(Term).where(
                Term.academic_year_id == academic_year_id,
                Term.is_active.is_(True),
            )
        ).scalar_one_or_none()

    def get_year(self, academic_year_id: UUID) -> Optional[AcademicYear]:
        return self.db.get(AcademicYear, academic_year_id)

    def get_term(self, term_id: UUID) -> Optional[Term]:
        return self.db.get(Term, term_id)

    def list_years(self) -> List[AcademicYear]:
        return list(self.db.execute(
            select(AcademicYear).order_by(AcademicYear.start_date.desc())
        ).scalars().all())

    def list_terms(self, academic_year_id: UUID) -> List[Term]:
        return list(self.db.execute(
            select(Term).where(Term.academic_year_id == academic_year_id).order_by(Term.ordinal)
        ).scalars().all())

    # Mutations

    def create_year(self, name: str, start_date: date, end_date: date, is_active: bool = False) -> ActionResult:
        name = (name or "").strip()
        try:
            if not name:
                raise ValidationFailed("Academic year name is required")
            if end_date <= start_date:
                raise ValidationFailed("End date must be after start date")
            existing = self.db.execute(
                select(AcademicYear.id).where(AcademicYear.name == name)
            ).scalar_one_or_none()
            if existing:
                raise ValidationFailed(f"Academic year '{name}' already exists")

            with unit_of_work(self.db):
                year = AcademicYear(name=name, start_date=start_date, end_date=end_date, is_active=False)
                self.db.add(year)
                self.db.flush()
                if is_active:
                    self._switch_active_year(year.id)
        except ValidationFailed as e:
            logger.info(f"Academic year rejected: {e.message}")
            return ActionResult.from_error(e)
        except SQLAlchemyError as e:
            return ActionResult.from_error(e)

        logger.info(f"Academic year created: {name} (active={is_active})")
        return ActionResult.ok("Academic year created", academic_year_id=year.id)

    def activate(self, academic_year_id: UUID) -> ActionResult:
        """Make the year active and deactivate whichever year held the flag"""
        try:
            if self.get_year(academic_year_id) is None:
                raise DependencyNotFound("Academic year not found")
            with unit_of_work(self.db):
                self._switch_active_year(academic_year_id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Academic year activated: {academic_year_id}")
        return ActionResult.ok("Academic year activated", academic_year_id=academic_year_id)

    def deactivate(self, academic_year_id: UUID) -> ActionResult:
        try:
            year = self.get_year(academic_year_id)
            if year is None:
                raise DependencyNotFound("Academic year not found")
            with unit_of_work(self.db):
                year.is_active = False
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Academic year deactivated: {academic_year_id}")
        return ActionResult.ok("Academic year deactivated", academic_year_id=academic_year_id)

    def delete_year(self, academic_year_id: UUID) -> ActionResult:
        """Delete a year that no enrollment references yet"""
        try:
            year = self.get_year(academic_year_id)
            if year is None:
                raise DependencyNotFound("Academic year not found")
            in_use = self.db.execute(
                select(func.count(Enrollment.id)).where(Enrollment.academic_year_id == academic_year_id)
            ).scalar_one()
            if in_use:
                raise ValidationFailed(
                    f"Academic year '{year.name}' has {in_use} enrollment(s) and cannot be deleted"
                )
            with unit_of_work(self.db):
                self.db.delete(year)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Academic year deleted: {academic_year_id}")
        return ActionResult.ok("Academic year deleted")

    def create_term(
        self,
        academic_year_id: UUID,
        name: str,
        start_date: date,
        end_date: date,
        ordinal: Optional[int] = None,
        is_active: bool = False,
    ) -> ActionResult:
        """
        Add a term to a year.

        When ``ordinal`` is omitted the term is numbered after the last one.
        Term dates must fall inside the year.
        """
        name = (name or "").strip()
        try:
            year = self.get_year(academic_year_id)
            if year is None:
                raise DependencyNotFound("Academic year not found")
            if not name:
                raise ValidationFailed("Term name is required")
            if end_date <= start_date:
                raise ValidationFailed("End date must be after start date")
            if start_date < year.start_date or end_date > year.end_date:
                raise ValidationFailed(f"Term dates must fall within academic year '{year.name}'")

            if ordinal is None:
                last = self.db.execute(
                    select(func.max(Term.ordinal)).where(Term.academic_year_id == academic_year_id)
                ).scalar_one()
                ordinal = (last or 0) + 1
            elif ordinal < 1:
                raise ValidationFailed("Term ordinal must be at least 1")

            taken = self.db.execute(
                select(Term.id).where(Term.academic_year_id == academic_year_id, Term.ordinal == ordinal)
            ).scalar_one_or_none()
            if taken:
                raise ValidationFailed(f"Term {ordinal} already exists in '{year.name}'")

            with unit_of_work(self.db):
                term = Term(
                    academic_year_id=academic_year_id,
                    name=name,
                    ordinal=ordinal,
                    start_date=start_date,
                    end_date=end_date,
                    is_active=False,
                )
                self.db.add(term)
                self.db.flush()
                if is_active:
                    self._switch_active_term(academic_year_id, term.id)
        except ValidationFailed as e:
            logger.info(f"Term rejected: {e.message}")
            return ActionResult.from_error(e)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Term created: {name} ({year.name}, T{ordinal})")
        return ActionResult.ok("Term created", term_id=term.id, ordinal=ordinal)

    def activate_term(self, term_id: UUID) -> ActionResult:
        """Make the term active within its year, deactivating its sibling"""
        try:
            term = self.get_term(term_id)
            if term is None:
                raise DependencyNotFound("Term not found")
            with unit_of_work(self.db):
                self._switch_active_term(term.academic_year_id, term.id)
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        logger.info(f"Term activated: {term_id}")
        return ActionResult.ok("Term activated", term_id=term_id)

    def deactivate_term(self, term_id: UUID) -> ActionResult:
        try:
            term = self.get_term(term_id)
            if term is None:
                raise DependencyNotFound("Term not found")
            with unit_of_work(self.db):
                term.is_active = False
        except (PipelineError, SQLAlchemyError) as e:
            return ActionResult.from_error(e)

        return ActionResult.ok("Term deactivated", term_id=term_id)

    # Deactivate first: the partial unique index rejects two active rows even for one statement.

    def _switch_active_year(self, academic_year_id: UUID) -> None:
        self.db.execute(
            update(AcademicYear)
            .where(AcademicYear.is_active.is_(True), AcademicYear.id != academic_year_id)
            .values(is_active=False)
        )
        self.db.execute(
            update(AcademicYear).where(AcademicYear.id == academic_year_id).values(is_active=True)
        )

    def _switch_active_term(self, academic_year_id: UUID, term_id: UUID) -> None:
        self.db.execute(
            update(Term)
            .where(
                Term.academic_year_id == academic_year_id,
                Term.is_active.is_(True),
                Term.id != term_id,
            )
            .values(is_active=False)
        )
        self.db.execute(update(Term).where(Term.id == term_id).values(is_active=True))


__all__ = ["AcademicCalendarRegistry"]
