"""Tests for academic years, terms and the single-active invariant."""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from school_admin.models import AcademicYear, Enrollment, Term
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.results import ErrorCode


@pytest.fixture
def registry(db):
    return AcademicCalendarRegistry(db)


def active_year_ids(db):
    return db.execute(select(AcademicYear.id).where(AcademicYear.is_active.is_(True))).scalars().all()


class TestAcademicYears:
    """Creating, activating and deleting years."""

    def test_no_active_year_is_none(self, registry):
        assert registry.get_active_year() is None

    def test_create_year_active(self, registry):
        result = registry.create_year("2025", date(2025, 1, 1), date(2025, 12, 31), is_active=True)

        assert result.success
        year = registry.get_active_year()
        assert year.id == result.data["academic_year_id"]
        assert year.label == "2025"

    def test_create_year_rejects_bad_dates(self, registry):
        result = registry.create_year("2025", date(2025, 12, 31), date(2025, 1, 1))

        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_create_year_rejects_duplicate_name(self, registry, factory):
        factory.year("2025")
        result = registry.create_year("2025", date(2025, 1, 1), date(2025, 12, 31))

        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_activation_deactivates_previous_year(self, db, registry, factory):
        first = factory.year("2025", date(2025, 1, 1), date(2025, 12, 31), active=True)
        second = factory.year("2026", date(2026, 1, 1), date(2026, 12, 31), active=False)

        result = registry.activate(second)

        assert result.success
        assert active_year_ids(db) == [second]
        assert db.get(AcademicYear, first).is_active is False

    def test_create_active_year_takes_over_flag(self, db, factory):
        factory.year("2025", date(2025, 1, 1), date(2025, 12, 31), active=True)
        newest = factory.year("2026", date(2026, 1, 1), date(2026, 12, 31), active=True)

        assert active_year_ids(db) == [newest]

    def test_activate_twice_is_stable(self, db, registry, factory):
        year_id = factory.year(active=False)
        registry.activate(year_id)
        registry.activate(year_id)

        assert active_year_ids(db) == [year_id]

    def test_activate_unknown_year(self, registry):
        result = registry.activate(uuid4())

        assert not result.success
        assert result.error_code == ErrorCode.NOT_FOUND

    def test_store_rejects_two_active_years(self, db, factory):
        factory.year("2025", date(2025, 1, 1), date(2025, 12, 31), active=False)
        factory.year("2026", date(2026, 1, 1), date(2026, 12, 31), active=False)

        with pytest.raises(IntegrityError):
            db.execute(update(AcademicYear).values(is_active=True))
            db.commit()
        db.rollback()

    def test_deactivate(self, registry, factory):
        year_id = factory.year(active=True)

        assert registry.deactivate(year_id).success
        assert registry.get_active_year() is None

    def test_list_years_newest_first(self, registry, factory):
        factory.year("2024", date(2024, 1, 1), date(2024, 12, 31), active=False)
        factory.year("2025", date(2025, 1, 1), date(2025, 12, 31), active=False)

        assert [y.name for y in registry.list_years()] == ["2025", "2024"]

    def test_delete_unused_year(self, registry, factory):
        year_id = factory.year(active=False)

        assert registry.delete_year(year_id).success
        assert registry.get_year(year_id) is None

    def test_delete_year_with_enrollments_refused(self, db, registry, factory, form1):
        year_id = factory.year()
        factory.student(form1, "S001", enroll_year_id=year_id)

        result = registry.delete_year(year_id)

        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert db.execute(select(Enrollment)).scalars().first() is not None


class TestTerms:
    """Terms within a year."""

    def test_terms_numbered_in_order(self, registry, factory):
        year_id = factory.year()
        first = registry.create_term(year_id, "Term 1", date(2025, 1, 6), date(2025, 4, 4))
        second = registry.create_term(year_id, "Term 2", date(2025, 5, 5), date(2025, 8, 1))

        assert first.data["ordinal"] == 1
        assert second.data["ordinal"] == 2
        assert [t.ordinal for t in registry.list_terms(year_id)] == [1, 2]

    def test_term_outside_year_rejected(self, registry, factory):
        year_id = factory.year()
        result = registry.create_term(year_id, "Term 1", date(2024, 12, 1), date(2025, 2, 1))

        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_duplicate_ordinal_rejected(self, registry, factory):
        year_id = factory.year()
        factory.term(year_id, 1, date(2025, 1, 6), date(2025, 4, 4))
        result = registry.create_term(year_id, "Again", date(2025, 5, 5), date(2025, 8, 1), ordinal=1)

        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_term_for_unknown_year(self, registry):
        result = registry.create_term(uuid4(), "Term 1", date(2025, 1, 6), date(2025, 4, 4))

        assert result.error_code == ErrorCode.NOT_FOUND

    def test_activate_term_switches_within_year(self, db, registry, calendar):
        result = registry.activate_term(calendar["term2_id"])

        assert result.success
        active = db.execute(
            select(Term.id).where(Term.academic_year_id == calendar["year_id"], Term.is_active.is_(True))
        ).scalars().all()
        assert active == [calendar["term2_id"]]
        assert registry.get_active_term(calendar["year_id"]).ordinal == 2

    def test_active_terms_are_per_year(self, registry, calendar, factory):
        other_year = factory.year("2026", date(2026, 1, 1), date(2026, 12, 31), active=False)
        other_term = factory.term(other_year, 1, date(2026, 1, 5), date(2026, 4, 3), active=True)

        assert registry.get_active_term(calendar["year_id"]).id == calendar["term_id"]
        assert registry.get_active_term(other_year).id == other_term

    def test_deactivate_term(self, registry, calendar):
        assert registry.deactivate_term(calendar["term_id"]).success
        assert registry.get_active_term(calendar["year_id"]) is None
