"""Tests for fee structures and bulk fee assignment."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from school_admin.models import Enrollment, StudentFeeAssignment
from school_admin.services.fee_assignment import FeeAssignmentEngine, to_amount
from school_admin.services.results import ErrorCode, ValidationFailed


@pytest.fixture
def fees(db):
    return FeeAssignmentEngine(db)


def assignment_count(db, term_id):
    return db.execute(
        select(func.count(StudentFeeAssignment.id)).where(StudentFeeAssignment.term_id == term_id)
    ).scalar_one()


@pytest.fixture
def cohort(factory, calendar, form1):
    """Ten enrolled students: seven internal, three external."""
    students = []
    for i in range(10):
        student_type = "external" if i >= 7 else "internal"
        students.append(factory.student(form1, f"S{i:03d}", student_type, enroll_year_id=calendar["year_id"]))
    return students


class TestAmounts:

    def test_to_amount_is_exact(self):
        assert to_amount("1500.506") == Decimal("1500.51")
        assert to_amount(0.1) + to_amount(0.2) == Decimal("0.30")

    @pytest.mark.parametrize("value", ["abc", None, "-1"])
    def test_to_amount_rejects(self, value):
        with pytest.raises(ValidationFailed):
            to_amount(value)


class TestFeeStructures:
    """Creating and finding structures."""

    def test_total_uses_decimal_arithmetic(self, fees, calendar):
        result = fees.create_structure(
            "Internal Term 1", calendar["year_id"], calendar["term_id"], "internal",
            [{"name": "Tuition", "amount": "0.10"}, {"name": "Library", "amount": "0.20"}],
        )

        assert result.success
        assert result.data["total_amount"] == Decimal("0.30")
        structure = fees.get_structure(result.data["fee_structure_id"])
        assert [item.name for item in structure.items] == ["Tuition", "Library"]

    def test_structure_needs_items(self, fees, calendar):
        result = fees.create_structure("Empty", calendar["year_id"], calendar["term_id"], "internal", [])

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_duplicate_item_names_rejected(self, fees, calendar):
        result = fees.create_structure(
            "Dup", calendar["year_id"], calendar["term_id"], "internal",
            [{"name": "Tuition", "amount": 10}, {"name": "tuition", "amount": 5}],
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_term_must_belong_to_year(self, fees, calendar, factory):
        from datetime import date

        other_year = factory.year("2026", date(2026, 1, 1), date(2026, 12, 31), active=False)
        result = fees.create_structure(
            "Wrong", other_year, calendar["term_id"], "internal", [{"name": "Tuition", "amount": 10}]
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_latest_active_structure_wins(self, fees, calendar, factory):
        older = factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        newer = factory.fee_structure(
            calendar["year_id"], calendar["term_id"], "internal", items=[{"name": "Tuition", "amount": 100}]
        )

        assert fees.find_structure(calendar["year_id"], calendar["term_id"], "internal").id == newer

        fees.toggle_structure(newer)
        assert fees.find_structure(calendar["year_id"], calendar["term_id"], "internal").id == older

    def test_list_filters(self, fees, calendar, factory):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "external")

        assert len(fees.list_structures(calendar["year_id"], calendar["term_id"])) == 2
        assert [s.student_type for s in fees.list_structures(student_type="external")] == ["external"]


class TestBulkAssignment:
    """Preview and commit over the enrolled population."""

    def test_preview_counts_already_assigned(self, db, fees, calendar, factory, cohort):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        factory.fee_structure(
            calendar["year_id"], calendar["term_id"], "external", items=[{"name": "Tuition", "amount": "20000"}]
        )
        for student in cohort[:3]:
            assert fees.assign_student_fees(student.id, calendar["year_id"], calendar["term_id"]).data["fee_assigned"]

        preview = fees.preview(calendar["year_id"], calendar["term_id"])

        assert preview.data["already_assigned"] == 3
        assert preview.data["total_students"] == 7
        assert preview.data["internal"]["count"] == 4
        assert preview.data["external"]["count"] == 3
        assert preview.data["total_expected_revenue"] == Decimal("31500.50") * 4 + Decimal("20000.00") * 3
        assert assignment_count(db, calendar["term_id"]) == 3

        result = fees.commit(calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["assigned"] == 7
        assert result.data["skipped"] == 3
        assert result.data["internal_count"] == 4
        assert result.data["external_count"] == 3
        assert assignment_count(db, calendar["term_id"]) == 10

    def test_commit_after_stale_preview_adds_nothing(self, db, fees, calendar, factory, cohort):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "external")
        stale = fees.preview(calendar["year_id"], calendar["term_id"])
        assert stale.data["total_students"] == 10

        fees.commit(calendar["year_id"], calendar["term_id"])
        again = fees.commit(calendar["year_id"], calendar["term_id"])

        assert again.data["assigned"] == 0
        assert again.data["skipped"] == 10
        assert assignment_count(db, calendar["term_id"]) == 10

    def test_manually_adjusted_amount_survives(self, db, fees, calendar, factory, cohort):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "external")
        fees.commit(calendar["year_id"], calendar["term_id"])
        adjusted = db.execute(
            select(StudentFeeAssignment).where(StudentFeeAssignment.student_id == cohort[0].id)
        ).scalar_one()
        adjusted.total_amount = Decimal("1000.00")
        db.commit()

        fees.commit(calendar["year_id"], calendar["term_id"])

        db.expire_all()
        assert db.get(StudentFeeAssignment, adjusted.id).total_amount == Decimal("1000.00")

    def test_stale_assignment_read_falls_back_per_student(self, db, fees, calendar, factory, form1, monkeypatch):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        students = [factory.student(form1, f"R{i:03d}", enroll_year_id=calendar["year_id"]) for i in range(4)]
        fees.assign_student_fees(students[0].id, calendar["year_id"], calendar["term_id"])
        # Another commit assigned students[0] after this one read the existing rows
        monkeypatch.setattr(fees, "_assigned_students", lambda academic_year_id, term_id: set())

        result = fees.commit(calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["assigned"] == 3
        assert result.data["skipped"] == 1
        assert result.data["total_amount"] == Decimal("31500.50") * 3
        assert assignment_count(db, calendar["term_id"]) == 4

    def test_students_without_structure_are_counted(self, fees, calendar, factory, cohort):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")

        result = fees.commit(calendar["year_id"], calendar["term_id"])

        assert result.data["assigned"] == 7
        assert result.data["no_structure"] == 3
        assert result.data["total_amount"] == Decimal("31500.50") * 7

    def test_population_is_active_enrollments_only(self, db, fees, calendar, factory, form1, cohort):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "external")
        factory.student(form1, "X001")  # never enrolled
        factory.student(form1, "X002", enroll_year_id=calendar["year_id"], is_active=False)
        dropped = db.execute(select(Enrollment).where(Enrollment.student_id == cohort[0].id)).scalar_one()
        dropped.status = "dropped"
        db.commit()

        preview = fees.preview(calendar["year_id"], calendar["term_id"])

        assert preview.data["total_students"] == 9

    def test_commit_without_structures(self, fees, calendar, cohort):
        result = fees.commit(calendar["year_id"], calendar["term_id"])

        assert not result.success
        assert result.error_code == ErrorCode.NOT_FOUND

    def test_preview_without_structures_is_zero_revenue(self, fees, calendar, cohort):
        preview = fees.preview(calendar["year_id"], calendar["term_id"])

        assert preview.success
        assert preview.data["total_expected_revenue"] == Decimal("0.00")
        assert preview.data["internal"]["structure_name"] is None


class TestSingleAssignment:

    def test_assign_twice_is_a_no_op(self, db, fees, calendar, factory, form1):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        student = factory.student(form1, "S500")

        first = fees.assign_student_fees(student.id, calendar["year_id"], calendar["term_id"])
        second = fees.assign_student_fees(student.id, calendar["year_id"], calendar["term_id"])

        assert first.data["fee_assigned"] is True
        assert first.data["amount"] == Decimal("31500.50")
        assert second.success and second.data["fee_assigned"] is False
        assert len(fees.list_student_assignments(student.id)) == 1

    def test_missing_structure_is_a_successful_skip(self, fees, calendar, factory, form1):
        student = factory.student(form1, "S501", student_type="external")

        result = fees.assign_student_fees(student.id, calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["fee_assigned"] is False
        assert "external" in result.message
