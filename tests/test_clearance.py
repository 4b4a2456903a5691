"""Tests for clearance types, requests and the approval workflow."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from school_admin.core.config import settings
from school_admin.models import Invoice
from school_admin.services.clearance import ClearanceWorkflow, payment_percentage
from school_admin.services.fee_assignment import FeeAssignmentEngine
from school_admin.services.invoice_generator import InvoiceGenerator
from school_admin.services.results import ErrorCode


@pytest.fixture
def workflow(db):
    return ClearanceWorkflow(db)


@pytest.fixture
def exam_type(workflow):
    result = workflow.create_type("Exam", "Exam Clearance", 60, display_order=1)
    assert result.success
    return result.data["clearance_type_id"]


@pytest.fixture
def billed_student(db, factory, calendar, form1):
    """One student with a single 10,000.00 invoice for term 1."""
    factory.fee_structure(
        calendar["year_id"], calendar["term_id"], "internal", items=[{"name": "Tuition", "amount": "10000"}]
    )
    student = factory.student(form1, "S001", enroll_year_id=calendar["year_id"])
    FeeAssignmentEngine(db).assign_student_fees(student.id, calendar["year_id"], calendar["term_id"])
    InvoiceGenerator(db).commit(calendar["year_id"], calendar["term_id"])
    return student


def pay(db, student, amount):
    invoice = db.execute(select(Invoice).where(Invoice.student_id == student.id)).scalar_one()
    result = InvoiceGenerator(db).record_payment(invoice.id, amount, "cash")
    assert result.success, result.message


class TestPaymentPercentage:

    def test_rounding(self):
        assert payment_percentage(Decimal("3"), Decimal("1")) == Decimal("33.33")
        assert payment_percentage(Decimal("10000"), Decimal("3000")) == Decimal("30.00")

    def test_nothing_owed_is_fully_paid(self):
        assert payment_percentage(Decimal("0"), Decimal("0")) == Decimal("100.00")


class TestClearanceTypes:

    def test_duplicate_name(self, workflow, exam_type):
        result = workflow.create_type("exam", "Exam Again", 50)

        assert result.error_code == ErrorCode.ALREADY_EXISTS

    def test_threshold_range(self, workflow):
        assert workflow.create_type("library", "Library", 120).error_code == ErrorCode.VALIDATION_ERROR

    def test_list_active_in_display_order(self, workflow, exam_type):
        workflow.create_type("graduation", "Graduation Clearance", 100, display_order=0)
        hostel = workflow.create_type("hostel", "Hostel Clearance", 50, display_order=2).data["clearance_type_id"]
        workflow.toggle_type(hostel)

        assert [t.name for t in workflow.list_types()] == ["graduation", "exam"]
        assert len(workflow.list_types(active_only=False)) == 3


class TestRequests:
    """Opening requests and the payment snapshot."""

    def test_below_threshold_is_pending(self, workflow, exam_type, billed_student, calendar, db):
        pay(db, billed_student, "3000")

        result = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["status"] == "pending"
        assert result.data["eligible"] is False
        assert result.data["payment_percentage"] == Decimal("30.00")

    def test_meeting_threshold_auto_approves(self, workflow, exam_type, billed_student, calendar, db):
        pay(db, billed_student, "7000")

        result = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"])

        assert result.data["status"] == "approved"
        assert result.data["auto_approved"] is True

    def test_auto_approve_can_be_switched_off(self, workflow, exam_type, billed_student, calendar, db, monkeypatch):
        monkeypatch.setattr(settings, "CLEARANCE_AUTO_APPROVE", False)
        pay(db, billed_student, "10000")

        result = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"])

        assert result.data["status"] == "pending"
        assert result.data["eligible"] is True

    def test_second_active_request_refused(self, workflow, exam_type, billed_student, calendar):
        workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"], calendar["term_id"])

        result = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"], calendar["term_id"])

        assert result.error_code == ErrorCode.ALREADY_EXISTS

    def test_new_request_allowed_after_rejection(self, workflow, exam_type, billed_student, calendar):
        first = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"])
        workflow.decide(first.data["clearance_request_id"], approve=False, reason="fees outstanding")

        again = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"])

        assert again.success

    def test_cancelled_invoices_are_ignored(self, workflow, exam_type, billed_student, calendar, db):
        invoice = db.execute(select(Invoice).where(Invoice.student_id == billed_student.id)).scalar_one()
        InvoiceGenerator(db).cancel_invoice(invoice.id, "reissued")

        total, paid, percentage = workflow.payment_summary(billed_student.id, calendar["year_id"])

        assert total == Decimal("0.00")
        assert percentage == Decimal("100.00")

    def test_inactive_type_refused(self, workflow, exam_type, billed_student, calendar):
        workflow.toggle_type(exam_type)

        result = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"])

        assert result.error_code == ErrorCode.NOT_FOUND


class TestDecisions:
    """Listing pending requests and deciding them."""

    @pytest.fixture
    def pending_id(self, workflow, exam_type, billed_student, calendar, db):
        pay(db, billed_student, "3000")
        result = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"], calendar["term_id"])
        assert result.data["status"] == "pending"
        return result.data["clearance_request_id"]

    def test_pending_lists_live_eligibility(self, workflow, pending_id, billed_student, calendar, db):
        pending = workflow.list_pending(calendar["year_id"])
        assert len(pending) == 1
        assert pending[0]["eligible"] is False
        assert pending[0]["outstanding_balance"] == Decimal("7000.00")

        pay(db, billed_student, "4000")
        pending = workflow.list_pending(calendar["year_id"])
        assert pending[0]["eligible"] is True
        assert pending[0]["payment_percentage"] == Decimal("70.00")

    def test_override_approval_below_threshold(self, workflow, pending_id, db, factory):
        approver = factory.user("bursar@school.mw", role="admin")

        result = workflow.decide(pending_id, approve=True, approver_id=approver.id, reason="override")

        assert result.success
        assert result.data["status"] == "approved"
        assert result.data["override"] is True

    def test_rejection_requires_reason(self, workflow, pending_id):
        result = workflow.decide(pending_id, approve=False, reason="   ")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_decided_request_is_final(self, workflow, pending_id):
        assert workflow.decide(pending_id, approve=False, reason="unpaid balance").success

        result = workflow.decide(pending_id, approve=True, reason="changed mind")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_filters(self, workflow, pending_id, calendar, form1, factory):
        form2 = factory.klass("Form 2", 2)

        assert len(workflow.list_pending(calendar["year_id"], class_id=form1.id)) == 1
        assert workflow.list_pending(calendar["year_id"], class_id=form2.id) == []
        assert workflow.list_pending(calendar["year_id"], term_id=calendar["term2_id"]) == []

    def test_status_history(self, workflow, pending_id, exam_type, billed_student, calendar):
        workflow.decide(pending_id, approve=False, reason="unpaid balance")
        workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"], calendar["term_id"])

        history = workflow.get_clearance_status(billed_student.id, calendar["year_id"])

        assert sorted(r.status for r in history) == ["pending", "rejected"]


class TestLiveOverride:

    def test_override_uses_current_payment(self, workflow, exam_type, billed_student, calendar, db):
        pay(db, billed_student, "3000")
        request_id = workflow.request_clearance(billed_student.id, exam_type, calendar["year_id"]).data[
            "clearance_request_id"
        ]
        pay(db, billed_student, "4000")
        assert workflow.list_pending(calendar["year_id"])[0]["eligible"] is True

        result = workflow.decide(request_id, approve=True)

        assert result.data["override"] is False
        assert result.data["payment_percentage"] == Decimal("70.00")
        assert "(override)" not in result.message


class TestBulkClearance:
    """Preview and bulk requests over a class or the whole school."""

    @pytest.fixture
    def school(self, db, factory, billed_student, form1):
        pay(db, billed_student, "3000")
        form2 = factory.klass("Form 2", 2)
        factory.student(form1, "S002")
        factory.student(form2, "S003")
        return {"form1": form1, "form2": form2}

    def test_preview_splits_by_threshold(self, workflow, exam_type, calendar, school):
        result = workflow.preview_bulk(exam_type, calendar["year_id"], class_id=school["form1"].id)

        assert result.success
        assert result.data["threshold"] == Decimal("60")
        assert [s["student_id"] for s in result.data["eligible"]] == ["S002"]
        assert [s["student_id"] for s in result.data["ineligible"]] == ["S001"]
        assert result.data["ineligible"][0]["outstanding"] == Decimal("7000.00")
        assert workflow.list_pending(calendar["year_id"]) == []

    def test_bulk_request_for_a_class(self, workflow, exam_type, calendar, school):
        result = workflow.bulk_request(exam_type, calendar["year_id"], class_id=school["form1"].id)

        assert result.success
        assert result.data["total"] == 2
        assert result.data["approved"] == 1
        assert result.data["pending"] == 1
        assert result.data["results"]["approved"] == ["S002"]
        assert result.data["results"]["pending"] == ["S001"]
        assert len(workflow.list_pending(calendar["year_id"])) == 1

    def test_repeat_counts_existing_requests(self, workflow, exam_type, calendar, school):
        workflow.bulk_request(exam_type, calendar["year_id"], class_id=school["form1"].id)

        result = workflow.bulk_request(exam_type, calendar["year_id"])

        assert result.data["existing"] == 2
        assert result.data["approved"] == 1
        assert result.data["results"]["approved"] == ["S003"]
        assert result.data["failed"] == 0

    def test_unknown_type_or_empty_class(self, workflow, exam_type, calendar, school, factory):
        from uuid import uuid4

        empty = factory.klass("Form 3", 3)

        assert workflow.bulk_request(uuid4(), calendar["year_id"]).error_code == ErrorCode.NOT_FOUND
        assert workflow.preview_bulk(exam_type, calendar["year_id"], class_id=empty.id).error_code == ErrorCode.NOT_FOUND
