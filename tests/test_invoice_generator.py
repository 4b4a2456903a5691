"""Tests for invoice generation, numbering, payments and cancellation."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from school_admin.models import FeeItem, Invoice
from school_admin.services.fee_assignment import FeeAssignmentEngine
from school_admin.services.invoice_generator import InvoiceGenerator, format_invoice_number
from school_admin.services.results import ErrorCode


@pytest.fixture
def generator(db):
    return InvoiceGenerator(db)


@pytest.fixture
def assigned(db, factory, calendar, form1):
    """Three internal students with fees assigned for term 1."""
    factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal", due_date=date(2025, 2, 28))
    students = [factory.student(form1, f"S{i:03d}", enroll_year_id=calendar["year_id"]) for i in range(3)]
    result = FeeAssignmentEngine(db).commit(calendar["year_id"], calendar["term_id"])
    assert result.data["assigned"] == 3
    return students


def assign_one_more(db, factory, calendar, klass, student_id):
    student = factory.student(klass, student_id, enroll_year_id=calendar["year_id"])
    FeeAssignmentEngine(db).assign_student_fees(student.id, calendar["year_id"], calendar["term_id"])
    return student


def numbers(db, term_id):
    return db.execute(
        select(Invoice.invoice_number).where(Invoice.term_id == term_id).order_by(Invoice.invoice_number)
    ).scalars().all()


@pytest.fixture
def invoice(db, generator, calendar, assigned):
    generator.commit(calendar["year_id"], calendar["term_id"])
    return db.execute(select(Invoice).where(Invoice.student_id == assigned[0].id)).scalar_one()


class TestGeneration:
    """Preview, commit and invoice numbering."""

    def test_preview_then_commit(self, db, generator, calendar, assigned):
        preview = generator.preview(calendar["year_id"], calendar["term_id"])

        assert preview.data["total_count"] == 3
        assert preview.data["internal_count"] == 3
        assert preview.data["total_amount"] == Decimal("31500.50") * 3
        assert preview.data["already_generated"] == 0

        result = generator.commit(calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["invoice_count"] == 3
        assert numbers(db, calendar["term_id"]) == [
            "INV-2025-T1-000001", "INV-2025-T1-000002", "INV-2025-T1-000003",
        ]

    def test_numbers_keep_increasing_across_commits(self, db, generator, calendar, assigned, factory, form1):
        generator.commit(calendar["year_id"], calendar["term_id"])
        assign_one_more(db, factory, calendar, form1, "S100")

        result = generator.commit(calendar["year_id"], calendar["term_id"])

        assert result.data["invoice_count"] == 1
        assert result.data["skipped_count"] == 3
        assert result.data["invoices"][0]["invoice_number"] == "INV-2025-T1-000004"
        assert len(set(numbers(db, calendar["term_id"]))) == 4

    def test_second_commit_generates_nothing(self, db, generator, calendar, assigned):
        generator.commit(calendar["year_id"], calendar["term_id"])

        result = generator.commit(calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["invoice_count"] == 0
        assert result.data["skipped_count"] == 3
        assert len(numbers(db, calendar["term_id"])) == 3

    def test_stale_uninvoiced_read_skips_collisions(self, db, generator, calendar, assigned, factory, form1, monkeypatch):
        stale, _ = generator._uninvoiced(calendar["year_id"], calendar["term_id"])
        generator.commit(calendar["year_id"], calendar["term_id"])
        assign_one_more(db, factory, calendar, form1, "S100")
        fresh, _ = InvoiceGenerator(db)._uninvoiced(calendar["year_id"], calendar["term_id"])
        assert len(stale) == 3 and len(fresh) == 1
        # The first three were invoiced by another run after this one read them
        monkeypatch.setattr(generator, "_uninvoiced", lambda academic_year_id, term_id: (stale + fresh, 0))

        result = generator.commit(calendar["year_id"], calendar["term_id"])

        assert result.success
        assert result.data["invoice_count"] == 1
        assert result.data["skipped_count"] == 3
        assert result.data["invoices"][0]["invoice_number"] == "INV-2025-T1-000004"
        assert len(numbers(db, calendar["term_id"])) == 4

    def test_each_term_has_its_own_sequence(self, db, generator, calendar, assigned, factory):
        factory.fee_structure(calendar["year_id"], calendar["term2_id"], "internal")
        FeeAssignmentEngine(db).commit(calendar["year_id"], calendar["term2_id"])

        generator.commit(calendar["year_id"], calendar["term_id"])
        generator.commit(calendar["year_id"], calendar["term2_id"])

        assert numbers(db, calendar["term2_id"])[0] == "INV-2025-T2-000001"

    def test_cancelled_number_is_not_reused(self, db, generator, calendar, assigned, invoice, factory, form1):
        assert generator.cancel_invoice(invoice.id, "issued in error").success
        assign_one_more(db, factory, calendar, form1, "S100")

        result = generator.commit(calendar["year_id"], calendar["term_id"])

        new_number = result.data["invoices"][0]["invoice_number"]
        assert new_number == "INV-2025-T1-000004"
        assert new_number != invoice.invoice_number

    def test_items_are_a_snapshot(self, db, generator, invoice):
        invoice = generator.get_invoice(invoice.id)
        assert [(i.item_name, i.total_amount) for i in invoice.items] == [
            ("Tuition", Decimal("30000.00")),
            ("Development Fund", Decimal("1500.50")),
        ]
        assert sum(i.total_amount for i in invoice.items) == invoice.total_amount

        tuition = db.execute(select(FeeItem).where(FeeItem.name == "Tuition")).scalar_one()
        tuition.amount = Decimal("99999.00")
        db.commit()
        db.expire_all()

        assert generator.get_invoice(invoice.id).items[0].unit_price == Decimal("30000.00")

    def test_due_date_from_structure_or_default(self, db, generator, calendar, factory, form1, invoice):
        assert invoice.due_date == date(2025, 2, 28)

        factory.fee_structure(calendar["year_id"], calendar["term2_id"], "internal")
        FeeAssignmentEngine(db).commit(calendar["year_id"], calendar["term2_id"])
        generator.commit(calendar["year_id"], calendar["term2_id"])
        later = db.execute(select(Invoice).where(Invoice.term_id == calendar["term2_id"])).scalars().first()

        assert later.due_date == later.invoice_date + timedelta(days=30)

    def test_term_outside_year(self, generator, calendar, factory):
        other_year = factory.year("2026", date(2026, 1, 1), date(2026, 12, 31), active=False)

        result = generator.commit(other_year, calendar["term_id"])

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_format_invoice_number(self, db, calendar):
        from school_admin.models import AcademicYear, Term

        year = db.get(AcademicYear, calendar["year_id"])
        term = db.get(Term, calendar["term2_id"])

        assert format_invoice_number(year, term, 42) == "INV-2025-T2-000042"


class TestPayments:
    """Posting payments and cancelling invoices."""

    def test_partial_then_full_payment(self, generator, invoice):
        first = generator.record_payment(invoice.id, "10000", "cash")
        assert first.data["status"] == "partial"
        assert first.data["balance"] == Decimal("21500.50")

        second = generator.record_payment(invoice.id, "21500.50", "mobile_money", reference="MP123")
        assert second.data["status"] == "paid"
        assert second.data["balance"] == Decimal("0.00")
        assert len(generator.get_invoice(invoice.id).payments) == 2

    def test_overpayment_rejected(self, generator, invoice):
        result = generator.record_payment(invoice.id, "40000", "bank")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_unknown_method_rejected(self, generator, invoice):
        result = generator.record_payment(invoice.id, "100", "cheque")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_zero_payment_rejected(self, generator, invoice):
        assert generator.record_payment(invoice.id, "0", "cash").error_code == ErrorCode.VALIDATION_ERROR

    def test_cannot_cancel_paid_invoice(self, generator, invoice):
        generator.record_payment(invoice.id, "100", "cash")

        result = generator.cancel_invoice(invoice.id)

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_cannot_pay_cancelled_invoice(self, generator, invoice):
        generator.cancel_invoice(invoice.id, "duplicate")

        result = generator.record_payment(invoice.id, "100", "cash")

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert generator.get_invoice(invoice.id).balance == Decimal("0")

    def test_unknown_invoice(self, generator):
        from uuid import uuid4

        assert generator.record_payment(uuid4(), "1", "cash").error_code == ErrorCode.NOT_FOUND

    def test_list_student_invoices(self, generator, assigned, invoice):
        listed = generator.list_student_invoices(assigned[0].id)

        assert [i.id for i in listed] == [invoice.id]
