"""Router tests through the FastAPI app with the test session injected."""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from school_admin.core.db import get_db
from school_admin.core.security import create_access_token
from school_admin.main import app


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(subject=user.id)}"}


@pytest.fixture
def admin(factory):
    return factory.user("admin@school.mw", role="admin")


@pytest.fixture
def teacher(factory):
    return factory.user("teacher@school.mw", role="teacher")


class TestAuth:

    def test_missing_token(self, client):
        response = client.get("/api/academic/years")

        assert response.status_code in (401, 403)

    def test_garbage_token(self, client):
        response = client.get("/api/academic/years", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_unknown_user(self, client):
        headers = {"Authorization": f"Bearer {create_access_token(subject=uuid4())}"}

        assert client.get("/api/academic/years", headers=headers).status_code == 401

    def test_admin_only_route(self, client, teacher):
        response = client.post(
            "/api/academic/years",
            json={"name": "2025", "start_date": "2025-01-01", "end_date": "2025-12-31"},
            headers=auth(teacher),
        )

        assert response.status_code == 403


class TestAcademicRoutes:

    def test_create_and_activate_year(self, client, admin):
        created = client.post(
            "/api/academic/years",
            json={"name": "2025", "start_date": "2025-01-01", "end_date": "2025-12-31"},
            headers=auth(admin),
        )
        assert created.status_code == 201
        year_id = created.json()["data"]["academic_year_id"]

        activated = client.post(f"/api/academic/years/{year_id}/activate", headers=auth(admin))
        assert activated.status_code == 200

        active = client.get("/api/academic/active", headers=auth(admin)).json()
        assert active["academic_year"]["id"] == year_id
        assert active["term"] is None

    def test_activate_unknown_year_is_404(self, client, admin):
        response = client.post(f"/api/academic/years/{uuid4()}/activate", headers=auth(admin))

        assert response.status_code == 404

    def test_bad_dates_are_400(self, client, admin):
        response = client.post(
            "/api/academic/years",
            json={"name": "2025", "start_date": "2025-12-31", "end_date": "2025-01-01"},
            headers=auth(admin),
        )

        assert response.status_code in (400, 422)


class TestStudentRoutes:

    def test_register_and_read_back(self, client, admin, calendar, curriculum, form4):
        response = client.post(
            "/api/students/",
            json={
                "student_id": "S001",
                "first_name": "Thoko",
                "last_name": "Phiri",
                "gender": "male",
                "class_id": str(form4.id),
                "stream": "sciences",
            },
            headers=auth(admin),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["success"] is True
        assert body["email"] == "s001@school.mw"
        assert {s["step"]: s["status"] for s in body["steps"]}["subjects"] == "succeeded"

        student_id = body["student_id"]
        subjects = client.get(f"/api/students/{student_id}/subjects", headers=auth(admin)).json()
        assert len(subjects) == 6

        taken = client.get("/api/students/check-id", params={"student_id": "S001"}, headers=auth(admin))
        assert taken.json()["available"] is False

    def test_duplicate_registration_is_400(self, client, admin, calendar, form1, factory):
        factory.student(form1, "S001")

        response = client.post(
            "/api/students/",
            json={"student_id": "S001", "first_name": "A", "last_name": "B", "gender": "female",
                  "class_id": str(form1.id)},
            headers=auth(admin),
        )

        assert response.status_code == 400
        assert "already in use" in response.json()["detail"]

    def test_students_only_see_themselves(self, client, calendar, form1, factory):
        me = factory.student(form1, "S001")
        other = factory.student(form1, "S002")

        from school_admin.models import User

        user = factory.db.get(User, me.id)
        assert client.get(f"/api/students/{me.id}", headers=auth(user)).status_code == 200
        assert client.get(f"/api/students/{other.id}", headers=auth(user)).status_code == 403


class TestFeeAndInvoiceRoutes:

    def test_preview_commit_and_pay(self, client, admin, calendar, factory, form1):
        factory.fee_structure(calendar["year_id"], calendar["term_id"], "internal")
        for i in range(2):
            factory.student(form1, f"S00{i}", enroll_year_id=calendar["year_id"])
        scope = {"academic_year_id": str(calendar["year_id"]), "term_id": str(calendar["term_id"])}

        preview = client.post("/api/fees/assignments/preview", json=scope, headers=auth(admin)).json()
        assert preview["data"]["total_students"] == 2
        assert Decimal(str(preview["data"]["total_expected_revenue"])) == Decimal("63001.00")

        committed = client.post("/api/fees/assignments/commit", json=scope, headers=auth(admin)).json()
        assert committed["data"]["assigned"] == 2

        generated = client.post("/api/invoices/generate", json=scope, headers=auth(admin)).json()
        invoice = generated["data"]["invoices"][0]
        assert invoice["invoice_number"] == "INV-2025-T1-000001"

        paid = client.post(
            f"/api/invoices/{invoice['invoice_id']}/payments",
            json={"amount": "500.00", "method": "cash"},
            headers=auth(admin),
        )
        assert paid.status_code == 200
        assert paid.json()["data"]["status"] == "partial"

        detail = client.get(f"/api/invoices/{invoice['invoice_id']}", headers=auth(admin)).json()
        assert len(detail["items"]) == 2
        assert len(detail["payments"]) == 1

    def test_commit_without_structures_is_404(self, client, admin, calendar):
        scope = {"academic_year_id": str(calendar["year_id"]), "term_id": str(calendar["term_id"])}

        response = client.post("/api/fees/assignments/commit", json=scope, headers=auth(admin))

        assert response.status_code == 404


class TestClearanceRoutes:

    def test_reject_without_reason_is_400(self, client, admin, teacher, calendar, form1, factory):
        student = factory.student(form1, "S001")
        type_id = client.post(
            "/api/clearances/types",
            json={"name": "exam", "display_name": "Exam Clearance", "minimum_payment_percentage": 60},
            headers=auth(admin),
        ).json()["data"]["clearance_type_id"]

        # Nothing is owed yet, so the request would otherwise be approved on creation
        from school_admin.core.config import settings
        original = settings.CLEARANCE_AUTO_APPROVE
        settings.CLEARANCE_AUTO_APPROVE = False
        try:
            request = client.post(
                "/api/clearances/requests",
                json={"student_id": str(student.id), "clearance_type_id": type_id,
                      "academic_year_id": str(calendar["year_id"])},
                headers=auth(teacher),
            )
        finally:
            settings.CLEARANCE_AUTO_APPROVE = original
        assert request.status_code == 201
        request_id = request.json()["data"]["clearance_request_id"]

        rejected = client.post(
            f"/api/clearances/requests/{request_id}/decision",
            json={"approve": False},
            headers=auth(teacher),
        )
        assert rejected.status_code == 400

        approved = client.post(
            f"/api/clearances/requests/{request_id}/decision",
            json={"approve": True, "reason": "principal's discretion"},
            headers=auth(teacher),
        )
        assert approved.status_code == 200
        assert approved.json()["data"]["status"] == "approved"


class TestLifespan:

    def test_shutdown_releases_the_engine(self):
        from school_admin.core.db import db_manager

        with TestClient(app) as client:
            assert db_manager.engine is not None
            assert client.get("/health").json()["database"]["status"] == "healthy"

        assert db_manager.engine is None
        assert db_manager._initialized is False


class TestBulkRoutes:

    def test_bulk_registration(self, client, admin, calendar, form1, factory):
        factory.student(form1, "S001")
        row = {"first_name": "A", "last_name": "B", "gender": "female", "class_id": str(form1.id)}

        response = client.post(
            "/api/students/bulk",
            json={"rows": [{**row, "student_id": "S001"}, {**row, "student_id": "S002"}]},
            headers=auth(admin),
        )

        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["success_count"] == 1
        assert data["skipped_count"] == 1
        assert [r["status"] for r in data["rows"]] == ["skipped", "registered"]

    def test_bulk_clearance(self, client, admin, calendar, form1, factory):
        factory.student(form1, "S001")
        factory.student(form1, "S002")
        type_id = client.post(
            "/api/clearances/types",
            json={"name": "exam", "display_name": "Exam Clearance", "minimum_payment_percentage": 60},
            headers=auth(admin),
        ).json()["data"]["clearance_type_id"]
        scope = {"clearance_type_id": type_id, "academic_year_id": str(calendar["year_id"]),
                 "class_id": str(form1.id)}

        preview = client.post("/api/clearances/bulk/preview", json=scope, headers=auth(admin)).json()
        assert len(preview["data"]["eligible"]) == 2

        committed = client.post("/api/clearances/bulk", json=scope, headers=auth(admin)).json()
        assert committed["data"]["approved"] == 2

        again = client.post("/api/clearances/bulk", json=scope, headers=auth(admin)).json()
        assert again["data"]["existing"] == 2
