"""Shared fixtures: an in-memory database per test and small data factories."""

import os

# Settings are read at import time, so the environment must be ready first
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key-that-is-at-least-32-characters"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from school_admin.core.db import enable_sqlite_foreign_keys
from school_admin.models import (
    Base,
    Class,
    CurriculumSubject,
    Enrollment,
    Student,
    Subject,
    User,
)
from school_admin.services.academic_calendar import AcademicCalendarRegistry
from school_admin.services.fee_assignment import FeeAssignmentEngine


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


class Factory:
    """Builds the rows most tests need, committing as it goes."""

    def __init__(self, db):
        self.db = db

    def year(self, name="2025", start=date(2025, 1, 1), end=date(2025, 12, 31), active=True):
        result = AcademicCalendarRegistry(self.db).create_year(name, start, end, is_active=active)
        assert result.success, result.message
        return result.data["academic_year_id"]

    def term(self, year_id, ordinal, start, end, active=False):
        result = AcademicCalendarRegistry(self.db).create_term(
            year_id, f"Term {ordinal}", start, end, ordinal=ordinal, is_active=active
        )
        assert result.success, result.message
        return result.data["term_id"]

    def klass(self, name, grade_level):
        klass = Class(name=name, grade_level=grade_level)
        self.db.add(klass)
        self.db.commit()
        return klass

    def user(self, email, role="student"):
        user = User(email=email, password_hash="not-a-real-hash", role=role)
        self.db.add(user)
        self.db.commit()
        return user

    def student(self, klass, student_id, student_type="internal", stream=None,
                enroll_year_id=None, is_active=True):
        user = self.user(f"{student_id.lower()}@school.mw")
        student = Student(
            id=user.id,
            student_id=student_id,
            class_id=klass.id,
            gender="female",
            student_type=student_type,
            stream=stream,
            is_active=is_active,
        )
        self.db.add(student)
        if enroll_year_id is not None:
            self.db.add(Enrollment(
                student_id=user.id,
                class_id=klass.id,
                academic_year_id=enroll_year_id,
                status="active",
            ))
        self.db.commit()
        return student

    def subject(self, name, code):
        subject = Subject(name=name, code=code)
        self.db.add(subject)
        self.db.commit()
        return subject

    def curriculum(self, subject, level, stream=None, compulsory=True):
        self.db.add(CurriculumSubject(
            level=level, subject_id=subject.id, stream=stream, is_compulsory=compulsory
        ))
        self.db.commit()

    def fee_structure(self, year_id, term_id, student_type="internal", items=None, due_date=None):
        items = items or [
            {"name": "Tuition", "amount": "30000.00"},
            {"name": "Development Fund", "amount": "1500.50"},
        ]
        result = FeeAssignmentEngine(self.db).create_structure(
            f"{student_type.title()} fees", year_id, term_id, student_type, items, due_date=due_date
        )
        assert result.success, result.message
        return result.data["fee_structure_id"]


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def calendar(factory):
    """Active year 2025 with an active first term and an inactive second term."""
    year_id = factory.year()
    term1 = factory.term(year_id, 1, date(2025, 1, 6), date(2025, 4, 4), active=True)
    term2 = factory.term(year_id, 2, date(2025, 5, 5), date(2025, 8, 1))
    return {"year_id": year_id, "term_id": term1, "term2_id": term2}


@pytest.fixture
def curriculum(factory):
    """Junior and senior cores plus a sciences and a humanities stream."""
    english = factory.subject("English", "ENG")
    maths = factory.subject("Mathematics", "MAT")
    chichewa = factory.subject("Chichewa", "CHI")
    agriculture = factory.subject("Agriculture", "AGR")
    physics = factory.subject("Physics", "PHY")
    chemistry = factory.subject("Chemistry", "CHE")
    computing = factory.subject("Computer Studies", "CST")
    history = factory.subject("History", "HIS")

    for subject in (english, maths, chichewa, agriculture):
        factory.curriculum(subject, "junior")
    for subject in (english, maths, chichewa):
        factory.curriculum(subject, "senior")
    factory.curriculum(physics, "senior", stream="sciences")
    factory.curriculum(chemistry, "senior", stream="sciences")
    factory.curriculum(computing, "senior", stream="sciences", compulsory=False)
    factory.curriculum(history, "senior", stream="humanities")

    return {
        "junior_core": {english.id, maths.id, chichewa.id, agriculture.id},
        "senior_core": {english.id, maths.id, chichewa.id},
        "sciences": {physics.id, chemistry.id, computing.id},
        "humanities": {history.id},
    }


@pytest.fixture
def form1(factory):
    return factory.klass("Form 1", 1)


@pytest.fixture
def form4(factory):
    return factory.klass("Form 4", 4)

