# school_admin/models/__init__.py - Import all models so SQLAlchemy can discover them

from school_admin.models.base import Base

from school_admin.models.user import User, Profile
from school_admin.models.class_model import Class
from school_admin.models.academic import AcademicYear, Term
from school_admin.models.student import Student
from school_admin.models.enrollment import Enrollment
from school_admin.models.curriculum import Subject, CurriculumSubject, StudentSubjectEnrollment
from school_admin.models.fee import FeeStructure, FeeItem, StudentFeeAssignment
from school_admin.models.payment import Invoice, InvoiceItem, Payment, InvoiceSequence
from school_admin.models.clearance import ClearanceType, ClearanceRequest

__all__ = [
    "Base",
    "User",
    "Profile",
    "Class",
    "AcademicYear",
    "Term",
    "Student",
    "Enrollment",
    "Subject",
    "CurriculumSubject",
    "StudentSubjectEnrollment",
    "FeeStructure",
    "FeeItem",
    "StudentFeeAssignment",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "InvoiceSequence",
    "ClearanceType",
    "ClearanceRequest",
]
