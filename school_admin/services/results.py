# school_admin/services/results.py - Result types and exceptions shared by the pipeline services
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    STORE_ERROR = "store_error"
    COMPENSATION_FAILED = "compensation_failed"


class PipelineError(Exception):
    """Base exception for pipeline service errors."""

    code: ErrorCode = ErrorCode.STORE_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(PipelineError):
    """Raised when input is rejected before any mutation."""

    code = ErrorCode.VALIDATION_ERROR


class DependencyNotFound(PipelineError):
    """Raised when a referenced record (year, term, structure, ...) is missing."""

    code = ErrorCode.NOT_FOUND


class AlreadyExists(PipelineError):
    """Raised when a unique key already holds a row."""

    code = ErrorCode.ALREADY_EXISTS


class CompensationFailed(PipelineError):
    """Raised when undoing a half-finished registration failed."""

    code = ErrorCode.COMPENSATION_FAILED


class IdentityProviderError(PipelineError):
    """Raised by the identity provider when an identity cannot be created or removed."""

    pass


class ActionResult(BaseModel):
    """Outcome of one public operation: never ambiguous, always carries a message"""

    success: bool
    message: str
    error_code: Optional[ErrorCode] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, **data: Any) -> "ActionResult":
        return cls(success=False, message=message, error_code=code, data=data)

    @classmethod
    def from_error(cls, exc: Exception) -> "ActionResult":
        """
        Translate an exception raised inside a service into a failed result.

        IntegrityError on a plain insert means the row is already there; any
        other store error is reported as a generic store failure.
        """
        if isinstance(exc, PipelineError):
            return cls.fail(exc.code, exc.message)
        if isinstance(exc, IntegrityError):
            return cls.fail(ErrorCode.ALREADY_EXISTS, "Record already exists")
        if isinstance(exc, SQLAlchemyError):
            logger.error(f"Store error: {exc}")
            return cls.fail(ErrorCode.STORE_ERROR, "Database operation failed")
        raise exc


class StepKind(str, Enum):
    REQUIRED = "required"
    BEST_EFFORT = "best_effort"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepOutcome(BaseModel):
    step: str
    kind: StepKind
    status: StepStatus
    message: str = ""


class RegistrationResult(ActionResult):
    """
    Registration outcome with one entry per pipeline step.

    Required steps (identity, profile, student) decide success. Best-effort
    steps (enrollment, subjects, fees) may fail while the registration still
    succeeds; their failures are visible here and repairable by a later sync.
    """

    steps: List[StepOutcome] = Field(default_factory=list)

    def record(self, step: str, kind: StepKind, status: StepStatus, message: str = "") -> StepOutcome:
        outcome = StepOutcome(step=step, kind=kind, status=status, message=message)
        self.steps.append(outcome)
        return outcome

    def outcome(self, step: str) -> Optional[StepOutcome]:
        for outcome in self.steps:
            if outcome.step == step:
                return outcome
        return None

    @property
    def degraded(self) -> bool:
        """True when a best-effort step failed"""
        return any(
            s.kind == StepKind.BEST_EFFORT and s.status == StepStatus.FAILED
            for s in self.steps
        )


__all__ = [
    "ErrorCode",
    "PipelineError",
    "ValidationFailed",
    "DependencyNotFound",
    "AlreadyExists",
    "CompensationFailed",
    "IdentityProviderError",
    "ActionResult",
    "StepKind",
    "StepStatus",
    "StepOutcome",
    "RegistrationResult",
]
