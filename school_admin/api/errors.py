# school_admin/api/errors.py - Map service results onto HTTP responses
from fastapi import HTTPException, status

from school_admin.services.results import ActionResult, ErrorCode

STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.STORE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.COMPENSATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_result(result: ActionResult) -> ActionResult:
    """Raise HTTPException for a failed result, pass a successful one through"""
    if result.success:
        return result
    raise HTTPException(
        status_code=STATUS_BY_CODE.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=result.message,
    )
