import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from civic_reports.exceptions import (
    AlreadyMergedError,
    CivicReportError,
    ExternalServiceError,
    InvalidStatusTransitionError,
    MergeInvariantError,
    PermissionDeniedError,
    ReportNotFoundError,
    ReportValidationError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ReportNotFoundError: status.HTTP_404_NOT_FOUND,
    ReportValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AlreadyMergedError: status.HTTP_409_CONFLICT,
    InvalidStatusTransitionError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExternalServiceError: status.HTTP_502_BAD_GATEWAY,
    MergeInvariantError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(exc: CivicReportError) -> int:
    for exc_type, code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def civic_error_handler(request: Request, exc: CivicReportError):
    code = status_code_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})
