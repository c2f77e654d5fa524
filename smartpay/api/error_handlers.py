"""
Maps domain errors to JSON responses.

Every SmartPayError becomes ``{"error", "code", "logs"}`` with a status
chosen from its category.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..core.recovery.errors import ErrorCategory, SmartPayError

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.BUSY: status.HTTP_409_CONFLICT,
    ErrorCategory.PREFLIGHT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCategory.FETCH: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.SIGNER: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.SUBMISSION: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorCategory.CONFIGURATION: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: SmartPayError) -> int:
    return STATUS_BY_CATEGORY.get(exc.category, status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_response(exc: SmartPayError) -> dict:
    return {"error": exc.message, "code": exc.code, "logs": list(exc.logs)}


def register_error_handlers(app: FastAPI) -> None:
    """Register the domain error handler on the FastAPI app."""

    @app.exception_handler(SmartPayError)
    async def smartpay_error_handler(request: Request, exc: SmartPayError):
        code = status_for(exc)
        log = logger.error if code >= 500 else logger.warning
        log(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=code, content=error_response(exc))
