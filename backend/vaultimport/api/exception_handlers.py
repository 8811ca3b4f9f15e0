"""Exception handlers that turn domain errors into JSON responses.

Every ``VaultImportError`` carries a stable ``code``; the handler maps it
to an HTTP status and returns ``{"error": code, "message": ...}`` so
callers can branch on the code rather than the text.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from vaultimport.core.exceptions import QuotaExceededError, VaultImportError
from vaultimport.core.logging import get_logger

logger = get_logger(__name__)

STATUS_BY_CODE: dict[str, int] = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    # Provider rejected the stored credentials; the caller is still authenticated
    "auth_failed": status.HTTP_424_FAILED_DEPENDENCY,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "state_conflict": status.HTTP_409_CONFLICT,
    "quota_exceeded": status.HTTP_429_TOO_MANY_REQUESTS,
    "provider_unavailable": status.HTTP_502_BAD_GATEWAY,
    "service_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "service_under_review": status.HTTP_503_SERVICE_UNAVAILABLE,
    "storage_failure": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: VaultImportError) -> int:
    return STATUS_BY_CODE.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the domain error handler on the application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(VaultImportError)
    async def vault_import_error_handler(
        request: Request, exc: VaultImportError
    ) -> JSONResponse:
        status_code = status_for(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            "request_failed",
            path=request.url.path,
            error_code=exc.code,
            error=exc.message,
            status_code=status_code,
        )

        content: dict = {
            "error": exc.code,
            "message": exc.message,
            "retryable": exc.retryable,
        }
        if isinstance(exc, QuotaExceededError):
            content["remaining_photos"] = exc.remaining
        return JSONResponse(status_code=status_code, content=content)
