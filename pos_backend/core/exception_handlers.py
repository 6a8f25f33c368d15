"""Centralized exception handlers for the FastAPI app.

Register with register_exception_handlers(app). Maps domain and framework
exceptions to HTTP responses.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pos_backend.core.config import get_settings
from pos_backend.domain.exceptions import PosException

logger = logging.getLogger(__name__)

# Map domain error_code to HTTP status when applicable
_ERROR_CODE_STATUS: dict[str, int] = {
    "RESOURCE_NOT_FOUND": 404,
    "STORE_NOT_FOUND": 404,
    "STORE_ALREADY_EXISTS": 409,
    "DUPLICATE_KEY": 409,
    "VALIDATION_ERROR": 400,
    "STORE_ID_REQUIRED": 400,
    "INVALID_PREFIX": 400,
    "COLLECTION_NAME_TOO_LONG": 400,
    "INSUFFICIENT_POINTS": 400,
    "POINTS_NOT_EARNED": 400,
    "SHARD_CONNECTION_ERROR": 503,
    "SHARD_NOT_ASSIGNED": 500,
    "INVALID_SHARD_ID": 500,
}


def status_for(exc: PosException) -> int:
    """HTTP status for a domain exception (400 when the code is unmapped)."""
    return _ERROR_CODE_STATUS.get(exc.error_code, 400)


def _pos_exception_handler(request: Request, exc: PosException) -> JSONResponse:
    """Return JSON from PosException.to_dict() with appropriate status code."""
    status = status_for(exc)
    if status >= 500:
        # Details are hidden from the client; keep them in the log.
        logger.error(
            "%s on %s %s: %s %s",
            exc.error_code,
            request.method,
            request.url.path,
            exc.message,
            exc.details,
        )
    return JSONResponse(status_code=status, content=exc.to_dict())


def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 422 with validation error details."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": exc.errors(),
        },
    )


def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Return JSON for Starlette HTTP exceptions (status + detail)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "HTTP_ERROR", "message": exc.detail},
    )


def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return 500; include detail only when debug is True."""
    logger.exception("Unhandled exception: %s", exc)
    settings = get_settings()
    detail: Any = str(exc) if settings.debug else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": detail},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app.

    Call once after creating the app. Handlers: PosException (and
    subclasses), RequestValidationError, StarletteHTTPException, generic Exception.
    """
    app.add_exception_handler(PosException, _pos_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)
