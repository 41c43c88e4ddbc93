"""
Exception handlers for FastAPI.
"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from incident_intake.core.exceptions import (
    IntakeError,
    PersistenceError,
    ExternalAPIError,
    ValidationError,
    NotFoundError,
    ConfigurationError,
)
from incident_intake.services.llm.errors import LLMError, RateLimitError

logger = logging.getLogger(__name__)


async def intake_exception_handler(request: Request, exc: IntakeError) -> JSONResponse:
    """Handler for all application exceptions."""
    status_code = 500
    error_type = exc.__class__.__name__

    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, ExternalAPIError):
        status_code = 502
    elif isinstance(exc, PersistenceError):
        status_code = 503
    elif isinstance(exc, ConfigurationError):
        status_code = 500

    logger.error(
        f"{error_type}: {exc.message}",
        extra={"extra_fields": {"error_type": error_type, "details": exc.details, "path": request.url.path}},
    )

    return JSONResponse(
        status_code=status_code,
        content={"error": error_type, "message": exc.message, "details": exc.details},
    )


async def llm_exception_handler(request: Request, exc: LLMError) -> JSONResponse:
    """AI provider errors that escaped the selector."""
    status_code = 429 if isinstance(exc, RateLimitError) else 502
    error_type = exc.__class__.__name__
    logger.error(
        f"{error_type}: {exc}",
        extra={"extra_fields": {"error_type": error_type, "provider": exc.provider, "path": request.url.path}},
    )

    return JSONResponse(
        status_code=status_code,
        content={"error": error_type, "message": str(exc), "details": {"provider": exc.provider}},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(f"Unhandled error: {exc}", extra={"extra_fields": {"path": request.url.path}})

    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "Internal server error",
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers on the app.

    Usage:
        from incident_intake.api.error_handlers import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(IntakeError, intake_exception_handler)
    app.add_exception_handler(LLMError, llm_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
