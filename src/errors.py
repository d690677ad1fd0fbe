"""Application error types and their FastAPI exception handlers.

Every error leaves the API as ``{"status": ..., "message": ...}``. The
webhook endpoints build their own responses and never rely on these
handlers, so a delivery is only refused where the webhook contract says so.
"""

import logging
import traceback

import logfire
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.config import get_settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base exception carrying the HTTP status it maps to."""

    status_code = 500
    status = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestValidationFailed(AppError):
    """Raised when a request is missing or carries invalid parameters."""

    status_code = 400
    status = "validation_error"


class InstanceNotFoundError(AppError):
    """Raised when an Instagram instance does not exist."""

    status_code = 404
    status = "not_found"

    def __init__(self, instance_id: str):
        super().__init__(f"Instance not found: {instance_id}")
        self.instance_id = instance_id


class InstagramAPIError(AppError):
    """Raised when a call to the Instagram platform fails."""

    status_code = 502
    status = "upstream_error"

    def __init__(self, message: str, upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status


def _error_body(status: str, message: str) -> dict:
    return {"status": status, "message": message}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError, with the stack attached in local environments."""
    body = _error_body(exc.status, exc.message)

    if exc.status_code >= 500:
        logfire.error(
            "Request failed",
            path=request.url.path,
            status=exc.status,
            error=exc.message,
            error_type=type(exc).__name__,
        )

    if get_settings().env == "local" and exc.__cause__ is not None:
        body["stack"] = traceback.format_exception(exc.__cause__)

    return JSONResponse(status_code=exc.status_code, content=body)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report body/query validation failures as 400 validation_error."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error.get('msg')}")

    return JSONResponse(
        status_code=400,
        content=_error_body("validation_error", "; ".join(messages)),
    )


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render framework HTTP errors; unknown routes name the missing path."""
    if exc.status_code == 404:
        body = _error_body("not_found", f"Route not found: {request.url.path}")
    else:
        body = _error_body("error", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for exceptions nothing else caught."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_error_body("error", "Internal server error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the error handlers to the application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
