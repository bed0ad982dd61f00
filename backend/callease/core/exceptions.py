"""Domain exceptions and their HTTP mapping."""

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from callease.core.config import settings

logger = structlog.get_logger()

REDACTED_MESSAGE = "Something went wrong!"


class CallEaseError(Exception):
    """Base exception for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(CallEaseError):
    """Missing or malformed request input."""

    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(CallEaseError):
    """Caller is authenticated but not allowed to act on the resource."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(CallEaseError):
    """Unknown identifier."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(CallEaseError):
    """Control action requested from a state that does not allow it."""

    status_code = status.HTTP_400_BAD_REQUEST


class ControlUnavailableError(CallEaseError):
    """The provider has not supplied a control handle for the call yet."""

    status_code = status.HTTP_409_CONFLICT


class UpstreamError(CallEaseError):
    """A provider request failed or timed out."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class PersistenceError(CallEaseError):
    """A database write failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_body(message: str, status_code: int) -> dict[str, str]:
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR and not settings.DEBUG:
        return {"detail": REDACTED_MESSAGE}
    return {"detail": message}


async def callease_error_handler(request: Request, exc: CallEaseError) -> JSONResponse:
    """Render a CallEaseError as JSON, redacting 5xx details outside DEBUG."""
    log = logger.bind(path=request.url.path, error_type=type(exc).__name__, **exc.context)
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        log.error("request_failed", error=exc.message)
    else:
        log.info("request_rejected", status_code=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.status_code))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unexpected exceptions."""
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(str(exc) or REDACTED_MESSAGE, status.HTTP_500_INTERNAL_SERVER_ERROR),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the domain exception handlers to the app."""
    app.add_exception_handler(CallEaseError, callease_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
