"""Typed errors raised by the participation services.

Each error carries the HTTP status the boundary layer answers with, so
routers never translate them by hand; ``register_error_handlers`` wires a
single handler onto the application.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ClassTrackError(Exception):
    """Base class for all participation tracking errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(ClassTrackError):
    """Malformed input, e.g. negative or non-integer points."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input"


class AuthorizationError(ClassTrackError):
    """Role or ownership mismatch."""

    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not authorized"


class NotFoundError(ClassTrackError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class DuplicateStateError(ClassTrackError):
    """A second open participation request for the same student."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "You already have an active participation request"


class InvalidStudentError(ValidationError):
    default_detail = "Invalid student ID"


class InternalError(ClassTrackError):
    """Storage failure."""


class TransportError(ClassTrackError):
    """Realtime connection lost. Only the client reconnect loop sees this."""

    default_detail = "Realtime connection lost"


async def classtrack_error_handler(request: Request, exc: ClassTrackError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        detail = "Something went wrong, please retry"
    else:
        detail = exc.detail
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in errors
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": message or "Invalid request"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ClassTrackError, classtrack_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
