"""
Domain exceptions and their HTTP mapping.

Services raise these; routes let them propagate and the handlers registered
in ``register_error_handlers`` turn them into JSON responses.
"""
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AbordoError(Exception):
    status_code = 500

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(AbordoError):
    """Caller-supplied data is malformed or missing. Rejected before any write."""
    status_code = 400


class NotFoundError(AbordoError):
    """Referenced row does not exist or is not owned by the requesting user."""
    status_code = 404


class AuthenticationError(AbordoError):
    """Missing, expired or invalid credentials."""
    status_code = 401


class ConflictError(AbordoError):
    status_code = 409


class SyncError(AbordoError):
    """Notification projection could not be refreshed after a source write.

    Logged only; never surfaced as a failure of the originating mutation.
    """


class TransportError(AbordoError):
    """Mail provider rejected or failed to deliver a message."""
    status_code = 502


class ServiceUnavailableError(AbordoError):
    """A feature is switched off or its backend is not configured."""
    status_code = 503


def _handle(request: Request, exc: AbordoError) -> JSONResponse:
    if exc.status_code >= 500:
        structlog.get_logger().error("domain_error", status=exc.status_code, error=exc.message, path=request.url.path)
    body = {"detail": exc.message}
    if exc.detail:
        body.update(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AbordoError, _handle)
