"""Error taxonomy shared by the HTTP and live-connection surfaces."""
from __future__ import annotations

import logging

from fastapi import status
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class TaskHubError(Exception):
    """Base class for failures that map onto a client-visible reason."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    reason: str = "internal_error"
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.detail, "reason": self.reason}


class Unauthenticated(TaskHubError):
    status_code = status.HTTP_401_UNAUTHORIZED
    reason = "unauthenticated"
    default_detail = "Not authenticated"


class Forbidden(TaskHubError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = "forbidden"
    default_detail = "Access denied"


class NotFound(TaskHubError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = "not_found"
    default_detail = "Not found"


class Conflict(TaskHubError):
    status_code = status.HTTP_409_CONFLICT
    reason = "conflict"
    default_detail = "Conflict"


class ValidationFailure(TaskHubError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    reason = "validation_failure"
    default_detail = "Invalid payload"


class StorageFailure(TaskHubError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    reason = "storage_failure"
    default_detail = "Storage unavailable"


def error_response(exc: TaskHubError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def taskhub_error_handler(request: Request, exc: TaskHubError) -> JSONResponse:
    """Render domain errors as ``{"detail", "reason"}`` JSON bodies."""

    if exc.status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.detail)
    return error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body and query validation errors with a machine-readable reason."""

    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        {"detail": errors, "reason": ValidationFailure.reason},
        status_code=ValidationFailure.status_code,
    )
