import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class RollbookError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class Unauthenticated(RollbookError):
    status_code = 401
    code = "UNAUTHENTICATED"


class Forbidden(RollbookError):
    status_code = 403
    code = "FORBIDDEN"


class ValidationError(RollbookError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(RollbookError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(RollbookError):
    status_code = 409
    code = "CONFLICT"


class StoreError(RollbookError):
    """Underlying persistence failed; surfaced as-is, never retried here."""

    status_code = 500
    code = "STORE_ERROR"


def _error_body(code: str, message: str, errors: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": message, "code": code}
    if errors:
        body["errors"] = errors
    return body


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RollbookError)
    async def rollbook_error_handler(request: Request, exc: RollbookError):
        if isinstance(exc, StoreError):
            logger.error(
                "Store failure on %s %s: %s",
                request.method,
                request.url.path,
                exc.message,
                exc_info=exc.__cause__ or exc,
            )
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message, exc.errors),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=ValidationError.status_code,
            content=_error_body(
                ValidationError.code,
                "Request payload is invalid.",
                jsonable_encoder(exc.errors()),
            ),
        )
