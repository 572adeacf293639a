"""
Error taxonomy for the allowlist API.

Every failure surfaced to a caller is an ``AppError`` carrying one of the
closed set of ``ErrorKind`` values, a stable machine-readable code and a
human-readable message. The FastAPI handlers registered here render it as
``{"requestId": ..., "error": {"code", "message", "details"}}``.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.middleware.logging import REQUEST_ID_HEADER, resolve_request_id

logger = logging.getLogger("app.errors")


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self]


_STATUS_BY_KIND = {
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppError(Exception):
    """Single tagged error type for every domain failure."""

    def __init__(
        self,
        kind: ErrorKind,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"AppError({self.kind.value}, {self.code!r}, {self.message!r})"


# ============= Exception Handlers =============


def error_response(
    request_id: str, error: Dict[str, Any], status_code: int, headers=None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"requestId": request_id, "error": error},
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    request_id = resolve_request_id(request)

    if exc.kind is ErrorKind.INTERNAL:
        logger.error(
            f"{exc.code}: {exc.message}",
            exc_info=exc.__cause__ is not None,
            extra={"path": request.url.path, "error_code": exc.code},
        )
    else:
        logger.info(
            f"Request rejected with {exc.code}",
            extra={"path": request.url.path, "error_code": exc.code},
        )

    headers = None
    if exc.kind is ErrorKind.UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    return error_response(request_id, exc.to_dict(), exc.status_code, headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    request_id = resolve_request_id(request)
    fields = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return error_response(
        request_id,
        {
            "code": "VALIDATION_FAILED",
            "message": "The request payload is not valid.",
            "details": {"fields": fields},
        },
        status.HTTP_400_BAD_REQUEST,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = resolve_request_id(request)
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return error_response(
        request_id,
        {
            "code": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred.",
        },
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        # Rendered outside the logging middleware, so the header is set here
        headers={REQUEST_ID_HEADER: request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_exception_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
