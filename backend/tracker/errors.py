from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class TrackerError(HTTPException):
    """Base class for errors raised by the service layer."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message


class ValidationError(TrackerError):
    status_code_default = status.HTTP_400_BAD_REQUEST


class NotFoundError(TrackerError):
    status_code_default = status.HTTP_404_NOT_FOUND


class AlreadyStoppedError(NotFoundError):
    pass


class StorageError(TrackerError):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item not in ("body", "query", "path"))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse({"message": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            {"message": _describe_validation_errors(exc)},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(SQLAlchemyError)
    async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("%s %s failed: storage error", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            {"message": "Storage error."},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


__all__ = [
    "AlreadyStoppedError",
    "NotFoundError",
    "StorageError",
    "TrackerError",
    "ValidationError",
    "install_exception_handlers",
]
