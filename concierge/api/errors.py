"""
Maps domain exceptions to JSON error bodies: {"error": <code>, "message": <text>, ...}.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from concierge.config import get_settings
from concierge.core.errors import (
    AccessDenied,
    AuthenticationFailed,
    ConciergeError,
    ConflictError,
    NotFoundError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

_STATUS_BY_TYPE: list[tuple[type[ConciergeError], int]] = [
    (ValidationFailed, 400),
    (AuthenticationFailed, 401),
    (AccessDenied, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
]


def status_for(exc: ConciergeError) -> int:
    for exc_type, status_code in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def error_response(exc: ConciergeError) -> JSONResponse:
    status_code = status_for(exc)
    body = {"error": exc.code, "message": exc.message, **jsonable_encoder(exc.extra)}
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConciergeError)
    async def concierge_error_handler(request: Request, exc: ConciergeError):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_request",
                "message": "Invalid request data",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        try:
            code = HTTPStatus(exc.status_code).phrase.lower().replace(" ", "_")
        except ValueError:
            code = "error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": code, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        message = str(exc) if get_settings().debug else "Internal server error"
        return JSONResponse(status_code=500, content={"error": "internal_error", "message": message})
