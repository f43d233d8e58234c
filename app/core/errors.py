"""Render every failure as ``{"code", "message", "data": null, "details"}``."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.crypto import DecryptionError
from app.core.exceptions import AuthError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    429: "rate_limited",
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    *,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = {"code": code, "message": message, "data": None, "details": details or {}}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return error_response(exc.status_code, exc.code, exc.message, headers=headers)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, str):
        message = exc.detail
    else:
        try:
            message = HTTPStatus(exc.status_code).phrase
        except ValueError:
            message = "Request failed"
    return error_response(
        exc.status_code,
        _HTTP_CODES.get(exc.status_code, "http_error"),
        message,
        headers=getattr(exc, "headers", None),
    )


def _field_path(loc: Any) -> str:
    return ".".join(str(part) for part in (loc or []) if part not in {"body", "query", "path"})


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Only location, message and type: request bodies carry passwords and codes.
    fields = [
        {"field": _field_path(err.get("loc")), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    message = "Validation failed"
    if fields:
        first = fields[0]
        message = f"{first['field']}: {first['msg']}" if first["field"] else str(first["msg"])
    return error_response(422, "validation_error", message, details={"errors": fields})


async def handle_rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s", request.url.path)
    return error_response(429, "rate_limited", "Too many requests. Try again later.")


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, DecryptionError):
        logger.error("Stored MFA material could not be decrypted on %s", request.url.path)
    else:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    handlers = (
        (AuthError, handle_auth_error),
        (StarletteHTTPException, handle_http_exception),
        (RequestValidationError, handle_validation_error),
        (RateLimitExceeded, handle_rate_limit),
        (Exception, handle_unexpected),
    )
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)
