"""
errors.py - Map every failure onto the ``{success, message, ...}`` envelope
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("institute.errors")

_DEFAULT_MESSAGES = {
    401: "Authentication required.",
    403: "Access denied.",
    404: "Resource not found.",
    405: "Method not allowed.",
}


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    body: dict = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
    else:
        body["message"] = exc.detail or _DEFAULT_MESSAGES.get(exc.status_code, "Request failed.")
    if exc.status_code == 404 and exc.detail == "Not Found":
        body["message"] = "API endpoint not found"
        body["path"] = request.url.path
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation error",
            "error": f"{loc}: {first.get('msg', 'invalid input')}" if loc else first.get("msg", "invalid input"),
        },
    )


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit exceeded on %s from %s", request.url.path,
                   request.client.host if request.client else "unknown")
    # The full window length; the counter is guaranteed to have reset by then
    retry_after = exc.limit.limit.get_expiry()
    return JSONResponse(
        status_code=429,
        content={"success": False, "message": f"Too many requests: {exc.detail}. Please try again later."},
        headers={"Retry-After": str(retry_after)},
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
