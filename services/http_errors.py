# services/http_errors.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.errors import GasBridgeError
from services.observability import get_request_id

logger = logging.getLogger("gasbridge.errors")


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg") or "invalid"
    return f"{loc}: {msg}" if loc else msg


async def gasbridge_error_handler(request: Request, exc: GasBridgeError) -> JSONResponse:
    level = logging.ERROR if exc.http_status >= 500 else logging.WARNING
    logger.log(
        level,
        "request failed request_id=%s path=%s code=%s status=%s intent_id=%s message=%s",
        get_request_id(),
        request.url.path,
        exc.code,
        exc.http_status,
        exc.intent_id,
        exc.message,
    )
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = _first_validation_message(exc)
    logger.info("request rejected request_id=%s path=%s message=%s", get_request_id(), request.url.path, message)
    return JSONResponse(
        status_code=400,
        content={"detail": {"error": "VALIDATION_ERROR", "message": message}},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error request_id=%s path=%s", get_request_id(), request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GasBridgeError, gasbridge_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
