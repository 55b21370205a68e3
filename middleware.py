# middleware.py
from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import set_request_id

logger = logging.getLogger("gasbridge.http")

REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def _route_template(request: Request) -> str:
    # metrics are labelled by template so intent ids do not explode cardinality
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:128] or str(uuid.uuid4())
        start = time.perf_counter()

        request.state.request_id = req_id
        set_request_id(req_id)

        response = None
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = req_id
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            status = getattr(response, "status_code", 500)
            increment_http_requests(_route_template(request), status)
            logger.info(
                "http_request_end request_id=%s method=%s path=%s status=%s duration_ms=%s",
                req_id,
                request.method,
                request.url.path,
                status,
                duration_ms,
            )
            set_request_id(None)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
