"""
FastAPI middleware for request/correlation ID injection.

Injects request_id and correlation_id into contextvars so structlog
processors include them in every log entry, and writes one access line per
request carrying the route template and the authenticated user (set on
``request.state`` by the session dependency).
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from calmnotes.core.structured_logging import correlation_id_var, request_id_var

logger = logging.getLogger(__name__)

# Liveness checks poll these every few seconds; their access lines go to DEBUG.
QUIET_PATHS = frozenset({"/api/health", "/api/health/ready"})


def route_template(request: Request) -> str:
    """``/api/notes/{note_id}`` rather than ``/api/notes/42`` when a route matched."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Inject request_id / correlation_id into contextvars for every request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        corr_id = request.headers.get("x-correlation-id") or uuid.uuid4().hex

        rid_token = request_id_var.set(req_id)
        cid_token = correlation_id_var.set(corr_id)
        # Shared with the endpoint's Request so the session dependency can report the user.
        request.state.user_id = None

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
            logger.log(
                level,
                "request_completed",
                extra={
                    "http.method": request.method,
                    "http.path_template": route_template(request),
                    "http.status_code": response.status_code if response else None,
                    "duration_ms": duration_ms,
                    "user_id": request.state.user_id,
                },
            )
            request_id_var.reset(rid_token)
            correlation_id_var.reset(cid_token)

        response.headers["x-request-id"] = req_id
        response.headers["x-correlation-id"] = corr_id
        return response
