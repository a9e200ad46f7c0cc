"""
FastAPI exception handlers for CalmNotesError and store failures.

Catches CalmNotesError, looks up the registry, and returns a structured
JSON error response. Unknown codes get a safe fallback.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from calmnotes.core.errors import CalmNotesError
from calmnotes.core.errors.registry import error_registry

logger = logging.getLogger(__name__)


def error_body(code: str, context: dict | None = None) -> tuple[int, dict]:
    """Build ``(http_status, body)`` for a registry code."""
    entry = error_registry.get(code)
    if entry is None:
        return 500, {
            "error": {
                "code": code,
                "title": "Internal error",
                "message": "An unexpected error occurred.",
                "retryable": False,
                "user_action_required": False,
                "remediation": [],
            }
        }
    return entry.http_status, {
        "error": {
            "code": entry.code,
            "title": entry.title,
            "message": entry.render_message(context or {}),
            "retryable": entry.retryable,
            "user_action_required": entry.user_action_required,
            "remediation": entry.remediation,
        }
    }


async def calmnotes_error_handler(request: Request, exc: CalmNotesError) -> JSONResponse:
    """Convert CalmNotesError into a structured JSON response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.detail},
        )
    else:
        log_extra = {
            "error.code": exc.code,
            "error.kind": type(exc).__name__,
            "error.message_safe": entry.safe_message,
            "error.message": exc.detail,
            "error.retryable": entry.retryable,
            "error.user_action_required": entry.user_action_required,
            **{f"error.ctx.{k}": v for k, v in exc.context.items()},
        }
        _severity_to_log_fn(entry.severity)(entry.title, extra=log_extra)

    status_code, body = error_body(exc.code, exc.context)
    return JSONResponse(status_code=status_code, content=body)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Surface store failures as a retryable DATABASE_UNAVAILABLE error."""
    logger.error(
        "database_error",
        extra={"error.kind": type(exc).__name__, "error.message": str(exc), "http.path": request.url.path},
    )
    status_code, body = error_body("DATABASE_UNAVAILABLE")
    return JSONResponse(status_code=status_code, content=body)


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
