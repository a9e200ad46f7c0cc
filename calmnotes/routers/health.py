"""
Health check endpoints.

- GET /api/health        — cheap: process alive, version, uptime
- GET /api/health/ready  — database reachable (SELECT 1)
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from calmnotes.config import settings
from calmnotes.core.database import get_session_context
from calmnotes.core.structured_logging import APP_VERSION, SERVICE_NAME, get_uptime_s
from calmnotes.services.billing_service import billing_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Cheap health check — no network calls."""
    return {
        "status": "ok",
        "version": APP_VERSION,
        "service": SERVICE_NAME,
        "uptime_s": round(get_uptime_s(), 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check():
    components = {
        "billing": "configured" if billing_service.configured else "disabled",
        "llm": "configured" if settings.openai_api_key else "disabled",
    }
    try:
        with get_session_context() as session:
            session.execute(text("SELECT 1"))
        components["database"] = "ok"
    except SQLAlchemyError as exc:
        logger.error("Readiness check failed: database error=%s", exc)
        components["database"] = "down"
        return JSONResponse(status_code=503, content={"status": "down", "components": components})

    return {"status": "ok", "components": components}
