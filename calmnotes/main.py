from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from calmnotes.config import settings
from calmnotes.core.database import close_db, init_db
from calmnotes.core.errors import CalmNotesError
from calmnotes.core.errors.middleware import calmnotes_error_handler, database_error_handler
from calmnotes.core.errors.registry import error_registry
from calmnotes.core.log_middleware import CorrelationMiddleware
from calmnotes.core.rate_limiter import RateLimitMiddleware
from calmnotes.core.structured_logging import APP_VERSION, setup_logging
from calmnotes.routers import auth, billing, health, notes, webhooks

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_dir)

logger = logging.getLogger(__name__)

API_TITLE = "CalmNotes API"

TAGS_METADATA = [
    {"name": "health", "description": "Liveness and readiness checks. No authentication required."},
    {"name": "auth", "description": "Email/password accounts and cookie sessions."},
    {"name": "notes", "description": "Clinical session notes and AI generation. **Requires session.**"},
    {"name": "billing", "description": "Plans, subscription status, Stripe Checkout and portal. **Requires session.**"},
    {"name": "webhooks", "description": "Stripe webhook receiver. Authenticated by Stripe signature."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting CalmNotes API v%s (%s)...", APP_VERSION, settings.environment)

    error_registry.load()
    init_db()  # Alembic upgrade head
    logger.info("Database initialized")

    yield

    logger.info("Shutting down CalmNotes API...")
    close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Added last runs first: correlation ids wrap rate limiting wraps CORS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(CalmNotesError, calmnotes_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(notes.router, prefix="/api/notes", tags=["notes"])
    app.include_router(billing.router, prefix="/api/billing", tags=["billing"])
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("calmnotes.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
