"""
CalmNotes Application Configuration
===================================

PURPOSE:
    Pydantic-Settings based configuration for the CalmNotes backend.
    All settings can be overridden via environment variables (CALMNOTES_ prefix).

    Stripe and OpenAI keys are optional: when unset the corresponding
    endpoints answer with a service-unavailable error instead of crashing.
"""

import logging
import secrets
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="CALMNOTES_", extra="ignore")

    app_name: str = "CalmNotes"
    debug: bool = False
    environment: Literal["development", "production", "test"] = "production"

    # Persistent state
    data_directory: str = "/data"
    database_url: Optional[str] = None  # falls back to DATABASE_URL, then SQLite in data_directory

    # Session auth
    # HMAC pepper for session token hashing. Auto-generated (ephemeral) when unset.
    session_secret: Optional[str] = None
    session_ttl_days: int = 7
    session_cookie_name: str = "calmnotes_session"
    session_cookie_secure: bool = True

    # Rate limiting (per client IP, applies to /api)
    api_rate_limit: int = 100
    api_rate_window_s: int = 15 * 60
    login_rate_limit: int = 5
    login_rate_window_s: int = 5 * 60

    # Stripe billing
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_id_pro: Optional[str] = None
    stripe_price_id_team: Optional[str] = None

    # Public URL used for Stripe success/cancel/return redirects.
    # When unset, derived from the incoming request.
    base_url: Optional[str] = None

    # Note generation
    openai_api_key: Optional[str] = None
    llm_model: str = "gpt-4o"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1500

    # Logging
    log_dir: str = "logs"

    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:5000"]

    def get_session_secret(self) -> str:
        """Return the session HMAC secret, auto-generating if not set.

        Auto-generated secrets do not survive restarts, which logs every
        user out. Set CALMNOTES_SESSION_SECRET in production.
        """
        if self.session_secret:
            return self.session_secret

        logger.warning(
            "SESSION_SECRET not set, auto-generating ephemeral secret. "
            "All sessions are invalidated on restart. Set CALMNOTES_SESSION_SECRET in production."
        )
        self.session_secret = secrets.token_hex(32)
        return self.session_secret


settings = Settings()

if not settings.stripe_secret_key:
    logger.warning("CALMNOTES_STRIPE_SECRET_KEY not set, billing features disabled")
