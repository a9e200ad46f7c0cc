"""
Session Cookie Authentication
=============================

Email/password accounts with server-side sessions.

Cookie token format: ``cn_<session_id>_<secret>``
    - session_id: 16-char alphanumeric, primary key of ``auth_sessions``
    - secret: random, NEVER stored — only its HMAC-SHA256 is stored
    - HMAC uses CALMNOTES_SESSION_SECRET

Sessions expire ``session_ttl_days`` after login and are revoked on logout.
"""

import base64
import hashlib
import hmac
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
from fastapi import HTTPException, Request, status
from pydantic import BaseModel
from sqlmodel import Session, select

from calmnotes.config import settings
from calmnotes.core.database import get_session_context
from calmnotes.core.structured_logging import user_id_var
from calmnotes.models.auth import AuthSession, User
from calmnotes.services.usage_ledger import as_utc

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "cn"


class CurrentUser(BaseModel):
    """Authenticated user resolved from the session cookie."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    session_id: str

    @property
    def display_name(self) -> Optional[str]:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

def _prepare_password(password: str) -> bytes:
    """Pre-hash password with SHA-256 to handle bcrypt's 72-byte limit."""
    return base64.b64encode(hashlib.sha256(password.encode()).digest())


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_prepare_password(password), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_prepare_password(password), password_hash.encode())


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

def hmac_hash_secret(secret: str) -> str:
    """HMAC-SHA256 hash a session secret using the configured session secret."""
    hmac_key = settings.get_session_secret().encode()
    return hmac.new(hmac_key, secret.encode(), hashlib.sha256).hexdigest()


def _generate_session_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(16))


def parse_token(token: str) -> Optional[Tuple[str, str]]:
    """Parse a ``cn_<session_id>_<secret>`` token. Returns (session_id, secret) or None."""
    if not token or not token.startswith(f"{TOKEN_PREFIX}_"):
        return None
    parts = token.split("_", 2)
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


def create_session(session: Session, user_id: str) -> str:
    """Persist a new login session and return the cookie token."""
    session_id = _generate_session_id()
    secret = secrets.token_urlsafe(32)
    now = datetime.now(timezone.utc)
    record = AuthSession(
        id=session_id,
        user_id=user_id,
        token_hash=hmac_hash_secret(secret),
        created_at=now,
        expires_at=now + timedelta(days=settings.session_ttl_days),
    )
    session.add(record)
    session.commit()
    logger.info("Session created: user=%s session=%s", user_id, session_id)
    return f"{TOKEN_PREFIX}_{session_id}_{secret}"


def resolve_session(token: str) -> Optional[CurrentUser]:
    """Validate a cookie token. Returns None for unknown, expired or revoked sessions."""
    parsed = parse_token(token)
    if not parsed:
        return None
    session_id, secret = parsed

    with get_session_context() as session:
        record = session.get(AuthSession, session_id)
        if record is None or record.revoked_at is not None:
            return None
        if not hmac.compare_digest(record.token_hash, hmac_hash_secret(secret)):
            return None
        if as_utc(record.expires_at) <= datetime.now(timezone.utc):
            return None

        user = session.get(User, record.user_id)
        if user is None:
            return None

        return CurrentUser(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            session_id=session_id,
        )


def revoke_session(session_id: str) -> None:
    with get_session_context() as session:
        record = session.get(AuthSession, session_id)
        if record is None or record.revoked_at is not None:
            return
        record.revoked_at = datetime.now(timezone.utc)
        session.add(record)
        session.commit()
    logger.info("Session revoked: session=%s", session_id)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

async def get_current_user(request: Request) -> CurrentUser:
    """Resolve the session cookie or answer 401."""
    token = request.cookies.get(settings.session_cookie_name)
    user = resolve_session(token) if token else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    user_id_var.set(user.id)
    request.state.user_id = user.id
    return user
