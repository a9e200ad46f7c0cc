"""
Auth Router — Register, Login, Logout, Current User
===================================================

    POST /api/auth/register — Create account, start a session (201)
    POST /api/auth/login    — Email/password → session cookie
    POST /api/auth/logout   — Revoke session, clear cookie
    GET  /api/auth/user     — Current user (no password hash)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from calmnotes.auth.session_auth import (
    CurrentUser,
    create_session,
    get_current_user,
    hash_password,
    revoke_session,
    verify_password,
)
from calmnotes.config import settings
from calmnotes.core.database import get_session
from calmnotes.core.rate_limiter import client_ip, login_rate_limiter
from calmnotes.models.auth import User
from calmnotes.models.schemas import LoginRequest, RegisterRequest, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSWORD_LENGTH = 8


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check_login_rate_limit(request: Request) -> None:
    """Rate limit login to 5 attempts per IP per 5 minutes."""
    retry_after = login_rate_limiter.check(client_ip(request))
    if retry_after is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Try again later.",
            headers={"Retry-After": str(int(retry_after) + 1)},
        )


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


# ---------------------------------------------------------------------------
# POST /api/auth/register
# ---------------------------------------------------------------------------

@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(body: RegisterRequest, response: Response, db: Session = Depends(get_session)):
    email = body.email.strip().lower()
    if not email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")

    if db.exec(select(User).where(User.email == email)).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(body.password),
        first_name=body.first_name or None,
        last_name=body.last_name or None,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    db.refresh(user)

    # Auto-login after registration
    _set_session_cookie(response, create_session(db, user.id))
    logger.info("User registered: user=%s", user.id)
    return user


# ---------------------------------------------------------------------------
# POST /api/auth/login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=UserResponse, summary="Login with email/password")
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_session),
):
    _check_login_rate_limit(request)

    user = db.exec(select(User).where(User.email == body.email.strip().lower())).first()
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login failed: ip=%s", client_ip(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    _set_session_cookie(response, create_session(db, user.id))
    logger.info("Login successful: user=%s", user.id)
    return user


# ---------------------------------------------------------------------------
# POST /api/auth/logout
# ---------------------------------------------------------------------------

@router.post("/logout", summary="Logout")
async def logout(response: Response, user: CurrentUser = Depends(get_current_user)):
    revoke_session(user.session_id)
    response.delete_cookie(settings.session_cookie_name)
    return {"message": "Logged out"}


# ---------------------------------------------------------------------------
# GET /api/auth/user
# ---------------------------------------------------------------------------

@router.get("/user", response_model=UserResponse, summary="Current user")
async def current_user(user: CurrentUser = Depends(get_current_user)):
    return user
