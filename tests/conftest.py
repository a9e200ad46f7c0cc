"""
Pytest configuration for CalmNotes tests.
Points settings at a temp data directory and fake Stripe credentials.
"""

import hashlib
import hmac
import json
import os
import tempfile
import time

# Must be set before any calmnotes imports (settings are read at import time)
_test_data_dir = tempfile.mkdtemp(prefix="calmnotes_test_")
os.environ["CALMNOTES_ENVIRONMENT"] = "test"
os.environ["CALMNOTES_DATA_DIRECTORY"] = _test_data_dir
os.environ["CALMNOTES_DATABASE_URL"] = f"sqlite:///{_test_data_dir}/test.db"
os.environ["CALMNOTES_LOG_DIR"] = os.path.join(_test_data_dir, "logs")
os.environ["CALMNOTES_SESSION_SECRET"] = "test-session-secret"
os.environ["CALMNOTES_SESSION_COOKIE_SECURE"] = "false"
os.environ["CALMNOTES_STRIPE_SECRET_KEY"] = "sk_test_calmnotes"
os.environ["CALMNOTES_STRIPE_WEBHOOK_SECRET"] = "whsec_test_calmnotes"
os.environ["CALMNOTES_STRIPE_PRICE_ID_PRO"] = "price_pro_test"
os.environ["CALMNOTES_STRIPE_PRICE_ID_TEAM"] = "price_team_test"
os.environ["CALMNOTES_BASE_URL"] = "http://calmnotes.test"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from calmnotes.core.database import get_engine, get_session_context

# Import all models so their tables are registered on SQLModel.metadata
from calmnotes.models.auth import AuthSession, User  # noqa: F401
from calmnotes.models.billing import SubscriptionRecord, UsageRecord  # noqa: F401
from calmnotes.models.note import Note  # noqa: F401

SQLModel.metadata.create_all(get_engine())

# Load error registry so CalmNotesError returns correct HTTP status codes
from calmnotes.core.errors.registry import error_registry
error_registry.load()

WEBHOOK_SECRET = os.environ["CALMNOTES_STRIPE_WEBHOOK_SECRET"]


@pytest.fixture(autouse=True)
def _clean_state():
    """Empty every table and reset rate limiters between tests."""
    from calmnotes.core.rate_limiter import api_rate_limiter, login_rate_limiter

    api_rate_limiter.reset()
    login_rate_limiter.reset()
    yield
    with get_session_context() as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()


@pytest.fixture
def client(monkeypatch):
    """TestClient for the full app. Tables already exist, so Alembic is skipped."""
    monkeypatch.setattr("calmnotes.core.database._run_alembic_upgrade", lambda: None)
    from calmnotes.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user():
    """Insert a user row directly and return its id."""
    from calmnotes.auth.session_auth import hash_password

    def _make(email: str = "clinician@example.com", password: str = "password123") -> str:
        user = User(email=email, password_hash=hash_password(password))
        with get_session_context() as session:
            session.add(user)
            session.commit()
            return user.id

    return _make


@pytest.fixture
def auth_client(client):
    """TestClient with a registered, logged-in user. ``client.user_id`` holds the id."""
    response = client.post(
        "/api/auth/register",
        json={"email": "therapist@example.com", "password": "password123", "firstName": "Ada"},
    )
    assert response.status_code == 201
    client.user_id = response.json()["id"]
    return client


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test") -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode()


@pytest.fixture
def sign():
    """``Stripe-Signature`` header builder for a raw payload."""
    return sign_payload


@pytest.fixture
def verified():
    """Turn a raw event into a ``VerifiedWebhookEvent`` through real signature checking."""
    from calmnotes.services.webhook_reconciler import verify_event

    def _verify(event_type: str, obj: dict, event_id: str = "evt_test"):
        payload = stripe_event(event_type, obj, event_id)
        return verify_event(payload, sign_payload(payload), WEBHOOK_SECRET)

    return _verify


@pytest.fixture
def signed_webhook():
    """Build ``(body, headers)`` for POST /api/webhooks/stripe."""

    def _build(event_type: str, obj: dict, event_id: str = "evt_test", secret: str = WEBHOOK_SECRET):
        payload = stripe_event(event_type, obj, event_id)
        headers = {"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"}
        return payload, headers

    return _build
