"""Session token and password helper tests."""

from datetime import datetime, timedelta, timezone

from calmnotes.auth.session_auth import (
    create_session,
    hash_password,
    parse_token,
    resolve_session,
    revoke_session,
    verify_password,
)
from calmnotes.core.database import get_session_context
from calmnotes.models.auth import AuthSession


class TestPasswords:
    def test_roundtrip(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_long_passwords_are_not_truncated(self):
        base = "x" * 80
        hashed = hash_password(base + "a")
        assert not verify_password(base + "b", hashed)


class TestTokens:
    def test_parse(self):
        assert parse_token("cn_abc123_s3cr_et") == ("abc123", "s3cr_et")

    def test_parse_rejects_malformed(self):
        assert parse_token("vz_abc_def") is None
        assert parse_token("cn_abc") is None
        assert parse_token("cn__secret") is None
        assert parse_token("") is None

    def test_create_and_resolve(self, make_user):
        user_id = make_user()
        with get_session_context() as session:
            token = create_session(session, user_id)
        user = resolve_session(token)
        assert user.id == user_id
        assert user.email == "clinician@example.com"

    def test_only_hash_is_stored(self, make_user):
        user_id = make_user()
        with get_session_context() as session:
            token = create_session(session, user_id)
        session_id, secret = parse_token(token)
        with get_session_context() as session:
            record = session.get(AuthSession, session_id)
            assert secret not in record.token_hash

    def test_tampered_secret_rejected(self, make_user):
        with get_session_context() as session:
            token = create_session(session, make_user())
        assert resolve_session(token[:-1] + ("A" if token[-1] != "A" else "B")) is None

    def test_expired_session_rejected(self, make_user):
        with get_session_context() as session:
            token = create_session(session, make_user())
        session_id, _ = parse_token(token)
        with get_session_context() as session:
            record = session.get(AuthSession, session_id)
            record.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
            session.add(record)
            session.commit()
        assert resolve_session(token) is None

    def test_revoked_session_rejected(self, make_user):
        with get_session_context() as session:
            token = create_session(session, make_user())
        revoke_session(parse_token(token)[0])
        assert resolve_session(token) is None
