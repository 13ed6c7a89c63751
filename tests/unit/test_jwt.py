"""Tests for JWT session tokens."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from rankshare.auth.jwt import create_access_token, create_refresh_token, verify_token
from rankshare.config import get_settings


def test_access_token_round_trip():
    payload = verify_token(create_access_token("user-1", "a@example.com"))
    assert payload["sub"] == "user-1"
    assert payload["email"] == "a@example.com"
    assert payload["type"] == "access"
    assert payload["iss"] == "rankshare"


def test_refresh_token_carries_jti():
    token = create_refresh_token("user-1", "a@example.com", token_id="jti-1")
    payload = verify_token(token, expected_type="refresh")
    assert payload["jti"] == "jti-1"


def test_wrong_type_rejected():
    token = create_refresh_token("user-1", "a@example.com", token_id="jti-1")
    with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
        verify_token(token, expected_type="access")


def test_tampered_token_rejected():
    token = create_access_token("user-1", "a@example.com")
    with pytest.raises(jwt.InvalidTokenError):
        verify_token(token[:-4] + "AAAA")


def test_foreign_signature_rejected():
    forged = jwt.encode(
        {"sub": "user-1", "type": "access", "iss": "rankshare"}, "another-secret", algorithm="HS256"
    )
    with pytest.raises(jwt.InvalidTokenError):
        verify_token(forged)


def test_expired_token_rejected():
    settings = get_settings()
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    expired = jwt.encode(
        {"sub": "user-1", "type": "access", "iss": settings.jwt_issuer, "iat": past, "exp": past},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(jwt.InvalidTokenError, match="Token has expired"):
        verify_token(expired)
