"""
Session tokens.

An access token authenticates API calls and reveal sockets. A refresh token
also carries a ``jti``; the database row with that id decides whether the
session is still alive. HS* algorithms sign with ``jwt_secret``, RS* ones with
the PEM key pair named in the settings.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

import jwt

from rankshare.config import get_settings

ACCESS = "access"
REFRESH = "refresh"


@lru_cache(maxsize=4)
def _keys(algorithm: str, secret: str, private_path: str, public_path: str) -> tuple[str, str]:
    """(signing key, verification key) for one key configuration."""
    if algorithm.upper().startswith("HS"):
        return secret, secret
    return Path(private_path).read_text(), Path(public_path).read_text()


def _current_keys() -> tuple[str, str]:
    settings = get_settings()
    return _keys(
        settings.jwt_algorithm,
        settings.jwt_secret,
        settings.jwt_private_key_path,
        settings.jwt_public_key_path,
    )


def _encode(user_id: str, email: str, token_type: str, lifetime: timedelta, **claims: Any) -> str:  # noqa: ANN401
    settings = get_settings()
    signing_key, _ = _current_keys()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": now + lifetime,
        "iss": settings.jwt_issuer,
        "type": token_type,
        **claims,
    }
    return jwt.encode(payload, signing_key, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, email: str) -> str:
    """Short-lived bearer token. ``email`` is echoed so clients can show it without a lookup."""
    minutes = get_settings().jwt_access_token_expire_minutes
    return _encode(user_id, email, ACCESS, timedelta(minutes=minutes))


def create_refresh_token(user_id: str, email: str, *, token_id: str) -> str:
    """Long-lived token whose ``jti`` is the id of its ``refresh_tokens`` row."""
    days = get_settings().jwt_refresh_token_expire_days
    return _encode(user_id, email, REFRESH, timedelta(days=days), jti=token_id)


def verify_token(token: str, expected_type: str = ACCESS) -> dict[str, Any]:
    """
    Decode a token issued by this service and check its type.

    Raises:
        jwt.InvalidTokenError: Bad signature or issuer, expired, or the wrong type.
    """
    settings = get_settings()
    _, verification_key = _current_keys()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            verification_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)
    return payload
