"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


class LoginLinkRequest(BaseModel):
    """Request a one-time sign-in link by email."""

    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class LoginLinkVerifyRequest(BaseModel):
    """Exchange a one-time sign-in token for a session."""

    token: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    """Login with email + password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class UpdatePasswordRequest(BaseModel):
    """Set a new password. Both fields must match."""

    password: str = Field(..., min_length=1, max_length=128)
    password_confirm: str = Field(..., min_length=1, max_length=128)

    @model_validator(mode="after")
    def passwords_match(self) -> UpdatePasswordRequest:
        if self.password != self.password_confirm:
            msg = "Passwords do not match"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class RefreshRequest(BaseModel):
    """Refresh token rotation request."""

    refresh_token: str


class LogoutRequest(BaseModel):
    """Sign out. ``local`` ends this session, ``global`` ends every session of the user."""

    refresh_token: str
    scope: Literal["local", "global"] = "local"


class SessionUser(BaseModel):
    """The identity part of a session."""

    id: str
    email: str
    created_at: datetime | None = None
    last_login: datetime | None = None
    has_password: bool = False


class TokenResponse(BaseModel):
    """Session issued after successful auth."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 3600
    user: SessionUser
