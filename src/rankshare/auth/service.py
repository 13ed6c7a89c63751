"""
Authentication business logic.

Handles account creation, one-time sign-in links, password sign-in with
lockout, and refresh-token rotation and revocation.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select, update

from rankshare.auth.password import (
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from rankshare.config import get_settings
from rankshare.db.models import LoginLink, RefreshToken, User

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class SessionMissingError(LookupError):
    """The presented refresh token does not map to a live session."""


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest used to store tokens without keeping them in clear."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


def _as_utc(value: datetime) -> datetime:
    """SQLite hands timestamps back naive; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch a user by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, email: str) -> tuple[User, bool]:
    """
    Get the account for an email, creating it on first sign-in.

    Returns:
        Tuple of (user, created) where created is True if a new user was made.
    """
    user = await get_user_by_email(db, email)
    if user is not None:
        return user, False

    user = User(email=email.lower().strip(), created_at=datetime.now(timezone.utc))
    db.add(user)
    await db.flush()
    logger.info("user_created", user_id=user.id, method="link")
    return user, True


def record_login(user: User) -> None:
    """Update login metadata on a successful sign-in."""
    user.last_login = datetime.now(timezone.utc)
    user.login_count = (user.login_count or 0) + 1


# ---------------------------------------------------------------------------
# Password sign-in
# ---------------------------------------------------------------------------


async def authenticate_password_user(
    db: AsyncSession,
    redis: Redis,
    email: str,
    password: str,
) -> User:
    """
    Authenticate a user with email + password.

    Raises:
        ValueError: If credentials are invalid.
        PermissionError: If account is locked or banned.
    """
    user = await get_user_by_email(db, email)
    if user is None or user.password_hash is None:
        msg = "Invalid email or password"
        raise ValueError(msg)

    if await check_account_lockout(redis, user.id):
        msg = "Account temporarily locked. Try again later."
        raise PermissionError(msg)

    if user.is_banned:
        msg = "Account is banned"
        raise PermissionError(msg)

    if not verify_password(password, user.password_hash):
        await increment_failed_login(redis, user.id)
        msg = "Invalid email or password"
        raise ValueError(msg)

    await clear_failed_login(redis, user.id)
    record_login(user)
    await db.flush()

    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        await db.flush()
        logger.info("password_rehashed", user_id=user.id)

    return user


async def set_password(db: AsyncSession, user: User, new_password: str) -> None:
    """
    Set or replace the account password.

    Raises:
        PasswordStrengthError: If the password is too weak.
    """
    validate_password_strength(new_password, email=user.email)
    user.password_hash = hash_password(new_password)
    await db.flush()
    logger.info("password_updated", user_id=user.id)


# ---------------------------------------------------------------------------
# Account lockout
# ---------------------------------------------------------------------------


async def check_account_lockout(redis: Redis, user_id: str) -> bool:
    """Check if the account is locked due to too many failed login attempts."""
    settings = get_settings()
    count_str = await redis.get(f"login_attempts:{user_id}")
    if count_str is None:
        return False
    return int(count_str) >= settings.account_lockout_threshold


async def increment_failed_login(redis: Redis, user_id: str) -> int:
    """Increment failed login counter. Returns the new count."""
    settings = get_settings()
    key = f"login_attempts:{user_id}"
    count = await redis.incr(key)
    if count == 1:
        await redis.expire(key, settings.account_lockout_duration_minutes * 60)
    return int(count)


async def clear_failed_login(redis: Redis, user_id: str) -> None:
    """Clear the failed login counter after a successful login."""
    await redis.delete(f"login_attempts:{user_id}")


# ---------------------------------------------------------------------------
# One-time sign-in links
# ---------------------------------------------------------------------------


async def create_login_link(db: AsyncSession, user_id: str) -> str:
    """
    Create a one-time sign-in token.

    Returns the raw token to email to the user. Earlier unused links for the
    same user are invalidated.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    raw_token = secrets.token_urlsafe(48)

    await db.execute(
        update(LoginLink)
        .where(LoginLink.user_id == user_id)
        .where(LoginLink.used_at == None)  # noqa: E711
        .values(used_at=now)
    )

    db.add(
        LoginLink(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            created_at=now,
            expires_at=now + timedelta(minutes=settings.login_link_ttl_minutes),
        )
    )
    await db.flush()
    return raw_token


async def consume_login_link(db: AsyncSession, raw_token: str) -> User:
    """
    Redeem a one-time sign-in token.

    The link is claimed with a conditional UPDATE so only one of several
    concurrent redemptions can succeed.

    Raises:
        ValueError: If the token is unknown, expired, or already used.
    """
    token_hash = hash_token(raw_token)
    now = datetime.now(timezone.utc)
    claimed = await db.execute(
        update(LoginLink)
        .where(LoginLink.token_hash == token_hash)
        .where(LoginLink.used_at == None)  # noqa: E711
        .where(LoginLink.expires_at > now)
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        select(LoginLink).where(LoginLink.token_hash == token_hash).execution_options(populate_existing=True)
    )
    link = result.scalar_one_or_none()

    if claimed.rowcount != 1:
        if link is None:
            msg = "Invalid or expired sign-in link"
        elif _as_utc(link.expires_at) <= now:
            msg = "Sign-in link has expired"
        else:
            msg = "Sign-in link has already been used"
        raise ValueError(msg)

    user = await get_user_by_id(db, link.user_id)
    if user is None:
        msg = "Invalid or expired sign-in link"
        raise ValueError(msg)
    record_login(user)
    await db.flush()
    return user


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


async def store_refresh_token(
    db: AsyncSession,
    user_id: str,
    token_id: str,
    token_hash: str,
    expires_at: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> RefreshToken:
    """Store a refresh token hash in the database."""
    token = RefreshToken(
        id=token_id,
        user_id=user_id,
        token_hash=token_hash,
        issued_at=datetime.now(timezone.utc),
        expires_at=expires_at,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(token)
    await db.flush()
    return token


async def get_refresh_token(db: AsyncSession, token_id: str) -> RefreshToken | None:
    """Look up a refresh token by its JTI."""
    result = await db.execute(select(RefreshToken).where(RefreshToken.id == token_id))
    return result.scalar_one_or_none()


async def rotate_refresh_token(
    db: AsyncSession,
    old_token: RefreshToken,
    new_token_id: str,
    new_token_hash: str,
    new_expires_at: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> RefreshToken:
    """Revoke old token and create a new one (rotation)."""
    old_token.is_revoked = True
    old_token.revoked_at = datetime.now(timezone.utc)
    old_token.replaced_by = new_token_id

    new_token = await store_refresh_token(
        db,
        user_id=old_token.user_id,
        token_id=new_token_id,
        token_hash=new_token_hash,
        expires_at=new_expires_at,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await db.flush()
    return new_token


async def get_live_refresh_token(db: AsyncSession, token_id: str) -> RefreshToken:
    """
    Return the refresh token only if it still backs a session.

    Raises:
        SessionMissingError: If the token is unknown, revoked, or expired.
    """
    token = await get_refresh_token(db, token_id)
    if token is None or token.is_revoked:
        msg = "Auth session missing"
        raise SessionMissingError(msg)
    if _as_utc(token.expires_at) < datetime.now(timezone.utc):
        msg = "Auth session missing"
        raise SessionMissingError(msg)
    return token


async def revoke_refresh_token(db: AsyncSession, token_id: str) -> bool:
    """Revoke a specific refresh token. Returns True if found."""
    token = await get_refresh_token(db, token_id)
    if token is None:
        return False
    token.is_revoked = True
    token.revoked_at = datetime.now(timezone.utc)
    await db.flush()
    return True


async def revoke_all_tokens(db: AsyncSession, user_id: str) -> int:
    """Revoke all refresh tokens for a user. Returns count revoked."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=now)
    )
    await db.flush()
    return result.rowcount  # type: ignore[return-value]
