"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import jwt as pyjwt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from rankshare.auth.dependencies import get_current_user
from rankshare.auth.jwt import create_access_token, create_refresh_token, verify_token
from rankshare.auth.password import PasswordStrengthError
from rankshare.auth.schemas import (
    LoginLinkRequest,
    LoginLinkVerifyRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    SessionUser,
    TokenResponse,
    UpdatePasswordRequest,
)
from rankshare.auth.service import (
    SessionMissingError,
    authenticate_password_user,
    consume_login_link,
    create_login_link,
    get_live_refresh_token,
    get_or_create_user,
    get_refresh_token,
    get_user_by_id,
    hash_token,
    revoke_all_tokens,
    revoke_refresh_token,
    rotate_refresh_token,
    set_password,
    store_refresh_token,
)
from rankshare.config import get_settings
from rankshare.database import get_session
from rankshare.db.models import User
from rankshare.email.service import EmailService, get_email_service
from rankshare.profiles.service import get_profile
from rankshare.redis_client import get_redis

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _session_user(user: User) -> SessionUser:
    return SessionUser(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
        last_login=user.last_login,
        has_password=user.password_hash is not None,
    )


async def _issue_tokens(db: AsyncSession, user: User, request: Request) -> TokenResponse:
    """Create access + refresh tokens and store refresh token hash."""
    settings = get_settings()
    token_id = str(uuid.uuid4())
    access_token = create_access_token(user.id, user.email)
    refresh_token = create_refresh_token(user.id, user.email, token_id=token_id)

    await store_refresh_token(
        db,
        user_id=user.id,
        token_id=token_id,
        token_hash=hash_token(refresh_token),
        expires_at=datetime.now(timezone.utc) + timedelta(days=settings.jwt_refresh_token_expire_days),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=_session_user(user),
    )


# ---------------------------------------------------------------------------
# One-time email link
# ---------------------------------------------------------------------------


@router.post("/magic-link")
async def request_login_link(
    body: LoginLinkRequest,
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
) -> dict[str, str]:
    """Email a one-time sign-in link. Creates the account on first use."""
    settings = get_settings()
    user, created = await get_or_create_user(db, body.email)
    raw_token = await create_login_link(db, user.id)
    await db.commit()

    link_url = f"{settings.frontend_base_url}/auth/callback?{urlencode({'token': raw_token})}"
    sent = await email_service.send_template(
        to=user.email,
        template_name="login_link",
        context={"link_url": link_url, "expires_minutes": settings.login_link_ttl_minutes},
    )
    if sent:
        logger.info("login_link_sent", user_id=user.id, new_account=created)
    else:
        logger.warning("login_link_not_sent", user_id=user.id)
    return {"status": "login_link_sent"}


@router.post("/magic-link/verify", response_model=TokenResponse)
async def verify_login_link(
    body: LoginLinkVerifyRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Exchange a one-time sign-in token for a session."""
    try:
        user = await consume_login_link(db, body.token)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return await _issue_tokens(db, user, request)


# ---------------------------------------------------------------------------
# Email + password
# ---------------------------------------------------------------------------


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> TokenResponse:
    """Login with email + password."""
    try:
        user = await authenticate_password_user(db, redis, body.email, body.password)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except PermissionError as e:
        detail = str(e)
        if "locked" in detail.lower():
            raise HTTPException(status_code=429, detail=detail) from e
        raise HTTPException(status_code=403, detail=detail) from e

    return await _issue_tokens(db, user, request)


@router.put("/password")
async def update_password(
    body: UpdatePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
) -> dict[str, str]:
    """Set or change the password of the signed-in user."""
    try:
        await set_password(db, user, body.password)
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()

    profile = await get_profile(db, user.id)
    try:
        await email_service.send_template(
            to=user.email,
            template_name="password_changed",
            context={"display_name": profile.display_name if profile else None},
        )
    except Exception:
        logger.exception("password_changed_email_failed", user_id=user.id)

    return {"status": "password_updated"}


# ---------------------------------------------------------------------------
# Session management
# ---------------------------------------------------------------------------


@router.get("/session", response_model=SessionUser)
async def get_session_user(user: User = Depends(get_current_user)) -> SessionUser:
    """Return the identity behind the bearer token."""
    return _session_user(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Rotate refresh token."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    jti = payload.get("jti")
    if not jti:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    try:
        old_token = await get_live_refresh_token(db, jti)
    except SessionMissingError as e:
        stale = await get_refresh_token(db, jti)
        if stale is not None and stale.is_revoked:
            # Replay of a rotated token: end every session of the account.
            logger.warning("refresh_token_reuse", user_id=stale.user_id, jti=jti)
            await revoke_all_tokens(db, stale.user_id)
            await db.commit()
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, old_token.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    settings = get_settings()
    new_token_id = str(uuid.uuid4())
    new_access = create_access_token(user.id, user.email)
    new_refresh = create_refresh_token(user.id, user.email, token_id=new_token_id)

    await rotate_refresh_token(
        db,
        old_token=old_token,
        new_token_id=new_token_id,
        new_token_hash=hash_token(new_refresh),
        new_expires_at=datetime.now(timezone.utc) + timedelta(days=settings.jwt_refresh_token_expire_days),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    await db.commit()

    return TokenResponse(
        access_token=new_access,
        refresh_token=new_refresh,
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=_session_user(user),
    )


@router.post("/logout")
async def logout(
    body: LogoutRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """End the presented session, or every session of the user with scope=global."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
        token = await get_live_refresh_token(db, payload.get("jti", ""))
    except (pyjwt.InvalidTokenError, SessionMissingError) as e:
        raise HTTPException(status_code=401, detail="Auth session missing") from e

    if body.scope == "global":
        count = await revoke_all_tokens(db, token.user_id)
    else:
        await revoke_refresh_token(db, token.id)
        count = 1
    await db.commit()

    logger.info("signed_out", user_id=token.user_id, scope=body.scope, revoked=count)
    return {"status": "logged_out", "scope": body.scope}
