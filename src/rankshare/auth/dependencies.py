"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rankshare.auth.jwt import verify_token
from rankshare.auth.service import get_user_by_id
from rankshare.database import get_session
from rankshare.db.models import User

_bearer = HTTPBearer()
_optional_bearer = HTTPBearer(auto_error=False)


async def _user_from_token(db: AsyncSession, token: str) -> User:
    try:
        payload = verify_token(token, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, payload["sub"])
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify the bearer JWT, return the User model.

    Raises 401/403 on failure.
    """
    return await _user_from_token(db, credentials.credentials)


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_optional_bearer),
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """
    Same as get_current_user, but anonymous requests resolve to None.

    Used by read endpoints whose results depend on who is asking. A token that
    is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    return await _user_from_token(db, credentials.credentials)
