"""Profile router: /api/v1/profiles/* endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rankshare.auth.dependencies import get_current_user
from rankshare.database import get_session
from rankshare.db.models import Profile, User
from rankshare.profiles.schemas import DisplayNameUpdateRequest, ProfileResponse
from rankshare.profiles.service import InvalidDisplayNameError, get_profile, upsert_display_name

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/profiles", tags=["Profiles"])


def _profile_response(user: User, profile: Profile | None) -> ProfileResponse:
    display_name = profile.display_name if profile else None
    return ProfileResponse(
        user_id=user.id,
        email=user.email,
        display_name=display_name,
        display_label=display_name or user.email,
        updated_at=profile.updated_at if profile else None,
    )


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    """Get own profile. Without a saved display name the email is the label."""
    return _profile_response(user, await get_profile(db, user.id))


@router.put("/me", response_model=ProfileResponse)
async def update_my_display_name(
    body: DisplayNameUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    """Create or replace own display name."""
    try:
        profile = await upsert_display_name(db, user.id, body.display_name)
    except InvalidDisplayNameError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    await db.commit()
    return _profile_response(user, profile)
