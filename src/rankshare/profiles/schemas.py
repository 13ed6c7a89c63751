"""Request/response schemas for profile endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class DisplayNameUpdateRequest(BaseModel):
    """Set the display name shown next to the user's rankings."""

    display_name: str = Field(..., max_length=64)


class ProfileResponse(BaseModel):
    user_id: str
    email: str
    display_name: str | None = None
    display_label: str
    updated_at: datetime | None = None
