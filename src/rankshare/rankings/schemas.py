"""Request/response schemas for ranking endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from rankshare.db.models import Ranking, RankingItem


class RankingCreateRequest(BaseModel):
    title: str = Field(..., max_length=200)
    description: str | None = None
    is_public: bool = True


class RankingUpdateRequest(BaseModel):
    """Replace title and description. Visibility is fixed at creation."""

    title: str = Field(..., max_length=200)
    description: str | None = None


class RankingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    is_public: bool
    owner_id: str
    author_name: str | None = None
    created_at: datetime


class RankingItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ranking_id: str
    rank: int
    title: str
    comment: str | None = None
    image_url: str | None = None
    url: str | None = None
    created_at: datetime


class RankingListResponse(BaseModel):
    rankings: list[RankingResponse]
    total: int


class RankingDetailResponse(BaseModel):
    ranking: RankingResponse
    items: list[RankingItemResponse]


class NextRankResponse(BaseModel):
    next_rank: int


class MoveRequest(BaseModel):
    direction: Literal["up", "down"]


class SwapRequest(BaseModel):
    source_id: str
    target_id: str


class ReorderResponse(BaseModel):
    moved: bool
    items: list[RankingItemResponse]


def ranking_response(ranking: Ranking, author_name: str | None = None) -> RankingResponse:
    """Build a RankingResponse from a Ranking model."""
    return RankingResponse(
        id=ranking.id,
        title=ranking.title,
        description=ranking.description,
        is_public=ranking.is_public,
        owner_id=ranking.owner_id,
        author_name=author_name,
        created_at=ranking.created_at,
    )


def items_response(items: list[RankingItem]) -> list[RankingItemResponse]:
    return [RankingItemResponse.model_validate(item) for item in items]
