"""Ranking router: /api/v1/rankings/* endpoints."""

from __future__ import annotations

from typing import Literal

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from rankshare.auth.dependencies import get_current_user, get_optional_user
from rankshare.backend import get_blob_store, get_reorder_guard
from rankshare.database import Database, get_database, get_session
from rankshare.db.models import Ranking, User
from rankshare.rankings.reorder import ReorderError, ReorderGuard, move_item, swap_ranks
from rankshare.rankings.schemas import (
    MoveRequest,
    NextRankResponse,
    RankingCreateRequest,
    RankingDetailResponse,
    RankingItemResponse,
    RankingListResponse,
    RankingResponse,
    RankingUpdateRequest,
    ReorderResponse,
    SwapRequest,
    items_response,
    ranking_response,
)
from rankshare.rankings.service import (
    MAX_RANK,
    MAX_TITLE_LENGTH,
    DuplicateRankError,
    ImageFile,
    InvalidRankingError,
    ItemNotFoundError,
    NotRankingOwnerError,
    RankingNotFoundError,
    create_item,
    create_ranking,
    get_item,
    get_next_rank,
    get_owned_ranking,
    get_ranking_detail,
    list_rankings,
    update_item,
    update_ranking,
)
from rankshare.storage.blob import BlobStore
from rankshare.storage.uploads import ImageUploadError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/rankings", tags=["Rankings"])


async def _image_file(image: UploadFile | None) -> ImageFile | None:
    if image is None or not image.filename:
        return None
    try:
        data = await image.read()
    finally:
        await image.close()
    return ImageFile(filename=image.filename, data=data, content_type=image.content_type)


async def _require_owner(db: AsyncSession, user: User, ranking_id: str) -> Ranking:
    try:
        return await get_owned_ranking(db, user.id, ranking_id)
    except RankingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Ranking not found") from e
    except NotRankingOwnerError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------


@router.get("", response_model=RankingListResponse)
async def get_rankings(
    viewer: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_session),
) -> RankingListResponse:
    """Public rankings plus, when signed in, the caller's private ones. Newest first."""
    rows = await list_rankings(db, viewer.id if viewer else None)
    return RankingListResponse(
        rankings=[ranking_response(ranking, author) for ranking, author in rows],
        total=len(rows),
    )


@router.post("", response_model=RankingResponse, status_code=201)
async def post_ranking(
    body: RankingCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RankingResponse:
    try:
        ranking = await create_ranking(db, user.id, body.title, body.description, body.is_public)
    except InvalidRankingError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    await db.commit()
    return ranking_response(ranking)


@router.get("/{ranking_id}", response_model=RankingDetailResponse)
async def get_ranking(
    ranking_id: str,
    order: Literal["asc", "desc"] = Query("asc"),
    viewer: User | None = Depends(get_optional_user),
    database: Database = Depends(get_database),
) -> RankingDetailResponse:
    """Ranking with its items. ``order=desc`` lists the highest rank first."""
    try:
        detail = await get_ranking_detail(
            database, ranking_id, viewer.id if viewer else None, descending=order == "desc"
        )
    except RankingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Ranking not found") from e
    return RankingDetailResponse(
        ranking=ranking_response(detail.ranking, detail.author_name),
        items=items_response(detail.items),
    )


@router.patch("/{ranking_id}", response_model=RankingResponse)
async def patch_ranking(
    ranking_id: str,
    body: RankingUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RankingResponse:
    try:
        ranking = await update_ranking(db, user.id, ranking_id, body.title, body.description)
    except InvalidRankingError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except RankingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Ranking not found") from e
    await db.commit()
    return ranking_response(ranking)


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@router.get("/{ranking_id}/items/next-rank", response_model=NextRankResponse)
async def next_rank(
    ranking_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NextRankResponse:
    await _require_owner(db, user, ranking_id)
    return NextRankResponse(next_rank=await get_next_rank(db, ranking_id))


@router.post("/{ranking_id}/items", response_model=RankingItemResponse, status_code=201)
async def post_item(
    ranking_id: str,
    title: str = Form(..., max_length=MAX_TITLE_LENGTH),
    rank: int = Form(..., ge=1, le=MAX_RANK),
    comment: str | None = Form(None),
    url: str | None = Form(None),
    image: UploadFile | None = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
) -> RankingItemResponse:
    """Add an item. The image, if any, is stored before the item row is written."""
    try:
        item = await create_item(
            db,
            store,
            user.id,
            ranking_id,
            title=title,
            rank=rank,
            comment=comment,
            url=url,
            image=await _image_file(image),
        )
    except InvalidRankingError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except DuplicateRankError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ImageUploadError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except RankingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Ranking not found") from e
    except NotRankingOwnerError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    await db.commit()
    return RankingItemResponse.model_validate(item)


@router.post("/{ranking_id}/items/swap", response_model=ReorderResponse)
async def swap_items(
    ranking_id: str,
    body: SwapRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    guard: ReorderGuard = Depends(get_reorder_guard),
) -> ReorderResponse:
    """Exchange the ranks of two items."""
    await _require_owner(db, user, ranking_id)
    with guard.hold(body.source_id, body.target_id) as acquired:
        if not acquired:
            raise HTTPException(status_code=409, detail="Items are being reordered")
        try:
            items = await swap_ranks(db, ranking_id, body.source_id, body.target_id)
        except ItemNotFoundError as e:
            raise HTTPException(status_code=404, detail="Item not found") from e
        except ReorderError as e:
            raise HTTPException(status_code=409, detail="Failed to reorder items") from e
    return ReorderResponse(moved=True, items=items_response(items))


@router.get("/{ranking_id}/items/{item_id}", response_model=RankingItemResponse)
async def get_ranking_item(
    ranking_id: str,
    item_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RankingItemResponse:
    await _require_owner(db, user, ranking_id)
    try:
        item = await get_item(db, ranking_id, item_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail="Item not found") from e
    return RankingItemResponse.model_validate(item)


@router.patch("/{ranking_id}/items/{item_id}", response_model=RankingItemResponse)
async def patch_item(
    ranking_id: str,
    item_id: str,
    title: str = Form(..., max_length=MAX_TITLE_LENGTH),
    rank: int = Form(..., ge=1, le=MAX_RANK),
    comment: str | None = Form(None),
    url: str | None = Form(None),
    image: UploadFile | None = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
) -> RankingItemResponse:
    """Edit an item. Without a new image the stored one is kept."""
    try:
        item = await update_item(
            db,
            store,
            user.id,
            ranking_id,
            item_id,
            title=title,
            rank=rank,
            comment=comment,
            url=url,
            image=await _image_file(image),
        )
    except InvalidRankingError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except ImageUploadError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except RankingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Ranking not found") from e
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail="Item not found") from e
    except NotRankingOwnerError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    await db.commit()
    return RankingItemResponse.model_validate(item)


@router.post("/{ranking_id}/items/{item_id}/move", response_model=ReorderResponse)
async def move_ranking_item(
    ranking_id: str,
    item_id: str,
    body: MoveRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    guard: ReorderGuard = Depends(get_reorder_guard),
) -> ReorderResponse:
    """Move an item one place up or down. Edges and busy items are no-ops."""
    await _require_owner(db, user, ranking_id)
    try:
        result = await move_item(db, guard, ranking_id, item_id, body.direction)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail="Item not found") from e
    except ReorderError as e:
        raise HTTPException(status_code=409, detail="Failed to reorder items") from e
    return ReorderResponse(moved=result.moved, items=items_response(result.items))
