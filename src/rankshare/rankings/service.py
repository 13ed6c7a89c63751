"""
Ranking and ranking-item data access.

Visibility follows the store's ownership policy: a ranking is readable when
it is public or owned by the viewer, and only its owner may write to it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import ColumnElement, func, or_, select, update

from rankshare.config import get_settings
from rankshare.db.models import Profile, Ranking, RankingItem
from rankshare.storage.uploads import upload_item_image, validate_image

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from rankshare.database import Database
    from rankshare.storage.blob import BlobStore

logger = structlog.get_logger()

# Column limits of ranking_items.title (String(200)) and .rank (32-bit Integer).
MAX_TITLE_LENGTH = 200
MAX_RANK = 2**31 - 1


class RankingNotFoundError(LookupError):
    """Ranking does not exist or is not visible to the caller."""


class ItemNotFoundError(LookupError):
    """Item does not exist in the given ranking."""


class NotRankingOwnerError(PermissionError):
    """Caller does not own the ranking."""


class InvalidRankingError(ValueError):
    """Ranking or item fields failed validation."""


class DuplicateRankError(ValueError):
    """Another item of the ranking already holds the rank."""


@dataclass(frozen=True)
class ImageFile:
    """An uploaded image waiting to be stored."""

    filename: str
    data: bytes
    content_type: str | None = None


@dataclass
class RankingDetail:
    ranking: Ranking
    author_name: str | None
    items: list[RankingItem]


def _visible_to(viewer_id: str | None) -> ColumnElement[bool]:
    if viewer_id is None:
        return Ranking.is_public == True  # noqa: E712
    return or_(Ranking.is_public == True, Ranking.owner_id == viewer_id)  # noqa: E712


def _clean_optional(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


def _require_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        msg = "Title is required"
        raise InvalidRankingError(msg)
    if len(cleaned) > MAX_TITLE_LENGTH:
        msg = f"Title must be at most {MAX_TITLE_LENGTH} characters"
        raise InvalidRankingError(msg)
    return cleaned


def _require_rank(rank: int) -> int:
    if not 1 <= rank <= MAX_RANK:
        msg = f"Rank must be between 1 and {MAX_RANK}"
        raise InvalidRankingError(msg)
    return rank


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------


async def list_rankings(db: AsyncSession, viewer_id: str | None) -> list[tuple[Ranking, str | None]]:
    """Rankings visible to the viewer, newest first, with the owner's display name."""
    result = await db.execute(
        select(Ranking, Profile.display_name)
        .outerjoin(Profile, Profile.user_id == Ranking.owner_id)
        .where(_visible_to(viewer_id))
        .order_by(Ranking.created_at.desc())
    )
    return [(ranking, display_name) for ranking, display_name in result.all()]


async def _fetch_ranking(
    database: Database, ranking_id: str, viewer_id: str | None
) -> tuple[Ranking, str | None] | None:
    async with database.session_factory() as db:
        result = await db.execute(
            select(Ranking, Profile.display_name)
            .outerjoin(Profile, Profile.user_id == Ranking.owner_id)
            .where(Ranking.id == ranking_id)
            .where(_visible_to(viewer_id))
        )
        row = result.one_or_none()
        return (row[0], row[1]) if row is not None else None


async def _fetch_items(database: Database, ranking_id: str, descending: bool) -> list[RankingItem]:
    order = RankingItem.rank.desc() if descending else RankingItem.rank.asc()
    async with database.session_factory() as db:
        result = await db.execute(
            select(RankingItem).where(RankingItem.ranking_id == ranking_id).order_by(order)
        )
        return list(result.scalars().all())


async def get_ranking_detail(
    database: Database,
    ranking_id: str,
    viewer_id: str | None,
    descending: bool = False,
) -> RankingDetail:
    """
    Load a ranking and its items concurrently.

    Raises:
        RankingNotFoundError: If the ranking is missing or not visible.
    """
    found, items = await asyncio.gather(
        _fetch_ranking(database, ranking_id, viewer_id),
        _fetch_items(database, ranking_id, descending),
    )
    if found is None:
        raise RankingNotFoundError(ranking_id)
    ranking, author_name = found
    return RankingDetail(ranking=ranking, author_name=author_name, items=items or [])


async def create_ranking(
    db: AsyncSession,
    owner_id: str,
    title: str,
    description: str | None = None,
    is_public: bool = True,
) -> Ranking:
    """
    Create a ranking owned by ``owner_id``.

    Raises:
        InvalidRankingError: If the title is blank.
    """
    ranking = Ranking(
        title=_require_title(title),
        description=_clean_optional(description),
        is_public=is_public,
        owner_id=owner_id,
    )
    db.add(ranking)
    await db.flush()
    logger.info("ranking_created", ranking_id=ranking.id, owner_id=owner_id, is_public=is_public)
    return ranking


async def update_ranking(
    db: AsyncSession,
    owner_id: str,
    ranking_id: str,
    title: str,
    description: str | None,
) -> Ranking:
    """
    Replace title and description of an owned ranking.

    Raises:
        InvalidRankingError: If the title is blank.
        RankingNotFoundError: If no ranking with that id belongs to the owner.
    """
    cleaned_title = _require_title(title)
    result = await db.execute(
        update(Ranking)
        .where(Ranking.id == ranking_id)
        .where(Ranking.owner_id == owner_id)
        .values(title=cleaned_title, description=_clean_optional(description))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise RankingNotFoundError(ranking_id)

    refreshed = await db.execute(
        select(Ranking).where(Ranking.id == ranking_id).execution_options(populate_existing=True)
    )
    logger.info("ranking_updated", ranking_id=ranking_id)
    return refreshed.scalar_one()


async def get_owned_ranking(db: AsyncSession, owner_id: str, ranking_id: str) -> Ranking:
    """
    Fetch a ranking the caller may write to.

    Raises:
        RankingNotFoundError: If the ranking does not exist.
        NotRankingOwnerError: If it belongs to somebody else.
    """
    result = await db.execute(select(Ranking).where(Ranking.id == ranking_id))
    ranking = result.scalar_one_or_none()
    if ranking is None:
        raise RankingNotFoundError(ranking_id)
    if ranking.owner_id != owner_id:
        msg = "Only the owner can change this ranking"
        raise NotRankingOwnerError(msg)
    return ranking


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


async def get_next_rank(db: AsyncSession, ranking_id: str) -> int:
    """Default rank for a new item: one past the current highest, or 1."""
    result = await db.execute(select(func.max(RankingItem.rank)).where(RankingItem.ranking_id == ranking_id))
    highest = result.scalar_one_or_none()
    return max(highest or 0, 0) + 1


async def get_item(db: AsyncSession, ranking_id: str, item_id: str) -> RankingItem:
    """
    Fetch one item of a ranking.

    Raises:
        ItemNotFoundError: If the item is not part of the ranking.
    """
    result = await db.execute(
        select(RankingItem).where(RankingItem.id == item_id).where(RankingItem.ranking_id == ranking_id)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


async def list_items(db: AsyncSession, ranking_id: str) -> list[RankingItem]:
    """Items of a ranking in ascending rank order."""
    result = await db.execute(
        select(RankingItem)
        .where(RankingItem.ranking_id == ranking_id)
        .order_by(RankingItem.rank.asc(), RankingItem.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _store_image(store: BlobStore, ranking_id: str, image: ImageFile) -> str:
    settings = get_settings()
    validate_image(
        image.data,
        image.content_type,
        max_bytes=settings.item_image_max_bytes,
        allowed_types=settings.item_image_content_types,
    )
    return await upload_item_image(
        store,
        settings.item_image_bucket,
        ranking_id,
        image.filename,
        image.data,
        image.content_type,
    )


async def create_item(
    db: AsyncSession,
    store: BlobStore,
    owner_id: str,
    ranking_id: str,
    title: str,
    rank: int,
    comment: str | None = None,
    url: str | None = None,
    image: ImageFile | None = None,
) -> RankingItem:
    """
    Add an item to an owned ranking.

    Checks run in order: field validation, ownership, duplicate rank, image
    upload. Nothing is inserted when any of them fails.

    Raises:
        InvalidRankingError: If the title is blank or the rank is below 1.
        RankingNotFoundError / NotRankingOwnerError: Ownership failures.
        DuplicateRankError: If another item already holds the rank.
        ImageUploadError: If the image could not be stored.
    """
    cleaned_title = _require_title(title)
    _require_rank(rank)
    await get_owned_ranking(db, owner_id, ranking_id)

    existing = await db.execute(
        select(RankingItem.id).where(RankingItem.ranking_id == ranking_id).where(RankingItem.rank == rank)
    )
    if existing.first() is not None:
        msg = "An item with this rank already exists"
        raise DuplicateRankError(msg)

    image_url = await _store_image(store, ranking_id, image) if image is not None else None

    item = RankingItem(
        ranking_id=ranking_id,
        rank=rank,
        title=cleaned_title,
        comment=_clean_optional(comment),
        url=_clean_optional(url),
        image_url=image_url,
    )
    db.add(item)
    await db.flush()
    logger.info("ranking_item_created", ranking_id=ranking_id, item_id=item.id, rank=rank)
    return item


async def update_item(
    db: AsyncSession,
    store: BlobStore,
    owner_id: str,
    ranking_id: str,
    item_id: str,
    title: str,
    rank: int,
    comment: str | None = None,
    url: str | None = None,
    image: ImageFile | None = None,
) -> RankingItem:
    """
    Edit an item of an owned ranking.

    A new image replaces the stored URL; without one the old URL stays.
    Rank collisions are not checked here.

    Raises:
        InvalidRankingError: If the title is blank or the rank is below 1.
        RankingNotFoundError / NotRankingOwnerError: Ownership failures.
        ItemNotFoundError: If the item is not part of the ranking.
        ImageUploadError: If the image could not be stored.
    """
    cleaned_title = _require_title(title)
    _require_rank(rank)
    await get_owned_ranking(db, owner_id, ranking_id)
    item = await get_item(db, ranking_id, item_id)

    if image is not None:
        item.image_url = await _store_image(store, ranking_id, image)

    item.title = cleaned_title
    item.rank = rank
    item.comment = _clean_optional(comment)
    item.url = _clean_optional(url)
    await db.flush()
    logger.info("ranking_item_updated", ranking_id=ranking_id, item_id=item_id, rank=rank)
    return item
