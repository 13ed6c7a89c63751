"""
Rank reordering.

Two items trade ranks through a sentinel value so that no two items of the
ranking ever hold the same rank at the same time. The three writes share one
transaction.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import structlog
from sqlalchemy import update

from rankshare.db.models import RankingItem
from rankshare.rankings.service import ItemNotFoundError, list_items

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

SENTINEL_RANK = -1

Direction = Literal["up", "down"]


class ReorderError(RuntimeError):
    """A swap step did not touch exactly one row; the swap was rolled back."""


class ReorderGuard:
    """Set of item ids with a reorder in flight.

    One guard is shared by the whole application. Safe for asyncio via
    single-threaded event loop.
    """

    def __init__(self) -> None:
        self._locked: set[str] = set()

    def is_locked(self, item_id: str) -> bool:
        return item_id in self._locked

    def try_acquire(self, *item_ids: str) -> bool:
        """Lock all ids, or none of them if any is already locked."""
        if any(item_id in self._locked for item_id in item_ids):
            return False
        self._locked.update(item_ids)
        return True

    def release(self, *item_ids: str) -> None:
        self._locked.difference_update(item_ids)

    @contextmanager
    def hold(self, *item_ids: str) -> Iterator[bool]:
        """Context manager yielding whether the lock was taken."""
        acquired = self.try_acquire(*item_ids)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(*item_ids)


@dataclass
class MoveResult:
    moved: bool
    items: list[RankingItem]


async def _set_rank(db: AsyncSession, ranking_id: str, item_id: str, rank: int) -> None:
    result = await db.execute(
        update(RankingItem)
        .where(RankingItem.id == item_id)
        .where(RankingItem.ranking_id == ranking_id)
        .values(rank=rank)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = f"Rank update for item {item_id} touched {result.rowcount} rows"
        raise ReorderError(msg)


async def swap_ranks(
    db: AsyncSession,
    ranking_id: str,
    source_id: str,
    target_id: str,
) -> list[RankingItem]:
    """
    Exchange the ranks of two items and commit.

    Returns the ranking's items sorted by ascending rank.

    Raises:
        ItemNotFoundError: If either item is not part of the ranking.
        ReorderError: If a write step failed. Nothing is persisted.
    """
    items = {item.id: item for item in await list_items(db, ranking_id)}
    source = items.get(source_id)
    target = items.get(target_id)
    if source is None:
        raise ItemNotFoundError(source_id)
    if target is None:
        raise ItemNotFoundError(target_id)
    if source_id == target_id:
        return await list_items(db, ranking_id)

    source_rank, target_rank = source.rank, target.rank
    try:
        await _set_rank(db, ranking_id, source_id, SENTINEL_RANK)
        await _set_rank(db, ranking_id, target_id, source_rank)
        await _set_rank(db, ranking_id, source_id, target_rank)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("rank_swap_failed", ranking_id=ranking_id, source_id=source_id, target_id=target_id)
        raise

    logger.info(
        "ranks_swapped",
        ranking_id=ranking_id,
        source_id=source_id,
        target_id=target_id,
        source_rank=target_rank,
        target_rank=source_rank,
    )
    return await list_items(db, ranking_id)


async def move_item(
    db: AsyncSession,
    guard: ReorderGuard,
    ranking_id: str,
    item_id: str,
    direction: Direction,
) -> MoveResult:
    """
    Move an item one position up (towards rank 1) or down.

    No-op at the edges of the list and while either item is being reordered.

    Raises:
        ItemNotFoundError: If the item is not part of the ranking.
        ReorderError: If the swap failed.
    """
    items = await list_items(db, ranking_id)
    index = next((i for i, item in enumerate(items) if item.id == item_id), None)
    if index is None:
        raise ItemNotFoundError(item_id)

    neighbour = index - 1 if direction == "up" else index + 1
    if neighbour < 0 or neighbour >= len(items):
        return MoveResult(moved=False, items=items)

    target_id = items[neighbour].id
    with guard.hold(item_id, target_id) as acquired:
        if not acquired:
            logger.debug("reorder_skipped_locked", ranking_id=ranking_id, item_id=item_id)
            return MoveResult(moved=False, items=items)
        reordered = await swap_ranks(db, ranking_id, item_id, target_id)

    return MoveResult(moved=True, items=reordered)
