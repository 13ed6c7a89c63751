"""Display-name management."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite

from rankshare.db.models import Profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class InvalidDisplayNameError(ValueError):
    """Display name is empty after trimming."""


async def get_profile(db: AsyncSession, user_id: str) -> Profile | None:
    """Fetch the profile row for a user, if one was ever saved."""
    result = await db.execute(select(Profile).where(Profile.user_id == user_id))
    return result.scalar_one_or_none()


async def upsert_display_name(db: AsyncSession, user_id: str, display_name: str) -> Profile:
    """
    Create or overwrite the display name of a user.

    Raises:
        InvalidDisplayNameError: If the name is blank. Nothing is written.
    """
    name = display_name.strip()
    if not name:
        msg = "Display name cannot be empty"
        raise InvalidDisplayNameError(msg)

    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        msg = f"Unsupported database dialect: {dialect}"
        raise RuntimeError(msg)

    now = datetime.now(timezone.utc)
    stmt = insert(Profile).values(user_id=user_id, display_name=name, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={"display_name": stmt.excluded.display_name, "updated_at": stmt.excluded.updated_at},
    )
    await db.execute(stmt)
    await db.flush()

    result = await db.execute(
        select(Profile).where(Profile.user_id == user_id).execution_options(populate_existing=True)
    )
    profile = result.scalar_one()
    logger.info("display_name_updated", user_id=user_id)
    return profile
