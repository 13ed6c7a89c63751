"""ORM models for accounts, profiles, rankings and ranking items.

Column types stay portable (string UUIDs, plain timestamps) so the same
models run against Postgres in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rankshare.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """An authenticated identity. Created on first email link or password signup."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    login_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")

    profile: Mapped[Profile | None] = relationship("Profile", back_populates="user", uselist=False)
    refresh_tokens: Mapped[list[RefreshToken]] = relationship("RefreshToken", back_populates="user")
    rankings: Mapped[list[Ranking]] = relationship("Ranking", back_populates="owner")


# ---------------------------------------------------------------------------
# Auth: Refresh Tokens
# ---------------------------------------------------------------------------


class RefreshToken(Base):
    """JWT refresh token tracking for revocation and rotation."""

    __tablename__ = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    replaced_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="refresh_tokens")


# ---------------------------------------------------------------------------
# Auth: one-time login links
# ---------------------------------------------------------------------------


class LoginLink(Base):
    """Single-use email sign-in token. Only the SHA-256 of the token is stored."""

    __tablename__ = "login_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User")


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """Human-readable display name, one row per user at most."""

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=_now)

    user: Mapped[User] = relationship("User", back_populates="profile")


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------


class Ranking(Base):
    """A titled, user-owned list of ranked items."""

    __tablename__ = "rankings"
    __table_args__ = (Index("ix_rankings_owner_created", "owner_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    owner: Mapped[User] = relationship("User", back_populates="rankings")
    items: Mapped[list[RankingItem]] = relationship(
        "RankingItem", back_populates="ranking", order_by="RankingItem.rank"
    )


class RankingItem(Base):
    """One entry of a ranking.

    ``rank`` carries no unique constraint. Inserts check for a duplicate rank
    first and swaps pass through a sentinel value.
    """

    __tablename__ = "ranking_items"
    __table_args__ = (Index("ix_ranking_items_ranking_rank", "ranking_id", "rank"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ranking_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rankings.id", ondelete="CASCADE"), nullable=False
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    ranking: Mapped[Ranking] = relationship("Ranking", back_populates="items")
