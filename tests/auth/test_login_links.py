"""Tests for redeeming one-time sign-in links."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError

from rankshare.auth.service import consume_login_link, create_login_link, hash_token
from rankshare.backend import Backend
from rankshare.db.models import LoginLink, User


@pytest_asyncio.fixture
async def link_token(backend: Backend) -> str:
    async with backend.database.session_factory() as db:
        user = User(email="owner@example.com")
        db.add(user)
        await db.flush()
        token = await create_login_link(db, user.id)
        await db.commit()
    return token


async def redeem(backend: Backend, token: str) -> bool:
    """One redemption on its own connection. True when it produced a sign-in."""
    async with backend.database.session_factory() as db:
        try:
            await consume_login_link(db, token)
            await db.commit()
        except (ValueError, DBAPIError):
            return False
    return True


class TestConsumeLoginLink:
    async def test_redeems_once(self, backend: Backend, link_token: str):
        async with backend.database.session_factory() as db:
            user = await consume_login_link(db, link_token)
            await db.commit()

        assert user.email == "owner@example.com"
        assert user.login_count == 1

    async def test_second_use_in_same_session_rejected(self, backend: Backend, link_token: str):
        async with backend.database.session_factory() as db:
            await consume_login_link(db, link_token)
            with pytest.raises(ValueError, match="already been used"):
                await consume_login_link(db, link_token)

    async def test_overlapping_redemptions_sign_in_once(self, backend: Backend, link_token: str):
        results = await asyncio.gather(redeem(backend, link_token), redeem(backend, link_token))

        assert sorted(results) == [False, True]

    async def test_expired_link_rejected(self, backend: Backend, link_token: str):
        async with backend.database.session_factory() as db:
            await db.execute(
                update(LoginLink)
                .where(LoginLink.token_hash == hash_token(link_token))
                .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
            )
            await db.commit()

        async with backend.database.session_factory() as db:
            with pytest.raises(ValueError, match="expired"):
                await consume_login_link(db, link_token)

    async def test_unknown_token_rejected(self, backend: Backend, link_token: str):
        async with backend.database.session_factory() as db:
            with pytest.raises(ValueError, match="Invalid or expired"):
                await consume_login_link(db, "not-a-real-token")
