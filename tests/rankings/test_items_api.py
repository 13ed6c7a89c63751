"""Tests for ranking item endpoints and image uploads."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient

from rankshare.backend import Backend
from rankshare.db.models import Ranking, User
from rankshare.rankings.service import MAX_RANK, InvalidRankingError, create_item
from rankshare.storage.blob import BlobStoreError, LocalBlobStore

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest_asyncio.fixture
async def owned_ranking(client: AsyncClient, sign_in) -> dict:
    owner = await sign_in()
    response = await client.post("/api/v1/rankings", json={"title": "Best pizza"}, headers=owner["headers"])
    return {"id": response.json()["id"], "headers": owner["headers"]}


async def add_item(client: AsyncClient, ranking: dict, rank: int, title: str = "Item", **kwargs):
    return await client.post(
        f"/api/v1/rankings/{ranking['id']}/items",
        data={"title": title, "rank": str(rank)},
        headers=ranking["headers"],
        **kwargs,
    )


class TestNextRank:
    async def test_empty_ranking_starts_at_one(self, client: AsyncClient, owned_ranking):
        response = await client.get(
            f"/api/v1/rankings/{owned_ranking['id']}/items/next-rank", headers=owned_ranking["headers"]
        )
        assert response.json() == {"next_rank": 1}

    async def test_one_past_highest(self, client: AsyncClient, owned_ranking):
        await add_item(client, owned_ranking, 1)
        await add_item(client, owned_ranking, 4)

        response = await client.get(
            f"/api/v1/rankings/{owned_ranking['id']}/items/next-rank", headers=owned_ranking["headers"]
        )
        assert response.json() == {"next_rank": 5}


class TestCreateItem:
    async def test_create_without_image(self, client: AsyncClient, owned_ranking):
        response = await client.post(
            f"/api/v1/rankings/{owned_ranking['id']}/items",
            data={"title": "Margherita", "rank": "1", "comment": "Classic", "url": "https://pizza.test"},
            headers=owned_ranking["headers"],
        )

        assert response.status_code == 201
        item = response.json()
        assert item["title"] == "Margherita"
        assert item["comment"] == "Classic"
        assert item["image_url"] is None

    async def test_duplicate_rank_conflict(self, client: AsyncClient, owned_ranking):
        assert (await add_item(client, owned_ranking, 1)).status_code == 201
        response = await add_item(client, owned_ranking, 1, title="Again")
        assert response.status_code == 409

    @pytest.mark.parametrize(("rank", "title"), [(0, "Zero"), (-2, "Negative"), (1, "   ")])
    async def test_invalid_fields(self, client: AsyncClient, owned_ranking, rank: int, title: str):
        response = await add_item(client, owned_ranking, rank, title=title)
        assert response.status_code == 422

    async def test_non_owner_forbidden(self, client: AsyncClient, owned_ranking, sign_in):
        other = await sign_in("other@example.com")
        response = await client.post(
            f"/api/v1/rankings/{owned_ranking['id']}/items",
            data={"title": "Sneaky", "rank": "1"},
            headers=other["headers"],
        )
        assert response.status_code == 403

    async def test_unknown_ranking(self, client: AsyncClient, owned_ranking):
        response = await client.post(
            "/api/v1/rankings/missing/items",
            data={"title": "Lost", "rank": "1"},
            headers=owned_ranking["headers"],
        )
        assert response.status_code == 404

    async def test_image_stored_and_served(self, client: AsyncClient, owned_ranking, settings):
        response = await add_item(
            client, owned_ranking, 1, files={"image": ("my photo (1).png", PNG, "image/png")}
        )

        assert response.status_code == 201, response.text
        image_url = response.json()["image_url"]
        prefix = f"http://test/storage/{settings.item_image_bucket}/{owned_ranking['id']}/"
        assert image_url.startswith(prefix)
        assert image_url.endswith("-my_photo__1_.png")

        served = await client.get(image_url.removeprefix("http://test"))
        assert served.status_code == 200
        assert served.content == PNG

    async def test_rejected_image_leaves_no_item(self, client: AsyncClient, owned_ranking, settings):
        response = await add_item(client, owned_ranking, 1, files={"image": ("doc.pdf", b"%PDF", "application/pdf")})

        assert response.status_code == 400
        detail = await client.get(f"/api/v1/rankings/{owned_ranking['id']}")
        assert detail.json()["items"] == []
        assert not (Path(settings.storage_root) / settings.item_image_bucket).exists()

    @pytest.mark.parametrize(("rank", "title"), [(1, "x" * 201), (MAX_RANK + 1, "Too far")])
    async def test_oversized_fields_rejected_before_upload(
        self, client: AsyncClient, owned_ranking, settings, rank: int, title: str
    ):
        response = await add_item(
            client, owned_ranking, rank, title=title, files={"image": ("a.png", PNG, "image/png")}
        )

        assert response.status_code == 422
        detail = await client.get(f"/api/v1/rankings/{owned_ranking['id']}")
        assert detail.json()["items"] == []
        assert not (Path(settings.storage_root) / settings.item_image_bucket).exists()

    async def test_storage_failure_leaves_no_item(self, client: AsyncClient, owned_ranking, monkeypatch):
        async def failing_upload(self, bucket, path, data, content_type=None, *, no_overwrite=True):
            raise BlobStoreError("disk full")

        monkeypatch.setattr(LocalBlobStore, "upload", failing_upload)
        response = await add_item(client, owned_ranking, 1, files={"image": ("a.png", PNG, "image/png")})

        assert response.status_code == 400
        assert response.json()["detail"] == "Image upload failed"
        detail = await client.get(f"/api/v1/rankings/{owned_ranking['id']}")
        assert detail.json()["items"] == []


class TestItemFieldLimits:
    @pytest_asyncio.fixture
    async def ranking(self, backend: Backend) -> Ranking:
        async with backend.database.session_factory() as db:
            user = User(email="owner@example.com")
            db.add(user)
            await db.flush()
            ranking = Ranking(title="Limits", owner_id=user.id)
            db.add(ranking)
            await db.commit()
        return ranking

    async def test_long_title_rejected(self, backend: Backend, ranking: Ranking):
        async with backend.database.session_factory() as db:
            with pytest.raises(InvalidRankingError, match="at most 200"):
                await create_item(db, backend.blob_store, ranking.owner_id, ranking.id, title="x" * 201, rank=1)

    async def test_rank_beyond_integer_column_rejected(self, backend: Backend, ranking: Ranking):
        async with backend.database.session_factory() as db:
            with pytest.raises(InvalidRankingError, match="between 1 and"):
                await create_item(db, backend.blob_store, ranking.owner_id, ranking.id, title="Ok", rank=MAX_RANK + 1)


class TestUpdateItem:
    async def test_update_keeps_image_without_new_file(self, client: AsyncClient, owned_ranking):
        created = await add_item(client, owned_ranking, 1, files={"image": ("a.png", PNG, "image/png")})
        item = created.json()

        response = await client.patch(
            f"/api/v1/rankings/{owned_ranking['id']}/items/{item['id']}",
            data={"title": "Renamed", "rank": "2"},
            headers=owned_ranking["headers"],
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        assert response.json()["rank"] == 2
        assert response.json()["image_url"] == item["image_url"]

    async def test_update_replaces_image(self, client: AsyncClient, owned_ranking):
        item = (await add_item(client, owned_ranking, 1)).json()

        response = await client.patch(
            f"/api/v1/rankings/{owned_ranking['id']}/items/{item['id']}",
            data={"title": "With picture", "rank": "1"},
            files={"image": ("b.png", PNG, "image/png")},
            headers=owned_ranking["headers"],
        )

        assert response.status_code == 200
        assert response.json()["image_url"].endswith("-b.png")

    async def test_get_item(self, client: AsyncClient, owned_ranking):
        item = (await add_item(client, owned_ranking, 1, title="Solo")).json()

        response = await client.get(
            f"/api/v1/rankings/{owned_ranking['id']}/items/{item['id']}", headers=owned_ranking["headers"]
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Solo"

    async def test_unknown_item(self, client: AsyncClient, owned_ranking):
        response = await client.get(
            f"/api/v1/rankings/{owned_ranking['id']}/items/missing", headers=owned_ranking["headers"]
        )
        assert response.status_code == 404
