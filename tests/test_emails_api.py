"""Tests for the /emails router."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from email_tracker.app import create_app
from email_tracker.broadcast import BroadcastSink
from email_tracker.deps import get_broadcaster, get_store
from email_tracker.exceptions import PersistenceError
from email_tracker.liveness import SessionRegistry
from email_tracker.store import EmailStore

from tests.conftest import FakeChannel

NEW_EMAIL = {
    "body": "<p>Hello</p>",
    "date": "Mon, 1 Jan 2024 09:00:00 +0000",
    "from": ["a@x.com"],
    "to": ["b@y.com", "c@z.com"],
    "subject": "Hi",
}


@pytest.fixture
async def app(settings, store: EmailStore, sink: BroadcastSink):
    application = create_app(settings)
    application.dependency_overrides[get_store] = lambda: store
    application.dependency_overrides[get_broadcaster] = lambda: sink
    return application


@pytest.fixture
async def client(app):
    """Async HTTP test client. Lifespan is not started; use dependency_overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _create(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/emails", json={**NEW_EMAIL, **overrides})
    assert resp.status_code == 201
    return resp.json()


class TestCreateAndList:
    @pytest.mark.asyncio
    async def test_create_returns_record(self, client: AsyncClient):
        created = await _create(client)
        assert created["id"]
        assert created["from"] == ["a@x.com"]
        assert created["to"] == ["b@y.com", "c@z.com"]
        assert created["tags"] == []

    @pytest.mark.asyncio
    async def test_create_broadcasts_new_email(self, client: AsyncClient, registry: SessionRegistry):
        channel = FakeChannel()
        registry.register(channel, now=0.0)

        created = await _create(client)

        assert channel.sent == [{"event": "newEmail", "data": created}]

    @pytest.mark.asyncio
    async def test_create_succeeds_when_broadcast_fails(self, client: AsyncClient, registry: SessionRegistry):
        registry.register(FakeChannel(fail_send=True), now=0.0)
        resp = await client.post("/emails", json=NEW_EMAIL)
        assert resp.status_code == 201

    @pytest.mark.asyncio
    async def test_list(self, client: AsyncClient):
        await _create(client, subject="one")
        await _create(client, subject="two")

        resp = await client.get("/emails")

        assert resp.status_code == 200
        assert {e["subject"] for e in resp.json()} == {"one", "two"}

    @pytest.mark.asyncio
    async def test_get_one(self, client: AsyncClient):
        created = await _create(client)
        resp = await client.get(f"/emails/{created['id']}")
        assert resp.status_code == 200
        assert resp.json() == created

    @pytest.mark.asyncio
    async def test_get_missing(self, client: AsyncClient):
        resp = await client.get("/emails/unknown")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Email not found"}


class TestSearchAndFilter:
    @pytest.mark.asyncio
    async def test_search_body(self, client: AsyncClient):
        await _create(client, body="Invoice #42 attached", subject="invoice")
        await _create(client, body="see you at lunch", subject="lunch")

        resp = await client.get("/emails/search", params={"searchText": "INVOICE"})

        assert resp.status_code == 200
        assert [e["subject"] for e in resp.json()] == ["invoice"]

    @pytest.mark.asyncio
    async def test_search_without_text_returns_all(self, client: AsyncClient):
        await _create(client)
        resp = await client.get("/emails/search")
        assert len(resp.json()) == 1

    @pytest.mark.asyncio
    async def test_filter_by_tag(self, client: AsyncClient):
        tagged = await _create(client, subject="tagged")
        await _create(client, subject="plain")
        await client.post(f"/emails/{tagged['id']}/tags", json={"tags": ["urgent"]})

        resp = await client.get("/emails/filter", params={"tag": "urgent"})

        assert [e["id"] for e in resp.json()] == [tagged["id"]]

    @pytest.mark.asyncio
    async def test_filter_requires_tag(self, client: AsyncClient):
        resp = await client.get("/emails/filter")
        assert resp.status_code == 422


class TestTags:
    @pytest.mark.asyncio
    async def test_add_tag_twice(self, client: AsyncClient):
        created = await _create(client)
        url = f"/emails/{created['id']}/tags"

        await client.post(url, json={"tags": ["urgent"]})
        resp = await client.post(url, json={"tags": ["urgent"]})

        assert resp.status_code == 200
        assert resp.json()["tags"] == ["urgent"]

    @pytest.mark.asyncio
    async def test_empty_tag_list_rejected(self, client: AsyncClient):
        created = await _create(client)
        resp = await client.post(f"/emails/{created['id']}/tags", json={"tags": []})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_tag_missing_email(self, client: AsyncClient):
        resp = await client.post("/emails/unknown/tags", json={"tags": ["urgent"]})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Email not found"


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient):
        created = await _create(client)

        resp = await client.delete(f"/emails/{created['id']}")

        assert resp.status_code == 200
        assert resp.json() == {"message": "Email deleted successfully"}
        assert (await client.get(f"/emails/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete_missing(self, client: AsyncClient):
        resp = await client.delete("/emails/unknown")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Email not found"}


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_persistence_error_maps_to_500(self, app, client: AsyncClient):
        broken = AsyncMock()
        broken.find.side_effect = PersistenceError("find failed: disk I/O error")
        broken.delete_by_id.side_effect = PersistenceError("delete failed: disk I/O error")
        app.dependency_overrides[get_store] = lambda: broken

        assert (await client.get("/emails")).status_code == 500
        resp = await client.delete("/emails/abc")
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Server error"}
