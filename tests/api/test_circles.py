"""Tests for circle discovery, membership, and chat history endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.factories import BASE_TIME, make_circle, make_circle_message


class TestCreateAndList:
    @pytest.mark.asyncio
    async def test_create_enrolls_owner(self, client: AsyncClient, ada, ada_headers):
        resp = await client.post(
            "/api/circles",
            json={"name": "  Book Club  ", "description": "Monthly reads"},
            headers=ada_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["name"] == "Book Club"
        assert body["ownerId"] == ada.id
        assert body["memberCount"] == 1
        assert body["isPrivate"] is False

        mine = await client.get("/api/circles/my", headers=ada_headers)
        assert [c["id"] for c in mine.json()] == [body["id"]]

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, client: AsyncClient, ada_headers):
        resp = await client.post("/api/circles", json={"name": ""}, headers=ada_headers)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_discover_lists_public_only(
        self, client: AsyncClient, db, ada, grace_headers
    ):
        public = await make_circle(db, owner=ada, name="Open")
        await make_circle(db, owner=ada, name="Secret", is_private=True)

        resp = await client.get("/api/circles", headers=grace_headers)
        assert [c["id"] for c in resp.json()] == [public.id]

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        assert (await client.get("/api/circles/my")).status_code == 401


class TestGetCircle:
    @pytest.mark.asyncio
    async def test_private_circle_hidden_from_outsiders(
        self, client: AsyncClient, db, ada, grace_headers
    ):
        secret = await make_circle(db, owner=ada, is_private=True)
        resp = await client.get(f"/api/circles/{secret.id}", headers=grace_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_circle(self, client: AsyncClient, ada_headers):
        resp = await client.get(f"/api/circles/{'0' * 32}", headers=ada_headers)
        assert resp.status_code == 404
        assert resp.json() == {"error": "NotFoundError", "message": "Circle not found"}


class TestMembership:
    @pytest.mark.asyncio
    async def test_join_and_leave(self, client: AsyncClient, db, ada, grace_headers):
        circle = await make_circle(db, owner=ada)

        joined = await client.post(f"/api/circles/{circle.id}/join", headers=grace_headers)
        assert joined.status_code == 200
        assert joined.json()["memberCount"] == 2

        again = await client.post(f"/api/circles/{circle.id}/join", headers=grace_headers)
        assert again.json()["memberCount"] == 2

        left = await client.post(f"/api/circles/{circle.id}/leave", headers=grace_headers)
        assert left.json() == {"success": True}
        mine = await client.get("/api/circles/my", headers=grace_headers)
        assert mine.json() == []

    @pytest.mark.asyncio
    async def test_cannot_join_private(self, client: AsyncClient, db, ada, grace_headers):
        secret = await make_circle(db, owner=ada, is_private=True)
        resp = await client.post(f"/api/circles/{secret.id}/join", headers=grace_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_owner_cannot_leave(self, client: AsyncClient, db, ada, ada_headers):
        circle = await make_circle(db, owner=ada)
        resp = await client.post(f"/api/circles/{circle.id}/leave", headers=ada_headers)
        assert resp.status_code == 400


class TestHistory:
    @pytest.mark.asyncio
    async def test_messages_oldest_first_with_paging(
        self, client: AsyncClient, db, ada, grace, ada_headers
    ):
        circle = await make_circle(db, owner=ada, members=[grace])
        for minute in range(5):
            await make_circle_message(db, circle, ada if minute % 2 else grace, f"m{minute}", minute)

        latest = await client.get(
            f"/api/circles/{circle.id}/messages", params={"limit": 2}, headers=ada_headers
        )
        assert latest.status_code == 200
        assert [m["content"] for m in latest.json()] == ["m3", "m4"]

        older = await client.get(
            f"/api/circles/{circle.id}/messages",
            params={"limit": 2, "before": latest.json()[0]["createdAt"]},
            headers=ada_headers,
        )
        assert [m["content"] for m in older.json()] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_message_shape(self, client: AsyncClient, db, ada, ada_headers):
        circle = await make_circle(db, owner=ada)
        await make_circle_message(db, circle, ada, "hello")

        resp = await client.get(f"/api/circles/{circle.id}/messages", headers=ada_headers)
        (message,) = resp.json()
        assert set(message) == {"id", "circleId", "userId", "content", "createdAt"}
        assert message["createdAt"].startswith(BASE_TIME.strftime("%Y-%m-%dT%H:%M"))

    @pytest.mark.asyncio
    async def test_non_member_forbidden(self, client: AsyncClient, db, ada, grace_headers):
        circle = await make_circle(db, owner=ada)
        resp = await client.get(f"/api/circles/{circle.id}/messages", headers=grace_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_limit_bounds(self, client: AsyncClient, db, ada, ada_headers):
        circle = await make_circle(db, owner=ada)
        resp = await client.get(
            f"/api/circles/{circle.id}/messages", params={"limit": 101}, headers=ada_headers
        )
        assert resp.status_code == 422
