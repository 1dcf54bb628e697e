"""Tests for notification, scheduled notification, and push subscription endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from circle.common.models import PushSubscription
from tests.factories import make_notification

_SUBSCRIPTION = {
    "endpoint": "https://push.example.com/send/abc123",
    "expirationTime": None,
    "keys": {"p256dh": "BPublicKey", "auth": "AuthSecret"},
}


class TestInAppNotifications:
    @pytest.mark.asyncio
    async def test_list_newest_first_and_scoped_to_caller(
        self, client: AsyncClient, db, ada, grace, ada_headers
    ):
        older = await make_notification(db, ada, title="older", minutes=1)
        newer = await make_notification(db, ada, title="newer", minutes=2)
        await make_notification(db, grace, title="not ada's")

        resp = await client.get("/api/notifications", headers=ada_headers)
        assert resp.status_code == 200
        assert [n["id"] for n in resp.json()] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_unread_count(self, client: AsyncClient, db, ada, ada_headers):
        await make_notification(db, ada)
        await make_notification(db, ada)
        await make_notification(db, ada, read=True)

        resp = await client.get("/api/notifications/unread-count", headers=ada_headers)
        assert resp.json() == {"count": 2}

    @pytest.mark.asyncio
    async def test_mark_read(self, client: AsyncClient, db, ada, ada_headers):
        notification = await make_notification(db, ada)

        resp = await client.patch(
            f"/api/notifications/{notification.id}/read", headers=ada_headers
        )
        assert resp.status_code == 200
        assert resp.json()["read"] is True
        assert resp.json()["readAt"] is not None

        count = await client.get("/api/notifications/unread-count", headers=ada_headers)
        assert count.json() == {"count": 0}

    @pytest.mark.asyncio
    async def test_mark_someone_elses(self, client: AsyncClient, db, ada, grace_headers):
        notification = await make_notification(db, ada)
        resp = await client.patch(
            f"/api/notifications/{notification.id}/read", headers=grace_headers
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_mark_unknown(self, client: AsyncClient, ada_headers):
        resp = await client.patch(f"/api/notifications/{'0' * 32}/read", headers=ada_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_read_all(
        self, client: AsyncClient, db, ada, grace, ada_headers, grace_headers
    ):
        await make_notification(db, ada)
        await make_notification(db, ada)
        await make_notification(db, grace)

        resp = await client.post("/api/notifications/read-all", headers=ada_headers)
        assert resp.json() == {"success": True}

        ada_count = await client.get("/api/notifications/unread-count", headers=ada_headers)
        grace_count = await client.get("/api/notifications/unread-count", headers=grace_headers)
        assert ada_count.json() == {"count": 0}
        assert grace_count.json() == {"count": 1}


class TestScheduled:
    @pytest.mark.asyncio
    async def test_schedule_list_delete(self, client: AsyncClient, ada, ada_headers):
        when = datetime.now(UTC) + timedelta(hours=1)
        created = await client.post(
            "/api/notifications/schedule",
            json={"title": "Stand-up", "body": "Daily sync", "scheduledFor": when.isoformat()},
            headers=ada_headers,
        )
        assert created.status_code == 201
        scheduled = created.json()
        assert scheduled["sent"] is False
        assert scheduled["userId"] == ada.id

        listed = await client.get("/api/notifications/scheduled", headers=ada_headers)
        assert [s["id"] for s in listed.json()] == [scheduled["id"]]

        deleted = await client.delete(
            f"/api/notifications/scheduled/{scheduled['id']}", headers=ada_headers
        )
        assert deleted.json() == {"success": True}
        listed = await client.get("/api/notifications/scheduled", headers=ada_headers)
        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_naive_time_taken_as_utc(self, client: AsyncClient, ada_headers):
        resp = await client.post(
            "/api/notifications/schedule",
            json={"title": "Reminder", "scheduledFor": "2026-12-01T09:00:00"},
            headers=ada_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["scheduledFor"].startswith("2026-12-01T09:00:00")

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, client: AsyncClient, ada_headers):
        resp = await client.post(
            "/api/notifications/schedule",
            json={"title": "   ", "scheduledFor": "2026-12-01T09:00:00Z"},
            headers=ada_headers,
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_cannot_delete_someone_elses(
        self, client: AsyncClient, ada_headers, grace_headers
    ):
        created = await client.post(
            "/api/notifications/schedule",
            json={"title": "Mine", "scheduledFor": "2026-12-01T09:00:00Z"},
            headers=ada_headers,
        )
        resp = await client.delete(
            f"/api/notifications/scheduled/{created.json()['id']}", headers=grace_headers
        )
        assert resp.status_code == 403


class TestPushSubscriptions:
    @pytest.mark.asyncio
    async def test_subscribe_upserts(self, client: AsyncClient, db, ada, ada_headers):
        first = await client.post("/api/push/subscribe", json=_SUBSCRIPTION, headers=ada_headers)
        assert first.status_code == 204

        rotated = {**_SUBSCRIPTION, "keys": {"p256dh": "BNewKey", "auth": "NewSecret"}}
        await client.post("/api/push/subscribe", json=rotated, headers=ada_headers)

        rows = (await db.execute(select(PushSubscription))).scalars().all()
        assert len(rows) == 1
        assert rows[0].p256dh == "BNewKey"
        assert rows[0].user_id == ada.id

    @pytest.mark.asyncio
    async def test_unsubscribe(self, client: AsyncClient, db, ada, ada_headers):
        await client.post("/api/push/subscribe", json=_SUBSCRIPTION, headers=ada_headers)
        resp = await client.delete(
            "/api/push/subscribe",
            params={"endpoint": _SUBSCRIPTION["endpoint"]},
            headers=ada_headers,
        )
        assert resp.status_code == 204
        rows = (await db.execute(select(PushSubscription))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        resp = await client.post("/api/push/subscribe", json=_SUBSCRIPTION)
        assert resp.status_code == 401
