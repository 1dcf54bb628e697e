"""Tests for the notification preferences endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

_QUIET = {
    "enablePush": True,
    "enablePopups": False,
    "quietHoursStart": "22:00",
    "quietHoursEnd": "07:00",
}


class TestPreferences:
    @pytest.mark.asyncio
    async def test_defaults_before_anything_saved(self, client: AsyncClient, ada, ada_headers):
        resp = await client.get("/api/preferences", headers=ada_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["userId"] == ada.id
        assert body["notificationPreferences"] == {
            "enablePush": True,
            "enablePopups": True,
            "quietHoursStart": None,
            "quietHoursEnd": None,
        }
        assert body["updatedAt"] is None

    @pytest.mark.asyncio
    async def test_save_then_read_back(self, client: AsyncClient, ada, ada_headers):
        resp = await client.post(
            "/api/preferences",
            json={"userId": ada.id, "notificationPreferences": _QUIET},
            headers=ada_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["notificationPreferences"] == _QUIET
        assert resp.json()["updatedAt"] is not None

        stored = await client.get("/api/preferences", headers=ada_headers)
        assert stored.json()["notificationPreferences"] == _QUIET

    @pytest.mark.asyncio
    async def test_save_replaces_previous(self, client: AsyncClient, ada_headers):
        await client.post(
            "/api/preferences", json={"notificationPreferences": _QUIET}, headers=ada_headers
        )
        resp = await client.post(
            "/api/preferences",
            json={"notificationPreferences": {"enablePush": False}},
            headers=ada_headers,
        )

        prefs = resp.json()["notificationPreferences"]
        assert prefs["enablePush"] is False
        assert prefs["enablePopups"] is True
        assert prefs["quietHoursStart"] is None

    @pytest.mark.asyncio
    async def test_preferences_scoped_to_caller(
        self, client: AsyncClient, grace, ada_headers, grace_headers
    ):
        await client.post(
            "/api/preferences",
            json={"notificationPreferences": {"enablePush": False}},
            headers=ada_headers,
        )

        resp = await client.get("/api/preferences", headers=grace_headers)
        assert resp.json()["userId"] == grace.id
        assert resp.json()["notificationPreferences"]["enablePush"] is True

    @pytest.mark.asyncio
    async def test_other_user_id_forbidden(self, client: AsyncClient, grace, ada_headers):
        resp = await client.post(
            "/api/preferences",
            json={"userId": grace.id, "notificationPreferences": _QUIET},
            headers=ada_headers,
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_half_open_quiet_hours_rejected(self, client: AsyncClient, ada_headers):
        resp = await client.post(
            "/api/preferences",
            json={"notificationPreferences": {"quietHoursStart": "22:00"}},
            headers=ada_headers,
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "ValidationError",
            "message": "Quiet hours need both a start and an end",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("clock", ["25:00", "7:00", "22:60", "noon"])
    async def test_bad_clock_rejected(self, client: AsyncClient, ada_headers, clock):
        resp = await client.post(
            "/api/preferences",
            json={
                "notificationPreferences": {"quietHoursStart": clock, "quietHoursEnd": "07:00"}
            },
            headers=ada_headers,
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        resp = await client.get("/api/preferences")
        assert resp.status_code == 401
