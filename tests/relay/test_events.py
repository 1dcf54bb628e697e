"""Tests for relay envelope publishing."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from circle.common.config import get_settings
from circle.relay.events import publish_envelope, publish_envelope_sync, try_publish_envelope
from circle.relay.frames import Envelope


@pytest.fixture
def envelope() -> Envelope:
    return Envelope.to_users(["u1"], {"type": "notification", "notification": {"id": "n1"}})


@pytest.fixture
def redis_enabled(monkeypatch):
    monkeypatch.setenv("RELAY_USE_REDIS", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestPublishEnvelope:
    @pytest.mark.asyncio
    async def test_in_process_delivery(self, envelope: Envelope):
        with patch("circle.relay.events.manager") as mock_manager:
            mock_manager.deliver = AsyncMock(return_value=1)
            await publish_envelope(envelope)
            mock_manager.deliver.assert_awaited_once_with(envelope)

    @pytest.mark.asyncio
    async def test_redis_publish(self, envelope: Envelope, redis_enabled):
        mock_redis = MagicMock()
        mock_redis.publish = AsyncMock()
        mock_redis.aclose = AsyncMock()

        with (
            patch("circle.relay.events.aioredis.from_url", return_value=mock_redis),
            patch("circle.relay.events.manager") as mock_manager,
        ):
            await publish_envelope(envelope)

        mock_redis.publish.assert_awaited_once_with("circle:relay", envelope.model_dump_json())
        mock_redis.aclose.assert_awaited_once()
        mock_manager.deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_redis_closed_on_publish_error(self, envelope: Envelope, redis_enabled):
        mock_redis = MagicMock()
        mock_redis.publish = AsyncMock(side_effect=ConnectionError("down"))
        mock_redis.aclose = AsyncMock()

        with patch("circle.relay.events.aioredis.from_url", return_value=mock_redis):
            with pytest.raises(ConnectionError):
                await publish_envelope(envelope)

        mock_redis.aclose.assert_awaited_once()


class TestSafeWrappers:
    @pytest.mark.asyncio
    async def test_try_publish_reports_failure(self, envelope: Envelope):
        with patch(
            "circle.relay.events.publish_envelope", AsyncMock(side_effect=ConnectionError("down"))
        ):
            assert await try_publish_envelope(envelope) is False

    @pytest.mark.asyncio
    async def test_try_publish_reports_success(self, envelope: Envelope):
        with patch("circle.relay.events.publish_envelope", AsyncMock()):
            assert await try_publish_envelope(envelope) is True

    def test_sync_wrapper_swallows_errors(self, envelope: Envelope):
        with (
            patch(
                "circle.relay.events.publish_envelope",
                AsyncMock(side_effect=ConnectionError("down")),
            ),
            patch("circle.relay.events.logger") as mock_logger,
        ):
            publish_envelope_sync(envelope)
        mock_logger.warning.assert_called_once()

    def test_sync_wrapper_publishes(self, envelope: Envelope):
        with patch("circle.relay.events.publish_envelope", AsyncMock()) as mock_publish:
            publish_envelope_sync(envelope)
        mock_publish.assert_awaited_once_with(envelope)
