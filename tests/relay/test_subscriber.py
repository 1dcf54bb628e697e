"""Tests for the Redis pub/sub relay subscriber."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from circle.relay.frames import Envelope
from circle.relay.subscriber import redis_subscriber


class FakeAsyncIter:
    """Fake async iterator that yields messages then raises CancelledError.

    CancelledError (not StopAsyncIteration) breaks out of both the
    ``async for`` and the subscriber's ``while True`` loop.
    """

    def __init__(self, messages: list[dict]):
        self._messages = messages
        self._index = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index < len(self._messages):
            msg = self._messages[self._index]
            self._index += 1
            return msg
        raise asyncio.CancelledError


@pytest.fixture
def mock_manager() -> MagicMock:
    mgr = MagicMock()
    mgr.deliver = AsyncMock(return_value=1)
    return mgr


def _make_redis_mock(messages: list[dict]) -> MagicMock:
    """Mock Redis client whose pubsub yields the given messages.

    redis.asyncio `pubsub()` is synchronous, `subscribe()` is async.
    """
    mock_pubsub = MagicMock()
    mock_pubsub.subscribe = AsyncMock()
    mock_pubsub.aclose = AsyncMock()
    mock_pubsub.listen.return_value = FakeAsyncIter(messages)

    mock_redis = MagicMock()
    mock_redis.pubsub.return_value = mock_pubsub
    mock_redis.aclose = AsyncMock()
    return mock_redis


class TestRedisSubscriber:
    @pytest.mark.asyncio
    async def test_delivers_envelope(self, mock_manager: MagicMock):
        envelope = Envelope.to_circle("c1", {"type": "chat", "message": {"id": "m1"}})
        messages = [
            {"type": "subscribe", "data": None},
            {"type": "message", "data": envelope.model_dump_json().encode()},
        ]
        mock_redis = _make_redis_mock(messages)

        with patch("circle.relay.subscriber.aioredis.from_url", return_value=mock_redis):
            await redis_subscriber(mock_manager)

        mock_redis.pubsub.return_value.subscribe.assert_awaited_once_with("circle:relay")
        mock_manager.deliver.assert_awaited_once_with(envelope)

    @pytest.mark.asyncio
    async def test_handles_string_data(self, mock_manager: MagicMock):
        envelope = Envelope.to_users(["u1"], {"type": "dm"})
        mock_redis = _make_redis_mock([{"type": "message", "data": envelope.model_dump_json()}])

        with patch("circle.relay.subscriber.aioredis.from_url", return_value=mock_redis):
            await redis_subscriber(mock_manager)

        mock_manager.deliver.assert_awaited_once_with(envelope)

    @pytest.mark.asyncio
    async def test_skips_malformed_envelopes(self, mock_manager: MagicMock):
        good = Envelope.to_users(["u1"], {"type": "dm"})
        messages = [
            {"type": "message", "data": b"not-valid-json"},
            {"type": "message", "data": b'{"target": {"kind": "planet", "ids": []}, "frame": {}}'},
            {"type": "message", "data": good.model_dump_json().encode()},
        ]
        mock_redis = _make_redis_mock(messages)

        with patch("circle.relay.subscriber.aioredis.from_url", return_value=mock_redis):
            await redis_subscriber(mock_manager)

        mock_manager.deliver.assert_awaited_once_with(good)

    @pytest.mark.asyncio
    async def test_increments_metrics(self, mock_manager: MagicMock):
        envelope = Envelope.to_circle("c1", {"type": "chat"})
        mock_redis = _make_redis_mock(
            [{"type": "message", "data": envelope.model_dump_json().encode()}]
        )

        with (
            patch("circle.relay.subscriber.aioredis.from_url", return_value=mock_redis),
            patch("circle.relay.subscriber.RELAY_ENVELOPES_RECEIVED_TOTAL") as mock_counter,
        ):
            await redis_subscriber(mock_manager)

        mock_counter.labels.assert_called_with(target_kind="circle")
        mock_counter.labels.return_value.inc.assert_called_once()

    @pytest.mark.asyncio
    async def test_reconnects_after_error(self, mock_manager: MagicMock):
        """A Redis error triggers a backoff sleep, then a fresh connection."""
        envelope = Envelope.to_users(["u1"], {"type": "dm"})
        good_redis = _make_redis_mock(
            [{"type": "message", "data": envelope.model_dump_json().encode()}]
        )

        with (
            patch(
                "circle.relay.subscriber.aioredis.from_url",
                side_effect=[ConnectionError("refused"), good_redis],
            ),
            patch("circle.relay.subscriber.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            await redis_subscriber(mock_manager)

        mock_sleep.assert_awaited_once_with(1)
        mock_manager.deliver.assert_awaited_once_with(envelope)

    @pytest.mark.asyncio
    async def test_closes_connection_on_shutdown(self, mock_manager: MagicMock):
        mock_redis = _make_redis_mock([])

        with patch("circle.relay.subscriber.aioredis.from_url", return_value=mock_redis):
            await redis_subscriber(mock_manager)

        mock_redis.pubsub.return_value.aclose.assert_awaited_once()
        mock_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closes_broken_connection_before_reconnecting(self, mock_manager: MagicMock):
        broken_redis = _make_redis_mock([])
        broken_redis.pubsub.return_value.listen.side_effect = ConnectionError("reset")
        good_redis = _make_redis_mock([])
        closed_before_sleep = []

        async def fake_sleep(seconds):  # noqa: ANN001
            closed_before_sleep.append(broken_redis.aclose.await_count)

        with (
            patch(
                "circle.relay.subscriber.aioredis.from_url",
                side_effect=[broken_redis, good_redis],
            ),
            patch("circle.relay.subscriber.asyncio.sleep", new=fake_sleep),
        ):
            await redis_subscriber(mock_manager)

        assert closed_before_sleep == [1]
        broken_redis.pubsub.return_value.aclose.assert_awaited_once()
        good_redis.aclose.assert_awaited_once()
