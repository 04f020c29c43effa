"""Tests for the cross-instance signaling relay."""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.storage.signal_relay import CHANNEL_PREFIX, SignalRelay

CHANNEL = "circle-1700000000000-abcdefghi"


@pytest.fixture
def mock_hub():
    hub = MagicMock()
    hub.get_connection_count = MagicMock(return_value=0)
    hub.deliver_local = AsyncMock()
    return hub


@pytest.fixture
def relay(mock_hub):
    """Relay without Redis (local-only mode)."""
    return SignalRelay(mock_hub, redis_url="")


def _message(relay, **overrides):
    body = {
        "channel": CHANNEL,
        "target": None,
        "envelope": {"type": "circle_ended", "payload": {"circleId": "c-1"}},
        "source": "other-instance",
    }
    body.update(overrides)
    return {"type": "pmessage", "data": json.dumps(body)}


class TestRelayLocalMode:

    @pytest.mark.asyncio
    async def test_start_without_redis_url(self, relay):
        await relay.start()
        assert relay.enabled is False

    @pytest.mark.asyncio
    async def test_publish_without_redis_is_noop(self, relay):
        await relay.publish(CHANNEL, {"type": "ping", "payload": {}})

    @pytest.mark.asyncio
    async def test_stop_without_redis(self, relay):
        await relay.stop()


class TestRelayPublish:

    @pytest.mark.asyncio
    async def test_publish_sends_envelope_to_channel(self, relay):
        relay._redis_client = AsyncMock()
        envelope = {"type": "participant_left", "payload": {"userId": "u-1"}}

        await relay.publish(CHANNEL, envelope)

        relay._redis_client.publish.assert_awaited_once()
        redis_channel, raw = relay._redis_client.publish.await_args.args
        assert redis_channel == f"{CHANNEL_PREFIX}{CHANNEL}"
        body = json.loads(raw)
        assert body["channel"] == CHANNEL
        assert body["envelope"] == envelope
        assert body["target"] is None
        assert body["source"] == relay._instance_id

    @pytest.mark.asyncio
    async def test_publish_direct_carries_target(self, relay):
        relay._redis_client = AsyncMock()

        await relay.publish(CHANNEL, {"type": "assign_role", "payload": {}}, target_user_id="u-2")

        body = json.loads(relay._redis_client.publish.await_args.args[1])
        assert body["target"] == "u-2"

    @pytest.mark.asyncio
    async def test_publish_error_is_swallowed(self, relay):
        relay._redis_client = AsyncMock()
        relay._redis_client.publish.side_effect = ConnectionError("Redis down")

        await relay.publish(CHANNEL, {"type": "ping", "payload": {}})


class TestRelayHandleMessage:

    @pytest.mark.asyncio
    async def test_delivers_remote_envelope_locally(self, relay, mock_hub):
        mock_hub.get_connection_count.return_value = 2

        await relay._handle_message(_message(relay, target="u-3"))

        mock_hub.deliver_local.assert_awaited_once_with(
            CHANNEL,
            {"type": "circle_ended", "payload": {"circleId": "c-1"}},
            target_user_id="u-3",
        )

    @pytest.mark.asyncio
    async def test_skips_own_publications(self, relay, mock_hub):
        mock_hub.get_connection_count.return_value = 2

        await relay._handle_message(_message(relay, source=relay._instance_id))

        mock_hub.deliver_local.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skips_channels_without_local_connections(self, relay, mock_hub):
        await relay._handle_message(_message(relay))
        mock_hub.deliver_local.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_payload_is_ignored(self, relay, mock_hub):
        mock_hub.get_connection_count.return_value = 2

        await relay._handle_message({"type": "pmessage", "data": "not json"})
        await relay._handle_message(_message(relay, channel=""))
        await relay._handle_message(_message(relay, envelope="oops"))

        mock_hub.deliver_local.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bytes_payload_is_decoded(self, relay, mock_hub):
        mock_hub.get_connection_count.return_value = 1
        message = _message(relay)
        message["data"] = message["data"].encode("utf-8")

        await relay._handle_message(message)

        mock_hub.deliver_local.assert_awaited_once()
