"""Tests for the signaling hub."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.signaling import SignalingHub

CHANNEL = "circle-1700000000000-abcdefghi"


def make_socket():
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.fixture
def hub():
    return SignalingHub()


@pytest.mark.asyncio
async def test_connect_accepts_with_subprotocol(hub):
    ws = make_socket()

    assert await hub.connect(CHANNEL, "u-1", ws, subprotocol="auth") is True

    ws.accept.assert_awaited_once_with(subprotocol="auth")
    assert hub.get_connection_count(CHANNEL) == 1
    assert hub.get_active_channels() == [CHANNEL]


@pytest.mark.asyncio
async def test_reconnect_replaces_previous_socket(hub):
    old, new = make_socket(), make_socket()
    await hub.connect(CHANNEL, "u-1", old)
    await hub.connect(CHANNEL, "u-1", new)

    old.close.assert_awaited_once_with(code=1000)
    assert hub.get_connection_count(CHANNEL) == 1

    # The stale socket's disconnect must not evict its replacement
    hub.disconnect(CHANNEL, "u-1", old)
    assert hub.get_connection_count(CHANNEL) == 1
    hub.disconnect(CHANNEL, "u-1", new)
    assert hub.get_connection_count(CHANNEL) == 0
    assert hub.get_active_channels() == []


@pytest.mark.asyncio
async def test_channel_capacity(hub, monkeypatch):
    monkeypatch.setattr(SignalingHub, "MAX_CONNECTIONS_PER_CHANNEL", 2)
    for user_id in ("u-1", "u-2"):
        await hub.connect(CHANNEL, user_id, make_socket())

    rejected = make_socket()
    assert await hub.connect(CHANNEL, "u-3", rejected) is False
    rejected.accept.assert_not_awaited()
    rejected.close.assert_awaited_once()
    assert rejected.close.await_args.kwargs["code"] == 1013


@pytest.mark.asyncio
async def test_global_capacity(hub, monkeypatch):
    monkeypatch.setattr(SignalingHub, "MAX_TOTAL_CONNECTIONS", 1)
    await hub.connect(CHANNEL, "u-1", make_socket())

    assert await hub.connect("circle-other", "u-2", make_socket()) is False
    assert hub.get_total_connection_count() == 1


@pytest.mark.asyncio
async def test_broadcast_reaches_every_member(hub):
    sockets = {uid: make_socket() for uid in ("u-1", "u-2", "u-3")}
    for uid, ws in sockets.items():
        await hub.connect(CHANNEL, uid, ws)
    outsider = make_socket()
    await hub.connect("circle-other", "u-9", outsider)

    await hub.broadcast(CHANNEL, "circle_ended", {"circleId": "c-1", "reason": "ended"})

    expected = {"type": "circle_ended", "payload": {"circleId": "c-1", "reason": "ended"}}
    for ws in sockets.values():
        ws.send_json.assert_awaited_once_with(expected)
    outsider.send_json.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_send_drops_connection(hub):
    healthy, broken = make_socket(), make_socket()
    broken.send_json.side_effect = RuntimeError("socket gone")
    await hub.connect(CHANNEL, "u-1", healthy)
    await hub.connect(CHANNEL, "u-2", broken)

    await hub.broadcast(CHANNEL, "vote_update", {"votes": {}})

    healthy.send_json.assert_awaited_once()
    broken.close.assert_awaited_with(code=1011)
    assert hub.get_connection_count(CHANNEL) == 1


@pytest.mark.asyncio
async def test_send_direct_targets_one_member(hub):
    first, second = make_socket(), make_socket()
    await hub.connect(CHANNEL, "u-1", first)
    await hub.connect(CHANNEL, "u-2", second)

    await hub.send_direct(CHANNEL, "u-2", "assign_role", {"sessionId": "s-1", "role": "imposter"})

    first.send_json.assert_not_awaited()
    second.send_json.assert_awaited_once_with(
        {"type": "assign_role", "payload": {"sessionId": "s-1", "role": "imposter"}}
    )


@pytest.mark.asyncio
async def test_relay_receives_broadcasts_and_undelivered_directs(hub):
    relay = MagicMock()
    relay.publish = AsyncMock()
    hub.attach_relay(relay)
    await hub.connect(CHANNEL, "u-1", make_socket())

    await hub.broadcast(CHANNEL, "participant_left", {"userId": "u-2"})
    relay.publish.assert_awaited_once_with(
        CHANNEL, {"type": "participant_left", "payload": {"userId": "u-2"}}
    )

    relay.publish.reset_mock()
    await hub.send_direct(CHANNEL, "u-1", "assign_role", {"role": "crewmate"})
    relay.publish.assert_not_awaited()

    await hub.send_direct(CHANNEL, "u-remote", "assign_role", {"role": "crewmate"})
    relay.publish.assert_awaited_once_with(
        CHANNEL, {"type": "assign_role", "payload": {"role": "crewmate"}}, target_user_id="u-remote"
    )


@pytest.mark.asyncio
async def test_relay_failure_does_not_raise(hub):
    relay = MagicMock()
    relay.publish = AsyncMock(side_effect=RuntimeError("relay down"))
    hub.attach_relay(relay)

    await hub.broadcast(CHANNEL, "circle_ended", {"circleId": "c-1"})
