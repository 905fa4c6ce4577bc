"""
Unit tests for the session registry and channel hub.

Tests cover:
- Last-writer-wins registration and stale unregistration
- Channel membership bookkeeping
- Emit, broadcast and per-connection delivery results
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from DuoChat.core.message.protocol import Event, EventType
from DuoChat.core.server.routing import ChannelHub, DeliveryStatus
from DuoChat.core.server.session import SessionRegistry


def make_connection(conn_id: str, delivered: bool = True) -> MagicMock:
    connection = MagicMock()
    connection.conn_id = conn_id
    connection.send = AsyncMock(return_value=delivered)
    connection.close = AsyncMock()
    return connection


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def setup_method(self):
        self.registry = SessionRegistry()
        self.first = make_connection("c1")
        self.second = make_connection("c2")

    def test_register_new_user(self):
        assert self.registry.register("u1", self.first, {"name": "Alice"}) is None
        assert self.registry.is_online("u1")
        assert self.registry.get("u1") is self.first
        assert self.registry.list_online() == [{"userId": "u1", "userInfo": {"name": "Alice"}}]

    def test_register_again_returns_replaced_connection(self):
        self.registry.register("u1", self.first)
        assert self.registry.register("u1", self.second) is self.first
        assert self.registry.get("u1") is self.second
        assert len(self.registry) == 1

    def test_re_register_same_connection(self):
        self.registry.register("u1", self.first)
        assert self.registry.register("u1", self.first) is None

    def test_stale_unregister_keeps_newer_session(self):
        self.registry.register("u1", self.first)
        self.registry.register("u1", self.second)

        assert not self.registry.unregister("u1", self.first)
        assert self.registry.get("u1") is self.second
        assert self.registry.unregister("u1", self.second)
        assert not self.registry.is_online("u1")

    def test_unregister_unknown_user(self):
        assert not self.registry.unregister("nobody")

    def test_connections_and_session(self):
        self.registry.register("u1", self.first)
        self.registry.register("u2", self.second)
        assert set(c.conn_id for c in self.registry.connections()) == {"c1", "c2"}
        session = self.registry.get_session("u2")
        assert session.connection is self.second
        assert session.duration >= 0


class TestChannelHub:
    """Tests for ChannelHub."""

    def setup_method(self):
        self.registry = SessionRegistry()
        self.hub = ChannelHub(self.registry)
        self.a = make_connection("a")
        self.b = make_connection("b")
        self.event = Event(EventType.USER_TYPING, {"chatId": "chat-1"})

    def test_join_and_leave(self):
        self.hub.join("chat-1", self.a)
        assert self.hub.is_member("chat-1", self.a)
        assert self.hub.leave("chat-1", self.a)
        assert not self.hub.leave("chat-1", self.a)
        assert self.hub.members("chat-1") == []

    def test_leave_all(self):
        self.hub.join("u-a", self.a)
        self.hub.join("chat-1", self.a)
        self.hub.join("chat-1", self.b)

        assert self.hub.leave_all(self.a) == ["chat-1", "u-a"]
        assert self.hub.channels_of(self.a) == set()
        assert self.hub.members("chat-1") == [self.b]

    @pytest.mark.asyncio
    async def test_emit_excludes_originator(self):
        self.hub.join("chat-1", self.a)
        self.hub.join("chat-1", self.b)

        results = await self.hub.emit("chat-1", self.event, exclude=self.a)

        assert [r.conn_id for r in results] == ["b"]
        self.a.send.assert_not_awaited()
        self.b.send.assert_awaited_once_with(self.event.serialize())

    @pytest.mark.asyncio
    async def test_emit_to_empty_channel(self):
        assert await self.hub.emit("nobody-here", self.event) == []

    @pytest.mark.asyncio
    async def test_failed_delivery_is_reported(self):
        dead = make_connection("dead", delivered=False)
        self.hub.join("chat-1", dead)
        self.hub.join("chat-1", self.a)

        results = await self.hub.emit("chat-1", self.event)

        assert [r.status for r in results] == [DeliveryStatus.FAILED, DeliveryStatus.DELIVERED]
        assert results[0].error
        self.a.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broadcast_reaches_registered_sessions(self):
        self.registry.register("u-a", self.a)
        self.registry.register("u-b", self.b)

        results = await self.hub.broadcast(self.event, exclude=self.b)

        assert [r.conn_id for r in results] == ["a"]
        self.b.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_single(self):
        result = await self.hub.send(self.a, self.event)
        assert result.status is DeliveryStatus.DELIVERED
