"""
Channel routing and broadcasting.

A channel is a named set of connections. Each connection joins its
personal channel (named by user id) on connect and chat channels
(named by chat id) on ``joinChat``. Events are serialized once and sent
to every member in join order.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional, Set

from DuoChat.core.message.protocol import Event
from DuoChat.core.server.interfaces import TransportConnection
from DuoChat.core.server.session import SessionRegistry

logger = logging.getLogger(__name__)


class DeliveryStatus(Enum):
    """Status of a single frame delivery."""
    DELIVERED = auto()
    FAILED = auto()


@dataclass
class DeliveryResult:
    """Result of one delivery attempt."""
    status: DeliveryStatus
    conn_id: str
    error: Optional[str] = None


class ChannelHub:
    """
    Tracks channel membership and fans events out to members.
    """

    def __init__(self, registry: SessionRegistry):
        """
        Args:
            registry: Session registry used for server-wide broadcasts
        """
        self._registry = registry
        self._channels: Dict[str, Dict[str, TransportConnection]] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def join(self, channel: str, connection: TransportConnection) -> None:
        with self._lock:
            self._channels.setdefault(channel, {})[connection.conn_id] = connection
            self._memberships.setdefault(connection.conn_id, set()).add(channel)
        logger.debug("Connection %s joined channel %s", connection.conn_id, channel)

    def leave(self, channel: str, connection: TransportConnection) -> bool:
        """Remove ``connection`` from ``channel``. Returns True if it was a member."""
        with self._lock:
            return self._leave_locked(channel, connection.conn_id)

    def _leave_locked(self, channel: str, conn_id: str) -> bool:
        members = self._channels.get(channel)
        if not members or conn_id not in members:
            return False
        del members[conn_id]
        if not members:
            del self._channels[channel]
        channels = self._memberships.get(conn_id)
        if channels is not None:
            channels.discard(channel)
            if not channels:
                del self._memberships[conn_id]
        return True

    def leave_all(self, connection: TransportConnection) -> List[str]:
        """Remove ``connection`` from every channel; returns the channels it left."""
        with self._lock:
            channels = sorted(self._memberships.get(connection.conn_id, set()))
            for channel in channels:
                self._leave_locked(channel, connection.conn_id)
        return channels

    def is_member(self, channel: str, connection: TransportConnection) -> bool:
        with self._lock:
            return connection.conn_id in self._channels.get(channel, {})

    def members(self, channel: str) -> List[TransportConnection]:
        with self._lock:
            return list(self._channels.get(channel, {}).values())

    def channels_of(self, connection: TransportConnection) -> Set[str]:
        with self._lock:
            return set(self._memberships.get(connection.conn_id, set()))

    async def emit(
        self,
        channel: str,
        event: Event,
        exclude: Optional[TransportConnection] = None
    ) -> List[DeliveryResult]:
        """
        Send ``event`` to every member of ``channel``.

        Args:
            channel: Channel name (user id or chat id)
            event: Event to deliver
            exclude: Connection to skip, usually the originator
        """
        targets = [c for c in self.members(channel) if exclude is None or c.conn_id != exclude.conn_id]
        return await self._deliver(targets, event)

    async def broadcast(
        self,
        event: Event,
        exclude: Optional[TransportConnection] = None
    ) -> List[DeliveryResult]:
        """Send ``event`` to every registered session."""
        targets = [c for c in self._registry.connections()
                   if exclude is None or c.conn_id != exclude.conn_id]
        return await self._deliver(targets, event)

    async def send(self, connection: TransportConnection, event: Event) -> DeliveryResult:
        """Send ``event`` to a single connection."""
        results = await self._deliver([connection], event)
        return results[0]

    async def _deliver(self, targets: List[TransportConnection], event: Event) -> List[DeliveryResult]:
        frame = event.serialize()
        results: List[DeliveryResult] = []
        for connection in targets:
            if await connection.send(frame):
                results.append(DeliveryResult(DeliveryStatus.DELIVERED, connection.conn_id))
            else:
                logger.debug("Dropped %s for connection %s", event.type.value, connection.conn_id)
                results.append(DeliveryResult(DeliveryStatus.FAILED, connection.conn_id,
                                              error="Send failed"))
        return results


__all__ = ['DeliveryStatus', 'DeliveryResult', 'ChannelHub']
