"""Presence tracking for DuoChat.

Online state lives in the session registry (one connection per user);
the stored ``isOnline``/``lastSeen`` columns mirror it for HTTP
listings. Each transition of one user (registry change, stored flag
and broadcast) runs under that user's lock, so observers see the
user's online/offline events in connect/disconnect order, also when a
reconnect lands while the previous socket is still going offline.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Dict, List, Optional

from DuoChat.core.message.protocol import Event, EventType
from DuoChat.core.models import User, now, to_iso
from DuoChat.core.server.interfaces import EntityStore, TransportConnection
from DuoChat.core.server.routing import ChannelHub
from DuoChat.core.server.session import SessionRegistry

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """Announces users coming online and going offline."""

    def __init__(self, registry: SessionRegistry, hub: ChannelHub, store: EntityStore):
        self._registry = registry
        self._hub = hub
        self._store = store
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def is_online(self, user_id: str) -> bool:
        return self._registry.is_online(user_id)

    def online_users(self) -> List[Dict[str, Any]]:
        return self._registry.list_online()

    async def announce_online(self, user: User,
                              connection: TransportConnection) -> Optional[TransportConnection]:
        """
        Register ``connection`` for ``user`` and announce it.

        A user who was already online (a reconnect replacing the old
        connection) is not announced again, but the stored presence is
        refreshed and the new connection still gets the snapshot.

        Returns:
            The replaced connection, which the caller must close
        """
        user_info = user.public_profile()
        async with self._lock_for(user.id):
            was_online = self._registry.is_online(user.id)
            replaced = self._registry.register(user.id, connection, user_info)

            await self._store.set_presence(user.id, True, now())
            if not was_online:
                await self._hub.broadcast(
                    Event(EventType.USER_ONLINE, {"userId": user.id, "userInfo": user_info}),
                    exclude=connection,
                )
                logger.info("User %s is online", user.id)
        await self.snapshot_for(connection)
        return replaced

    async def announce_offline(self, user_id: str,
                               connection: Optional[TransportConnection] = None) -> bool:
        """
        Unregister and announce ``user_id`` as offline.

        Nothing happens when ``connection`` is no longer the registered
        one (it was replaced by a newer session).

        Returns:
            True if the user went offline
        """
        async with self._lock_for(user_id):
            session = self._registry.get_session(user_id)
            if not self._registry.unregister(user_id, connection):
                return False

            last_seen = now()
            await self._store.set_presence(user_id, False, last_seen)
            user_info = session.user_info if session else {}
            await self._hub.broadcast(
                Event(EventType.USER_OFFLINE, {
                    "userId": user_id,
                    "userInfo": user_info,
                    "lastSeen": to_iso(last_seen),
                })
            )
        logger.info("User %s is offline", user_id)
        return True

    async def snapshot_for(self, connection: TransportConnection) -> None:
        """Send the ``activeUsers`` list to ``connection``."""
        await self._hub.send(connection, Event(EventType.ACTIVE_USERS, self._registry.list_online()))

    async def reset(self) -> int:
        """Mark every stored user offline; called once at startup."""
        count = await self._store.reset_presence()
        if count:
            logger.info("Reset stale online flag for %d users", count)
        return count


__all__ = ['PresenceBroadcaster']
