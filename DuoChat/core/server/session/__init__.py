"""
Session registry for the server.

Maps each online user to the one connection currently serving them.
Process-local and in-memory: it is empty after a restart.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from DuoChat.core.server.interfaces import TransportConnection

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    """
    The live binding of a user to a connection.

    Attributes:
        user_id: Bound user
        connection: Connection currently serving the user
        user_info: Public profile announced with presence events
        connected_at: Timestamp of registration
    """
    user_id: str
    connection: TransportConnection
    user_info: Dict[str, Any] = field(default_factory=dict)
    connected_at: float = field(default_factory=time.time)

    @property
    def duration(self) -> float:
        return time.time() - self.connected_at


class SessionRegistry:
    """
    One session per user, last writer wins.

    Guarded by a lock so the websocket loop and FastAPI worker threads
    can both consult it.
    """

    def __init__(self):
        self._sessions: Dict[str, UserSession] = {}
        self._lock = threading.Lock()

    def register(
        self,
        user_id: str,
        connection: TransportConnection,
        user_info: Optional[Dict[str, Any]] = None
    ) -> Optional[TransportConnection]:
        """
        Bind ``connection`` to ``user_id``.

        Returns:
            The connection this one replaced, or None. The caller is
            responsible for closing it.
        """
        session = UserSession(user_id=user_id, connection=connection, user_info=user_info or {})
        with self._lock:
            previous = self._sessions.get(user_id)
            self._sessions[user_id] = session

        if previous is not None and previous.connection is not connection:
            logger.info("User %s reconnected; replacing connection %s",
                        user_id, previous.connection.conn_id)
            return previous.connection
        logger.debug("Registered session for user %s (%s)", user_id, connection.conn_id)
        return None

    def unregister(self, user_id: str, connection: Optional[TransportConnection] = None) -> bool:
        """
        Drop the session for ``user_id``.

        When ``connection`` is given the entry is removed only if that
        connection is still the registered one.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                return False
            if connection is not None and session.connection is not connection:
                return False
            del self._sessions[user_id]
        logger.debug("Removed session for user %s", user_id)
        return True

    def get(self, user_id: str) -> Optional[TransportConnection]:
        with self._lock:
            session = self._sessions.get(user_id)
        return session.connection if session else None

    def get_session(self, user_id: str) -> Optional[UserSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._sessions

    def list_online(self) -> List[Dict[str, Any]]:
        """Snapshot of ``[{userId, userInfo}]`` for every online user."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [{"userId": s.user_id, "userInfo": s.user_info} for s in sessions]

    def connections(self) -> List[TransportConnection]:
        with self._lock:
            return [s.connection for s in self._sessions.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ['UserSession', 'SessionRegistry']
