"""
Transport layer abstraction for WebSocket connections.

Wraps a websockets ``ServerConnection`` so the rest of the server only
sees the ``TransportConnection`` protocol: an id, ``send``, ``close``
and ``is_open``.
"""

import logging
import time
import uuid
from typing import Any

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Wrapper around ServerConnection that implements TransportConnection.
    """

    def __init__(self, websocket: Any, user_id: str):
        """
        Initialize WebSocket connection wrapper.

        Args:
            websocket: Underlying websockets server connection
            user_id: Authenticated user bound to this connection
        """
        self._websocket = websocket
        self._user_id = user_id
        self._closed = False
        self.conn_id: str = uuid.uuid4().hex
        self.connected_at: float = time.time()
        self.last_activity: float = self.connected_at

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def raw_websocket(self) -> Any:
        return self._websocket

    async def send(self, message: str) -> bool:
        """
        Send a frame through the connection.

        Returns:
            True if the frame was handed to the socket
        """
        if self._closed:
            return False
        try:
            await self._websocket.send(message)
            return True
        except ConnectionClosed as e:
            logger.debug("Failed to send to %s (%s): %s", self._user_id, self.conn_id, e)
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._websocket.close(code=code, reason=reason)
        except ConnectionClosed as e:
            logger.debug("Connection %s already closed: %s", self.conn_id, e)

    def touch(self) -> None:
        """Record inbound activity."""
        self.last_activity = time.time()

    def is_open(self) -> bool:
        if self._closed:
            return False
        return getattr(self._websocket, "state", None) is State.OPEN

    def __repr__(self) -> str:
        return f"WebSocketConnection(user_id={self._user_id!r}, conn_id={self.conn_id!r})"


__all__ = ['WebSocketConnection']
