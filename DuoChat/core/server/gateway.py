"""
Websocket gateway that composes the server components.

Each accepted socket goes through three stages:

    connect     authenticate the handshake, bind the user, register the
                session, join the personal channel, announce presence
    dispatch    route every inbound frame, in arrival order, to its handler
    disconnect  leave all channels, unregister, announce offline

Any failure while handling a frame is reported to that connection only,
as an ``error`` event; the connection stays open. Authentication
failures close the socket with 1008 before anything is registered. A
connection replaced by a newer one for the same user is closed with 4000.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from DuoChat.core.errors import ChatError, ValidationError
from DuoChat.core.message.protocol import Event, EventType, error_event
from DuoChat.core.models import User, now, to_iso
from DuoChat.core.server.auth import AuthenticationMiddleware
from DuoChat.core.server.pipeline import MessageDraft
from DuoChat.core.server.services import ChatServices
from DuoChat.core.server.transport import WebSocketConnection

logger = logging.getLogger(__name__)

CLOSE_POLICY_VIOLATION = 1008
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
CLOSE_REPLACED = 4000


class ConnectionContext:
    """
    State for a single authenticated connection.
    """

    def __init__(self, user: User, connection: WebSocketConnection):
        self.user = user
        self.connection = connection

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def user_info(self) -> Dict[str, Any]:
        return self.user.public_profile()

    @property
    def is_active(self) -> bool:
        return self.connection.is_open()


Handler = Callable[[ConnectionContext, Dict[str, Any]], Awaitable[None]]


class ConnectionGateway:
    """
    Accepts websocket connections and routes their events.
    """

    def __init__(self, services: ChatServices):
        self._services = services
        self._auth_middleware = AuthenticationMiddleware(services.authenticator)
        self._contexts: Dict[str, ConnectionContext] = {}
        self._server = None
        self._handlers: Dict[EventType, Handler] = {
            EventType.JOIN_CHAT: self._on_join_chat,
            EventType.LEAVE_CHAT: self._on_leave_chat,
            EventType.SEND_MESSAGE: self._on_send_message,
            EventType.TYPING: self._on_typing,
            EventType.STOP_TYPING: self._on_stop_typing,
            EventType.MARK_AS_READ: self._on_mark_as_read,
            EventType.PING: self._on_ping,
        }

    @property
    def connection_contexts(self) -> Dict[str, ConnectionContext]:
        return dict(self._contexts)

    def is_running(self) -> bool:
        return self._server is not None

    async def start(self, host: str = "localhost", port: int = 8765) -> None:
        """
        Start listening for websocket connections.

        Args:
            host: Host to bind to
            port: Port to listen on
        """
        self._server = await websockets.serve(self._handle_connection, host, port)
        logger.info("WebSocket server started on ws://%s:%s", host, port)

    async def stop(self) -> None:
        """Close every connection and stop listening."""
        for context in list(self._contexts.values()):
            await context.connection.close(CLOSE_GOING_AWAY, "Server shutting down")
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: Any) -> None:
        context = None
        try:
            context = await self.connect(websocket)
            if context is None:
                return
            async for raw in websocket:
                await self.dispatch(context, raw)
        except ConnectionClosed:
            logger.debug("Connection closed for %s", context.user_id if context else "unknown")
        except Exception as e:
            logger.exception("Error handling connection: %s", e)
        finally:
            if context is not None:
                try:
                    await self.disconnect(context)
                except Exception as e:
                    logger.exception("Error cleaning up connection for %s: %s", context.user_id, e)

    async def connect(self, websocket: Any) -> Optional[ConnectionContext]:
        """
        Authenticate and register a freshly opened socket.

        Returns:
            The connection context, or None if the socket was rejected
        """
        result = await self._auth_middleware.authenticate_connection(websocket)
        if not result.success:
            await self._reject(websocket, result.error_message or "Authentication error")
            return None

        user = await self._services.store.get_user(result.user_id)
        if user is None or not user.is_active:
            await self._reject(websocket, "Authentication error: User not found or inactive")
            return None

        connection = WebSocketConnection(websocket, user.id)
        context = ConnectionContext(user, connection)
        self._contexts[connection.conn_id] = context

        try:
            self._services.hub.join(user.id, connection)
            replaced = await self._services.presence.announce_online(user, connection)
        except Exception:
            self._contexts.pop(connection.conn_id, None)
            self._services.hub.leave_all(connection)
            self._services.registry.unregister(user.id, connection)
            await connection.close(CLOSE_INTERNAL_ERROR, "Internal server error")
            raise
        if replaced is not None:
            self._services.hub.leave_all(replaced)
            await replaced.close(CLOSE_REPLACED, "Replaced by a newer connection")

        logger.info("User %s connected (%s)", user.id, connection.conn_id)
        return context

    async def dispatch(self, context: ConnectionContext, raw: Any) -> None:
        """Handle one inbound frame to completion."""
        context.connection.touch()
        try:
            event = Event.deserialize(raw)
            await self._handlers[event.type](context, event.data)
        except ChatError as e:
            logger.debug("Rejected frame from %s: %s", context.user_id, e.message)
            await self._send(context, error_event(e.message))
        except Exception as e:
            logger.exception("Error processing frame from %s: %s", context.user_id, e)
            await self._send(context, error_event("Internal server error"))

    async def disconnect(self, context: ConnectionContext) -> None:
        """Release everything held by a closed connection."""
        connection = context.connection
        self._contexts.pop(connection.conn_id, None)
        self._services.hub.leave_all(connection)
        await self._services.presence.announce_offline(context.user_id, connection)
        logger.info("User %s disconnected (%s)", context.user_id, connection.conn_id)

    async def _reject(self, websocket: Any, message: str) -> None:
        try:
            await websocket.send(error_event(message).serialize())
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Unauthorized")
        except ConnectionClosed:
            pass

    async def _send(self, context: ConnectionContext, event: Event) -> None:
        await self._services.hub.send(context.connection, event)

    @staticmethod
    def _require_chat_id(data: Dict[str, Any]) -> str:
        chat_id = data.get("chatId")
        if not chat_id or not isinstance(chat_id, str):
            raise ValidationError("Chat ID is required")
        return chat_id

    # ------------------------- handlers -------------------------
    async def _on_join_chat(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        chat_id = self._require_chat_id(data)
        await self._services.chats.assert_participant(chat_id, context.user_id)
        self._services.hub.join(chat_id, context.connection)
        await self._services.hub.emit(chat_id, Event(EventType.USER_JOINED_CHAT, {
            "userId": context.user_id,
            "userInfo": context.user_info,
            "chatId": chat_id,
        }), exclude=context.connection)

    async def _on_leave_chat(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        chat_id = data.get("chatId")
        if not isinstance(chat_id, str) or not self._services.hub.leave(chat_id, context.connection):
            return
        await self._services.hub.emit(chat_id, Event(EventType.USER_LEFT_CHAT, {
            "userId": context.user_id,
            "userInfo": context.user_info,
            "chatId": chat_id,
        }))

    async def _on_send_message(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        await self._services.pipeline.send(context.user_id, MessageDraft.from_payload(data))

    async def _on_typing(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        chat_id = data.get("chatId")
        if not isinstance(chat_id, str) or not self._services.hub.is_member(chat_id, context.connection):
            return
        await self._services.hub.emit(chat_id, Event(EventType.USER_TYPING, {
            "userId": context.user_id,
            "userInfo": context.user_info,
            "chatId": chat_id,
        }), exclude=context.connection)

    async def _on_stop_typing(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        chat_id = data.get("chatId")
        if not isinstance(chat_id, str) or not self._services.hub.is_member(chat_id, context.connection):
            return
        await self._services.hub.emit(chat_id, Event(EventType.USER_STOPPED_TYPING, {
            "userId": context.user_id,
            "chatId": chat_id,
        }), exclude=context.connection)

    async def _on_mark_as_read(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        chat_id = self._require_chat_id(data)
        message_ids = data.get("messageIds")
        if not isinstance(message_ids, list):
            raise ValidationError("messageIds must be a list of ids")
        await self._services.pipeline.mark_read(
            chat_id, context.user_id, message_ids, connection=context.connection
        )

    async def _on_ping(self, context: ConnectionContext, data: Dict[str, Any]) -> None:
        await self._send(context, Event(EventType.PONG, {"timestamp": to_iso(now())}))


__all__ = ['ConnectionContext', 'ConnectionGateway']
