"""
Event protocol for DuoChat websocket traffic.

Every frame in either direction is a JSON object::

    {"event": "<name>", "data": <payload>}

Inbound payloads are objects; outbound payloads are objects, except
``activeUsers`` which is a list.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from DuoChat.core.errors import ValidationError


class EventType(Enum):
    """
    Enumeration of event names exchanged with clients.
    """
    # client -> server
    JOIN_CHAT = "joinChat"
    LEAVE_CHAT = "leaveChat"
    SEND_MESSAGE = "sendMessage"
    TYPING = "typing"
    STOP_TYPING = "stopTyping"
    MARK_AS_READ = "markAsRead"
    PING = "ping"

    # server -> client
    ACTIVE_USERS = "activeUsers"
    USER_ONLINE = "userOnline"
    USER_OFFLINE = "userOffline"
    USER_JOINED_CHAT = "userJoinedChat"
    USER_LEFT_CHAT = "userLeftChat"
    NEW_MESSAGE = "newMessage"
    MESSAGE_NOTIFICATION = "messageNotification"
    USER_TYPING = "userTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"
    MESSAGES_READ = "messagesRead"
    ERROR = "error"
    PONG = "pong"


INBOUND_EVENTS = frozenset({
    EventType.JOIN_CHAT,
    EventType.LEAVE_CHAT,
    EventType.SEND_MESSAGE,
    EventType.TYPING,
    EventType.STOP_TYPING,
    EventType.MARK_AS_READ,
    EventType.PING,
})


@dataclass
class Event:
    """
    A single websocket frame.

    Attributes:
        type (EventType): Event name
        data: JSON-compatible payload
    """
    type: EventType
    data: Any = None

    def serialize(self) -> str:
        """
        Serialize the event to a JSON string.

        Returns:
            str: JSON representation of the event
        """
        return json.dumps({"event": self.type.value, "data": self.data}, default=str)

    @classmethod
    def deserialize(cls, raw: str) -> 'Event':
        """
        Parse an inbound frame.

        Args:
            raw (str): JSON text received from a client

        Returns:
            Event: Parsed event with a dict payload

        Raises:
            ValidationError: Frame is not JSON, names an unknown or
                server-only event, or carries a non-object payload
        """
        try:
            obj = json.loads(raw)
        except (TypeError, ValueError):
            raise ValidationError("Malformed frame: expected JSON")
        if not isinstance(obj, dict):
            raise ValidationError("Malformed frame: expected an object")

        name = obj.get("event")
        try:
            event_type = EventType(name)
        except ValueError:
            raise ValidationError(f"Unknown event: {name}")
        if event_type not in INBOUND_EVENTS:
            raise ValidationError(f"Event not accepted from clients: {name}")

        data = obj.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Event data must be an object")
        return cls(type=event_type, data=data)


def error_event(message: str) -> Event:
    """Build the scoped error event sent to a single connection."""
    return Event(EventType.ERROR, {"message": message})
