"""
Domain records for users, chats and messages.

Records are plain dataclasses as returned by the entity store. The
``*View`` classes are composed read models (a record plus the profiles it
refers to) and own the JSON shape sent to clients.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def new_id() -> str:
    """Generate an opaque record id."""
    return uuid.uuid4().hex


def now() -> float:
    return time.time()


def to_iso(ts: Optional[float]) -> Optional[str]:
    """Render a POSIX timestamp as ISO-8601 UTC, keeping None."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def pair_key(user_a: str, user_b: str) -> str:
    """Canonical key for an unordered pair of user ids."""
    a, b = (user_a, user_b) if user_a <= user_b else (user_b, user_a)
    return f"{a}:{b}"


class ChatType(Enum):
    PRIVATE = "private"
    GROUP = "group"


class MessageType(Enum):
    """Kind of content a message carries."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"

    @property
    def needs_file(self) -> bool:
        return self is not MessageType.TEXT


@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: str = field(default="", repr=False)
    profile_picture: Optional[str] = None
    is_active: bool = True
    is_online: bool = False
    last_seen: Optional[float] = None
    created_at: float = field(default_factory=now)

    def public_profile(self) -> Dict[str, Any]:
        """Minimal profile shown next to messages and presence events."""
        return {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "profilePicture": self.profile_picture,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Profile with presence, used for participant and user listings."""
        data = self.public_profile()
        data.update({
            "isOnline": self.is_online,
            "lastSeen": to_iso(self.last_seen),
            "isActive": self.is_active,
            "createdAt": to_iso(self.created_at),
        })
        return data


@dataclass(frozen=True)
class FileRef:
    url: str
    name: Optional[str] = None
    size: Optional[int] = None


@dataclass
class Message:
    id: str
    sender_id: str
    receiver_id: str
    chat_id: str
    message_type: MessageType = MessageType.TEXT
    content: Optional[str] = None
    file: Optional[FileRef] = None
    is_delivered: bool = False
    delivered_at: Optional[float] = None
    is_read: bool = False
    read_at: Optional[float] = None
    is_deleted: bool = False
    deleted_at: Optional[float] = None
    created_at: float = field(default_factory=now)

    def to_dict(self, sender: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "sender": sender if sender is not None else self.sender_id,
            "receiver": self.receiver_id,
            "chatId": self.chat_id,
            "content": self.content,
            "messageType": self.message_type.value,
            "fileUrl": self.file.url if self.file else None,
            "fileName": self.file.name if self.file else None,
            "fileSize": self.file.size if self.file else None,
            "isDelivered": self.is_delivered,
            "deliveredAt": to_iso(self.delivered_at),
            "isRead": self.is_read,
            "readAt": to_iso(self.read_at),
            "isDeleted": self.is_deleted,
            "deletedAt": to_iso(self.deleted_at),
            "createdAt": to_iso(self.created_at),
        }


@dataclass
class Chat:
    id: str
    participants: Tuple[str, ...]
    created_by: str
    chat_type: ChatType = ChatType.PRIVATE
    chat_name: Optional[str] = None
    last_message_id: Optional[str] = None
    last_message_time: float = field(default_factory=now)
    is_active: bool = True
    created_at: float = field(default_factory=now)
    updated_at: float = field(default_factory=now)

    @property
    def pair_key(self) -> Optional[str]:
        if self.chat_type is not ChatType.PRIVATE or len(self.participants) != 2:
            return None
        return pair_key(*self.participants)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participants(self, user_id: str) -> List[str]:
        return [p for p in self.participants if p != user_id]


@dataclass(frozen=True)
class MessageView:
    """A message joined with its sender's public profile."""
    message: Message
    sender: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return self.message.to_dict(sender=self.sender)


@dataclass(frozen=True)
class ChatView:
    """A chat joined with participant profiles and its last message.

    ``viewer_id`` selects whose point of view ``otherParticipants`` and the
    display name are computed from; without it both are left out.
    """
    chat: Chat
    participants: List[User]
    last_message: Optional[MessageView] = None
    viewer_id: Optional[str] = None

    @property
    def other_participants(self) -> List[User]:
        return [u for u in self.participants if u.id != self.viewer_id]

    @property
    def display_name(self) -> Optional[str]:
        if self.chat.chat_type is ChatType.PRIVATE:
            others = self.other_participants
            return others[0].name if others else None
        return self.chat.chat_name

    def to_dict(self) -> Dict[str, Any]:
        chat = self.chat
        data = {
            "_id": chat.id,
            "chatType": chat.chat_type.value,
            "participants": [u.to_dict() for u in self.participants],
            "lastMessage": self.last_message.to_dict() if self.last_message else None,
            "lastMessageTime": to_iso(chat.last_message_time),
            "isActive": chat.is_active,
            "createdBy": chat.created_by,
            "createdAt": to_iso(chat.created_at),
            "updatedAt": to_iso(chat.updated_at),
            "chatName": chat.chat_name,
        }
        if self.viewer_id is not None:
            data["chatName"] = self.display_name
            data["otherParticipants"] = [u.to_dict() for u in self.other_participants]
        return data

    def to_contact(self) -> Dict[str, Any]:
        """Projection used by the contacts listing."""
        others = [u.to_dict() for u in self.other_participants]
        if self.chat.chat_type is ChatType.PRIVATE:
            contact_info: Any = others[0] if others else None
        else:
            contact_info = {"name": self.chat.chat_name, "participants": others}
        return {
            "chatId": self.chat.id,
            "chatType": self.chat.chat_type.value,
            "participants": others,
            "lastMessage": self.last_message.to_dict() if self.last_message else None,
            "lastMessageTime": to_iso(self.chat.last_message_time),
            "contactInfo": contact_info,
        }


@dataclass(frozen=True)
class Page:
    """One page of a listing plus its pagination block."""
    items: List[Any]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    def pagination(self, total_label: str = "totalMessages") -> Dict[str, Any]:
        return {
            "currentPage": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
            total_label: self.total,
            "hasNext": self.page < self.total_pages,
            "hasPrev": self.page > 1,
        }
