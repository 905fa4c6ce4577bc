"""
Abstract interfaces for the server module.

These protocols are the seams between the messaging core and its
collaborators: the entity store, the credential authenticator, the
transport connection and the file store. Tests substitute fakes at
exactly these points.
"""

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from DuoChat.core.models import Chat, FileRef, Message, User


@dataclass
class AuthResult:
    """Result of an authentication attempt."""
    success: bool
    user_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@dataclass(frozen=True)
class StoredFile:
    """A file accepted by a file store."""
    id: str
    url: str
    name: str
    size: int

    @property
    def ref(self) -> FileRef:
        return FileRef(url=self.url, name=self.name, size=self.size)


@runtime_checkable
class Authenticator(Protocol):
    """Protocol for credential validation."""

    @abstractmethod
    async def authenticate(self, token: str) -> AuthResult:
        """
        Validate a token and resolve the user id it was issued for.

        Args:
            token: Signed credential

        Returns:
            AuthResult carrying the user id on success
        """
        ...

    @abstractmethod
    def extract_token(self, transport_context: object) -> Optional[str]:
        """
        Extract a token from a transport handshake.

        Args:
            transport_context: Transport-specific connection object

        Returns:
            Extracted token or None if not found
        """
        ...


@runtime_checkable
class TransportConnection(Protocol):
    """Protocol for transport layer connections."""

    conn_id: str

    @abstractmethod
    async def send(self, message: str) -> bool:
        """Send a frame; returns False when the peer is gone."""
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection."""
        ...

    @abstractmethod
    def is_open(self) -> bool:
        """Check if connection is open."""
        ...


@runtime_checkable
class EntityStore(Protocol):
    """
    Typed persistence for users, chats and messages.

    Every method is a coroutine. Implementations carry no business rules
    beyond the uniqueness of active private chats per participant pair
    and of user emails. Failures surface as ``StorageError``.
    """

    # users
    async def create_user(self, name: str, email: str, password_hash: str,
                          profile_picture: Optional[str] = None) -> User: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    async def get_users(self, user_ids: List[str]) -> Dict[str, User]: ...

    async def list_users(self, exclude_id: Optional[str] = None, search: str = "",
                         offset: int = 0, limit: int = 20) -> Tuple[List[User], int]: ...

    async def update_user(self, user_id: str, name: Optional[str] = None,
                          email: Optional[str] = None,
                          profile_picture: Optional[str] = None) -> Optional[User]: ...

    async def deactivate_user(self, user_id: str, at: float) -> bool: ...

    async def set_presence(self, user_id: str, is_online: bool, last_seen: float) -> None: ...

    async def reset_presence(self) -> int: ...

    # chats
    async def find_or_create_private_chat(self, user_a: str, user_b: str,
                                          created_by: str) -> Chat: ...

    async def get_chat(self, chat_id: str) -> Optional[Chat]: ...

    async def update_chat_last_message(self, chat_id: str, message_id: str,
                                       timestamp: float) -> Optional[Chat]: ...

    async def list_chats_for_user(self, user_id: str) -> List[Chat]: ...

    async def deactivate_chat(self, chat_id: str) -> bool: ...

    # messages
    async def insert_message(self, message: Message) -> Message: ...

    async def get_message(self, message_id: str) -> Optional[Message]: ...

    async def get_messages(self, message_ids: List[str]) -> Dict[str, Message]: ...

    async def count_messages(self, chat_id: str) -> int: ...

    async def list_messages(self, chat_id: str, offset: int, limit: int) -> List[Message]: ...

    async def mark_read(self, chat_id: str, receiver_id: str, read_at: float,
                        message_ids: Optional[List[str]] = None) -> List[str]: ...

    async def soft_delete_message(self, message_id: str, deleted_at: float) -> bool: ...

    async def ping(self) -> bool: ...


@runtime_checkable
class FileStorage(Protocol):
    """Protocol for uploaded file persistence."""

    async def store(self, data: bytes, filename: str, category: str) -> StoredFile: ...

    async def delete(self, file_id: str) -> bool: ...


__all__ = [
    'AuthResult',
    'StoredFile',
    'Authenticator',
    'TransportConnection',
    'EntityStore',
    'FileStorage',
]
