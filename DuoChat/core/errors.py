"""
Exception classes for the DuoChat core.

These are domain errors, not transport errors. The websocket gateway turns
them into scoped ``error`` events and the HTTP layer maps ``code`` to a
status.
"""


class ChatError(Exception):
    """Base exception for all messaging errors."""

    code = "CHAT_ERROR"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class Unauthenticated(ChatError):
    """Missing, invalid or expired credential, or unknown/inactive user."""
    code = "UNAUTHENTICATED"


class NotAParticipant(ChatError):
    """Chat-scoped operation by a user outside the chat."""
    code = "NOT_A_PARTICIPANT"


class InvalidParticipant(ChatError):
    """A user id given for chat creation does not resolve to an active user."""
    code = "INVALID_PARTICIPANT"


class SelfChat(ChatError):
    """Attempt to open a private chat with oneself."""
    code = "SELF_CHAT"


class ValidationError(ChatError):
    """Malformed payload: missing content or file reference, bad enum value."""
    code = "VALIDATION_ERROR"


class NotFound(ChatError):
    """Chat, message or user is absent or inactive."""
    code = "NOT_FOUND"


class Forbidden(ChatError):
    """Operation reserved to another user, e.g. deleting someone else's message."""
    code = "FORBIDDEN"


class StorageError(ChatError):
    """Opaque failure reported by the entity store. Never retried by the core."""
    code = "STORAGE_ERROR"


class DuplicateKey(StorageError):
    """Unique constraint violated on a user-facing field (e.g. email)."""
    code = "DUPLICATE_KEY"

    def __init__(self, message: str, field: str = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


__all__ = [
    'ChatError',
    'Unauthenticated',
    'NotAParticipant',
    'InvalidParticipant',
    'SelfChat',
    'ValidationError',
    'NotFound',
    'Forbidden',
    'StorageError',
    'DuplicateKey',
]
