"""
Message pipeline: validation, persistence and fan-out of messages, plus
the read and delete transitions.

A message is created delivered. Read and deleted are independent flags:
read is set only for the receiver, deleted only by the sender.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from DuoChat.config import config
from DuoChat.core.errors import Forbidden, NotAParticipant, NotFound, ValidationError
from DuoChat.core.message.protocol import Event, EventType
from DuoChat.core.models import FileRef, Message, MessageType, MessageView, Page, new_id, now
from DuoChat.core.server.chat_manager import ChatLifecycleManager
from DuoChat.core.server.interfaces import EntityStore, TransportConnection
from DuoChat.core.server.routing import ChannelHub
from DuoChat.core.server.session import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class MessageDraft:
    """An unvalidated message as submitted by a client."""
    chat_id: Optional[str] = None
    receiver_id: Optional[str] = None
    content: Optional[str] = None
    message_type: str = MessageType.TEXT.value
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'MessageDraft':
        """Build a draft from a camelCase event or request payload."""
        return cls(
            chat_id=data.get("chatId"),
            receiver_id=data.get("receiverId"),
            content=data.get("content"),
            message_type=data.get("messageType") or MessageType.TEXT.value,
            file_url=data.get("fileUrl"),
            file_name=data.get("fileName"),
            file_size=data.get("fileSize"),
        )


def _clamp_page(page: Any, page_size: Any) -> tuple:
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(page_size)
    except (TypeError, ValueError):
        page_size = config.DEFAULT_PAGE_SIZE
    return max(page, 1), min(max(page_size, 1), config.MAX_PAGE_SIZE)


class MessagePipeline:
    """Validates, persists and broadcasts messages."""

    def __init__(
        self,
        store: EntityStore,
        chats: ChatLifecycleManager,
        hub: ChannelHub,
        registry: Optional[SessionRegistry] = None
    ):
        self._store = store
        self._chats = chats
        self._hub = hub
        self._registry = registry

    def _validate(self, draft: MessageDraft) -> MessageType:
        if not draft.chat_id or not draft.receiver_id:
            raise ValidationError("Chat ID and receiver ID are required")
        try:
            message_type = MessageType(draft.message_type)
        except ValueError:
            raise ValidationError(f"Invalid message type: {draft.message_type}")
        if message_type is MessageType.TEXT:
            if not isinstance(draft.content, str) or not draft.content.strip():
                raise ValidationError("Message content is required for text messages")
        elif not draft.file_url:
            raise ValidationError(f"File URL is required for {message_type.value} messages")
        if draft.file_size is not None and (
                isinstance(draft.file_size, bool) or not isinstance(draft.file_size, int)):
            raise ValidationError("File size must be an integer")
        return message_type

    async def send(self, sender_id: str, draft: MessageDraft) -> MessageView:
        """
        Persist and broadcast a message from ``sender_id``.

        Nothing is stored or emitted unless every check passes.

        Raises:
            ValidationError: Missing ids, unknown type, missing content or file
            NotAParticipant: Sender outside the chat, or receiver is not
                the other participant
        """
        message_type = self._validate(draft)
        chat = await self._chats.assert_participant(draft.chat_id, sender_id)
        if draft.receiver_id == sender_id or not chat.has_participant(draft.receiver_id):
            raise NotAParticipant("Receiver is not a participant of this chat")

        sender = await self._store.get_user(sender_id)
        sender_profile = sender.public_profile() if sender else {"_id": sender_id}

        ts = now()
        message = Message(
            id=new_id(),
            sender_id=sender_id,
            receiver_id=draft.receiver_id,
            chat_id=chat.id,
            message_type=message_type,
            content=draft.content,
            file=FileRef(draft.file_url, draft.file_name, draft.file_size) if message_type.needs_file else None,
            is_delivered=True,
            delivered_at=ts,
            created_at=ts,
        )
        await self._store.insert_message(message)
        await self._chats.update_last_message(chat, message)
        logger.debug("Message %s stored in chat %s", message.id, chat.id)

        view = MessageView(message=message, sender=sender_profile)
        payload = view.to_dict()
        await self._hub.emit(chat.id, Event(EventType.NEW_MESSAGE, {
            "message": payload,
            "chatId": chat.id,
        }))
        await self._hub.emit(draft.receiver_id, Event(EventType.MESSAGE_NOTIFICATION, {
            "message": payload,
            "chatId": chat.id,
            "sender": sender_profile,
        }))
        return view

    async def list_for_chat(self, chat_id: str, requester_id: str,
                            page: Any = 1, page_size: Any = None) -> Page:
        """
        One page of a chat's visible messages, newest page first and in
        chronological order within the page.

        Afterwards the requester's unread received messages in the chat
        are marked read; the returned page shows the state before that.
        """
        await self._chats.assert_participant(chat_id, requester_id)
        page, page_size = _clamp_page(page, page_size)

        total = await self._store.count_messages(chat_id)
        messages = await self._store.list_messages(chat_id, (page - 1) * page_size, page_size)
        senders = await self._store.get_users([m.sender_id for m in messages])
        items = [
            MessageView(
                message=m,
                sender=senders[m.sender_id].public_profile() if m.sender_id in senders else {"_id": m.sender_id},
            )
            for m in messages
        ]

        await self._store.mark_read(chat_id, requester_id, now())
        return Page(items=items, page=page, page_size=page_size, total=total)

    async def mark_read(
        self,
        chat_id: str,
        requester_id: str,
        message_ids: Optional[List[str]],
        connection: Optional[TransportConnection] = None
    ) -> int:
        """
        Mark the given messages read for ``requester_id``.

        Only unread messages addressed to the requester change. The ids
        that changed are announced to the chat, excluding the reader's
        own connection; nothing is announced when nothing changed.

        Returns:
            Number of messages that changed
        """
        if message_ids is not None and (
                not isinstance(message_ids, list) or not all(isinstance(i, str) for i in message_ids)):
            raise ValidationError("messageIds must be a list of ids")
        await self._chats.assert_participant(chat_id, requester_id)

        changed = await self._store.mark_read(chat_id, requester_id, now(), message_ids)
        if changed:
            if connection is None and self._registry is not None:
                connection = self._registry.get(requester_id)
            await self._hub.emit(chat_id, Event(EventType.MESSAGES_READ, {
                "messageIds": changed,
                "readBy": requester_id,
                "chatId": chat_id,
            }), exclude=connection)
        return len(changed)

    async def mark_chat_read(self, chat_id: str, requester_id: str) -> int:
        """Mark every unread message addressed to the requester in the chat."""
        return await self.mark_read(chat_id, requester_id, None)

    async def soft_delete(self, message_id: str, requester_id: str) -> Message:
        """
        Hide a message from listings; only its sender may do so.

        Raises:
            NotFound: No such message
            Forbidden: Requester is not the sender
        """
        message = await self._store.get_message(message_id)
        if message is None:
            raise NotFound("Message not found")
        if message.sender_id != requester_id:
            raise Forbidden("You can only delete your own messages")
        if not message.is_deleted:
            await self._store.soft_delete_message(message_id, now())
            message = await self._store.get_message(message_id) or message
            logger.info("Message %s deleted by %s", message_id, requester_id)
        return message


__all__ = ['MessageDraft', 'MessagePipeline']
