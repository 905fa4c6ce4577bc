"""
Chat lifecycle: canonical private chats, the last-message pointer,
the membership gate and per-user chat listings.
"""

import logging
from typing import Dict, Iterable, List, Optional

from DuoChat.core.errors import InvalidParticipant, NotAParticipant, SelfChat
from DuoChat.core.models import Chat, ChatView, Message, MessageView, User
from DuoChat.core.server.interfaces import EntityStore

logger = logging.getLogger(__name__)


class ChatLifecycleManager:
    """
    Owns the rules around chats; persistence is delegated to the store.
    """

    def __init__(self, store: EntityStore):
        self._store = store

    async def find_or_create_private_chat(self, user_a: str, user_b: str) -> ChatView:
        """
        Return the active private chat between two users, creating it on
        first contact with ``user_a`` as creator.

        Raises:
            SelfChat: Both ids are the same user
            InvalidParticipant: Either id is not an active user
        """
        if user_a == user_b:
            raise SelfChat("Cannot create chat with yourself")

        users = await self._store.get_users([user_a, user_b])
        for user_id in (user_a, user_b):
            user = users.get(user_id)
            if user is None or not user.is_active:
                raise InvalidParticipant(f"User not found: {user_id}", {"userId": user_id})

        chat = await self._store.find_or_create_private_chat(user_a, user_b, created_by=user_a)
        views = await self._hydrate([chat], viewer_id=user_a, known_users=users)
        return views[0]

    async def update_last_message(self, chat: Chat, message: Message) -> Chat:
        updated = await self._store.update_chat_last_message(chat.id, message.id, message.created_at)
        return updated or chat

    async def assert_participant(self, chat_id: str, user_id: str) -> Chat:
        """
        Return the chat if ``user_id`` belongs to it.

        An absent or inactive chat is reported the same way as a chat the
        user is not part of.

        Raises:
            NotAParticipant
        """
        chat = await self._store.get_chat(chat_id) if chat_id else None
        if chat is None or not chat.is_active or not chat.has_participant(user_id):
            raise NotAParticipant("Chat not found or you are not a participant")
        return chat

    async def list_for_user(self, user_id: str) -> List[ChatView]:
        """Active chats of ``user_id``, most recent activity first."""
        chats = await self._store.list_chats_for_user(user_id)
        return await self._hydrate(chats, viewer_id=user_id)

    async def contacts_for(self, user_id: str) -> List[dict]:
        return [view.to_contact() for view in await self.list_for_user(user_id)]

    async def deactivate(self, chat_id: str, user_id: str) -> bool:
        """Soft-deactivate a chat on behalf of one of its participants."""
        chat = await self.assert_participant(chat_id, user_id)
        changed = await self._store.deactivate_chat(chat.id)
        if changed:
            logger.info("Chat %s deactivated by %s", chat.id, user_id)
        return changed

    async def _hydrate(
        self,
        chats: List[Chat],
        viewer_id: Optional[str] = None,
        known_users: Optional[Dict[str, User]] = None
    ) -> List[ChatView]:
        users: Dict[str, User] = dict(known_users or {})
        await self._load_users(users, (p for chat in chats for p in chat.participants))

        last_ids = [chat.last_message_id for chat in chats if chat.last_message_id]
        messages = await self._store.get_messages(last_ids) if last_ids else {}
        await self._load_users(users, (m.sender_id for m in messages.values()))

        views = []
        for chat in chats:
            last = messages.get(chat.last_message_id) if chat.last_message_id else None
            last_view = None
            if last is not None:
                sender = users.get(last.sender_id)
                profile = sender.public_profile() if sender else {"_id": last.sender_id}
                last_view = MessageView(message=last, sender=profile)
            views.append(ChatView(
                chat=chat,
                participants=[users[p] for p in chat.participants if p in users],
                last_message=last_view,
                viewer_id=viewer_id,
            ))
        return views

    async def _load_users(self, users: Dict[str, User], ids: Iterable[str]) -> None:
        missing = [i for i in dict.fromkeys(ids) if i not in users]
        if missing:
            users.update(await self._store.get_users(missing))


__all__ = ['ChatLifecycleManager']
