"""
Tests for the message pipeline.

Tests cover:
- Draft validation and authorization
- Persistence and fan-out of newMessage / messageNotification
- Paging and read-on-list
- Read receipts and soft deletion
"""

import pytest
import pytest_asyncio

from DuoChat.core.errors import Forbidden, NotAParticipant, NotFound, ValidationError
from DuoChat.core.server.pipeline import MessageDraft
from DuoChat.core.server.transport import WebSocketConnection
from .conftest import FakeWebSocket


@pytest_asyncio.fixture
async def chat(services, alice, bob):
    view = await services.chats.find_or_create_private_chat(alice.id, bob.id)
    return view.chat


def attach(services, user, *channels):
    """Join a fresh fake connection to the user's personal channel and ``channels``."""
    ws = FakeWebSocket()
    connection = WebSocketConnection(ws, user.id)
    services.registry.register(user.id, connection, user.public_profile())
    services.hub.join(user.id, connection)
    for channel in channels:
        services.hub.join(channel, connection)
    return ws, connection


def text(chat, receiver, content="hello") -> MessageDraft:
    return MessageDraft(chat_id=chat.id, receiver_id=receiver.id, content=content)


class TestDraft:

    def test_from_payload(self):
        draft = MessageDraft.from_payload({
            "chatId": "c", "receiverId": "r", "messageType": "image",
            "fileUrl": "/uploads/x.png", "fileSize": 10,
        })
        assert draft.chat_id == "c"
        assert draft.message_type == "image"
        assert draft.file_size == 10

    def test_defaults_to_text(self):
        assert MessageDraft.from_payload({}).message_type == "text"


class TestSendValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("draft_kwargs, message", [
        ({"receiver_id": "x", "content": "hi"}, "Chat ID and receiver ID are required"),
        ({"chat_id": "x", "content": "hi"}, "Chat ID and receiver ID are required"),
        ({"chat_id": "x", "receiver_id": "y", "message_type": "sticker"}, "Invalid message type: sticker"),
        ({"chat_id": "x", "receiver_id": "y", "content": "   "},
         "Message content is required for text messages"),
        ({"chat_id": "x", "receiver_id": "y", "message_type": "video"},
         "File URL is required for video messages"),
        ({"chat_id": "x", "receiver_id": "y", "message_type": "image", "file_url": "/u",
          "file_size": "big"}, "File size must be an integer"),
    ])
    async def test_rejected(self, services, alice, draft_kwargs, message):
        with pytest.raises(ValidationError) as exc_info:
            await services.pipeline.send(alice.id, MessageDraft(**draft_kwargs))
        assert exc_info.value.message == message

    @pytest.mark.asyncio
    async def test_image_without_file_stores_nothing(self, services, store, chat, alice, bob):
        bob_ws, _ = attach(services, bob, chat.id)
        draft = MessageDraft(chat_id=chat.id, receiver_id=bob.id, message_type="image")

        with pytest.raises(ValidationError):
            await services.pipeline.send(alice.id, draft)

        assert await store.count_messages(chat.id) == 0
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, services, store, chat, bob, carol):
        bob_ws, _ = attach(services, bob, chat.id)
        with pytest.raises(NotAParticipant):
            await services.pipeline.send(carol.id, text(chat, bob))
        assert await store.count_messages(chat.id) == 0
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_receiver_must_be_other_participant(self, services, chat, alice, carol):
        with pytest.raises(NotAParticipant):
            await services.pipeline.send(alice.id, text(chat, carol))
        with pytest.raises(NotAParticipant):
            await services.pipeline.send(alice.id, text(chat, alice))


class TestSendFanOut:

    @pytest.mark.asyncio
    async def test_persists_and_emits(self, services, store, chat, alice, bob, carol):
        alice_ws, _ = attach(services, alice, chat.id)
        bob_ws, _ = attach(services, bob)
        carol_ws, _ = attach(services, carol)

        view = await services.pipeline.send(alice.id, text(chat, bob, "hi bob"))

        stored = await store.get_message(view.message.id)
        assert stored.is_delivered and not stored.is_read
        assert (await store.get_chat(chat.id)).last_message_id == stored.id

        [echo] = alice_ws.named("newMessage")
        assert echo["chatId"] == chat.id
        assert echo["message"]["content"] == "hi bob"
        assert echo["message"]["sender"]["name"] == "Alice"

        assert bob_ws.named("newMessage") == []
        [note] = bob_ws.named("messageNotification")
        assert note["sender"]["_id"] == alice.id
        assert note["message"]["_id"] == stored.id
        assert carol_ws.sent == []

    @pytest.mark.asyncio
    async def test_file_message(self, services, chat, alice, bob):
        view = await services.pipeline.send(alice.id, MessageDraft(
            chat_id=chat.id, receiver_id=bob.id, message_type="document",
            file_url="/uploads/document-abc.pdf", file_name="notes.pdf", file_size=42,
        ))
        data = view.to_dict()
        assert data["messageType"] == "document"
        assert data["fileUrl"] == "/uploads/document-abc.pdf"
        assert data["fileSize"] == 42


class TestListing:

    @pytest.mark.asyncio
    async def test_pages_newest_first(self, services, chat, alice, bob):
        for i in range(5):
            await services.pipeline.send(alice.id, text(chat, bob, f"m{i}"))

        first = await services.pipeline.list_for_chat(chat.id, bob.id, page=1, page_size=2)
        last = await services.pipeline.list_for_chat(chat.id, bob.id, page=3, page_size=2)

        assert [v.message.content for v in first.items] == ["m3", "m4"]
        assert [v.message.content for v in last.items] == ["m0"]
        assert first.pagination()["totalMessages"] == 5
        assert first.pagination()["hasNext"] and not first.pagination()["hasPrev"]
        assert first.total_pages == 3

    @pytest.mark.asyncio
    async def test_page_size_clamped(self, services, chat, bob):
        listing = await services.pipeline.list_for_chat(chat.id, bob.id, page=0, page_size=1000)
        assert listing.page == 1
        assert listing.page_size == 100

    @pytest.mark.asyncio
    async def test_listing_marks_received_as_read(self, services, store, chat, alice, bob):
        alice_ws, _ = attach(services, alice, chat.id)
        sent = await services.pipeline.send(alice.id, text(chat, bob))
        alice_ws.clear()

        listing = await services.pipeline.list_for_chat(chat.id, bob.id)

        assert not listing.items[0].message.is_read
        assert (await store.get_message(sent.message.id)).is_read
        assert alice_ws.sent == []

    @pytest.mark.asyncio
    async def test_sender_listing_leaves_unread(self, services, store, chat, alice, bob):
        sent = await services.pipeline.send(alice.id, text(chat, bob))
        await services.pipeline.list_for_chat(chat.id, alice.id)
        assert not (await store.get_message(sent.message.id)).is_read

    @pytest.mark.asyncio
    async def test_outsider_cannot_list(self, services, chat, carol):
        with pytest.raises(NotAParticipant):
            await services.pipeline.list_for_chat(chat.id, carol.id)


class TestReadReceipts:

    @pytest.mark.asyncio
    async def test_mark_read_emits_once_excluding_reader(self, services, chat, alice, bob):
        alice_ws, _ = attach(services, alice, chat.id)
        bob_ws, bob_conn = attach(services, bob, chat.id)
        sent = await services.pipeline.send(alice.id, text(chat, bob))
        alice_ws.clear()
        bob_ws.clear()

        count = await services.pipeline.mark_read(chat.id, bob.id, [sent.message.id], connection=bob_conn)
        again = await services.pipeline.mark_read(chat.id, bob.id, [sent.message.id], connection=bob_conn)

        assert (count, again) == (1, 0)
        assert alice_ws.named("messagesRead") == [
            {"messageIds": [sent.message.id], "readBy": bob.id, "chatId": chat.id}
        ]
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_sender_cannot_mark_own_message(self, services, store, chat, alice, bob):
        sent = await services.pipeline.send(alice.id, text(chat, bob))
        assert await services.pipeline.mark_read(chat.id, alice.id, [sent.message.id]) == 0
        assert not (await store.get_message(sent.message.id)).is_read

    @pytest.mark.asyncio
    async def test_mark_chat_read_uses_registered_connection(self, services, chat, alice, bob):
        alice_ws, _ = attach(services, alice, chat.id)
        bob_ws, _ = attach(services, bob, chat.id)
        for i in range(3):
            await services.pipeline.send(alice.id, text(chat, bob, f"m{i}"))
        alice_ws.clear()
        bob_ws.clear()

        assert await services.pipeline.mark_chat_read(chat.id, bob.id) == 3
        [receipt] = alice_ws.named("messagesRead")
        assert len(receipt["messageIds"]) == 3
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message_ids", ["abc", [1, 2], {"id": "x"}])
    async def test_bad_ids(self, services, chat, bob, message_ids):
        with pytest.raises(ValidationError):
            await services.pipeline.mark_read(chat.id, bob.id, message_ids)


class TestSoftDelete:

    @pytest.mark.asyncio
    async def test_sender_deletes(self, services, chat, alice, bob):
        sent = await services.pipeline.send(alice.id, text(chat, bob))

        deleted = await services.pipeline.soft_delete(sent.message.id, alice.id)
        again = await services.pipeline.soft_delete(sent.message.id, alice.id)

        assert deleted.is_deleted and deleted.deleted_at is not None
        assert again.deleted_at == deleted.deleted_at
        listing = await services.pipeline.list_for_chat(chat.id, bob.id)
        assert listing.items == [] and listing.total == 0

    @pytest.mark.asyncio
    async def test_receiver_cannot_delete(self, services, chat, alice, bob):
        sent = await services.pipeline.send(alice.id, text(chat, bob))
        with pytest.raises(Forbidden):
            await services.pipeline.soft_delete(sent.message.id, bob.id)

    @pytest.mark.asyncio
    async def test_unknown_message(self, services, alice):
        with pytest.raises(NotFound):
            await services.pipeline.soft_delete("missing", alice.id)
