"""
Tests for the SQLite entity store.
"""

import asyncio

import pytest

from DuoChat.core.errors import DuplicateKey
from DuoChat.core.models import Message, MessageType, new_id, now


def _message(chat, sender, receiver, content="hi", **kwargs) -> Message:
    return Message(
        id=new_id(),
        sender_id=sender.id,
        receiver_id=receiver.id,
        chat_id=chat.id,
        message_type=MessageType.TEXT,
        content=content,
        is_delivered=True,
        delivered_at=now(),
        **kwargs,
    )


class TestUsers:

    @pytest.mark.asyncio
    async def test_create_and_fetch(self, store, alice):
        assert (await store.get_user(alice.id)).name == "Alice"
        assert (await store.get_user_by_email("ALICE@example.com")).id == alice.id

    @pytest.mark.asyncio
    async def test_duplicate_email(self, store, alice):
        with pytest.raises(DuplicateKey) as exc_info:
            await store.create_user("Other", "Alice@Example.com", "h")
        assert exc_info.value.field == "email"

    @pytest.mark.asyncio
    async def test_list_users_excludes_and_searches(self, store, alice, bob, carol):
        users, total = await store.list_users(exclude_id=alice.id)
        assert total == 2
        assert {u.id for u in users} == {bob.id, carol.id}

        users, total = await store.list_users(exclude_id=alice.id, search="car")
        assert [u.id for u in users] == [carol.id]
        assert total == 1

    @pytest.mark.asyncio
    async def test_presence_and_reset(self, store, alice, bob):
        await store.set_presence(alice.id, True, now())
        await store.set_presence(bob.id, True, now())
        assert (await store.get_user(alice.id)).is_online

        assert await store.reset_presence() == 2
        assert not (await store.get_user(alice.id)).is_online
        assert (await store.get_user(alice.id)).last_seen is not None

    @pytest.mark.asyncio
    async def test_update_user(self, store, alice, bob):
        updated = await store.update_user(alice.id, name="Alice B", profile_picture="/p.png")
        assert updated.name == "Alice B"
        assert updated.profile_picture == "/p.png"
        assert updated.email == "alice@example.com"

        updated = await store.update_user(alice.id, email="New@Example.com")
        assert updated.email == "new@example.com"
        assert (await store.get_user_by_email("new@example.com")).id == alice.id

        with pytest.raises(DuplicateKey) as exc_info:
            await store.update_user(alice.id, email="BOB@example.com")
        assert exc_info.value.field == "email"
        assert (await store.get_user(alice.id)).email == "new@example.com"

        assert await store.update_user("missing", name="Nobody") is None

    @pytest.mark.asyncio
    async def test_deactivate_user(self, store, alice, bob):
        await store.set_presence(alice.id, True, now())
        assert await store.deactivate_user(alice.id, now())
        assert not await store.deactivate_user(alice.id, now())

        stored = await store.get_user(alice.id)
        assert not stored.is_active and not stored.is_online
        assert await store.update_user(alice.id, name="Ghost") is None


class TestPrivateChats:

    @pytest.mark.asyncio
    async def test_same_chat_for_either_order(self, store, alice, bob):
        first = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        second = await store.find_or_create_private_chat(bob.id, alice.id, created_by=bob.id)
        assert first.id == second.id
        assert second.created_by == alice.id
        assert set(first.participants) == {alice.id, bob.id}

    @pytest.mark.asyncio
    async def test_concurrent_creation_yields_one_chat(self, store, alice, bob):
        calls = [
            store.find_or_create_private_chat(*pair, created_by=pair[0])
            for pair in [(alice.id, bob.id), (bob.id, alice.id)] * 10
        ]
        chats = await asyncio.gather(*calls)
        assert len({c.id for c in chats}) == 1
        assert len(await store.list_chats_for_user(alice.id)) == 1

    @pytest.mark.asyncio
    async def test_deactivated_pair_gets_a_new_chat(self, store, alice, bob):
        old = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        assert await store.deactivate_chat(old.id)
        assert not await store.deactivate_chat(old.id)

        new = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        assert new.id != old.id
        assert not (await store.get_chat(old.id)).is_active

    @pytest.mark.asyncio
    async def test_list_chats_by_last_activity(self, store, alice, bob, carol):
        with_bob = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        with_carol = await store.find_or_create_private_chat(alice.id, carol.id, created_by=alice.id)

        m = _message(with_bob, bob, alice)
        await store.insert_message(m)
        await store.update_chat_last_message(with_bob.id, m.id, now() + 10)

        chats = await store.list_chats_for_user(alice.id)
        assert [c.id for c in chats] == [with_bob.id, with_carol.id]
        assert chats[0].last_message_id == m.id


class TestMessages:

    @pytest.mark.asyncio
    async def test_pages_are_newest_first_and_chronological(self, store, alice, bob):
        chat = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        for i in range(5):
            await store.insert_message(_message(chat, alice, bob, content=f"m{i}"))

        newest = await store.list_messages(chat.id, offset=0, limit=2)
        older = await store.list_messages(chat.id, offset=2, limit=2)
        oldest = await store.list_messages(chat.id, offset=4, limit=2)
        assert [m.content for m in newest] == ["m3", "m4"]
        assert [m.content for m in older] == ["m1", "m2"]
        assert [m.content for m in oldest] == ["m0"]

    @pytest.mark.asyncio
    async def test_identical_timestamps_keep_insert_order(self, store, alice, bob):
        chat = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        ts = now()
        for i in range(3):
            await store.insert_message(_message(chat, alice, bob, content=f"m{i}", created_at=ts))
        assert [m.content for m in await store.list_messages(chat.id, 0, 10)] == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_mark_read_reports_changed_ids_once(self, store, alice, bob):
        chat = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        to_bob = _message(chat, alice, bob)
        to_alice = _message(chat, bob, alice)
        await store.insert_message(to_bob)
        await store.insert_message(to_alice)

        changed = await store.mark_read(chat.id, bob.id, now(), [to_bob.id, to_alice.id])
        assert changed == [to_bob.id]
        assert await store.mark_read(chat.id, bob.id, now(), [to_bob.id]) == []
        assert (await store.get_message(to_bob.id)).read_at is not None
        assert not (await store.get_message(to_alice.id)).is_read

    @pytest.mark.asyncio
    async def test_mark_read_with_empty_id_list(self, store, alice, bob):
        chat = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        await store.insert_message(_message(chat, alice, bob))
        assert await store.mark_read(chat.id, bob.id, now(), []) == []
        assert len(await store.mark_read(chat.id, bob.id, now())) == 1

    @pytest.mark.asyncio
    async def test_soft_deleted_hidden_but_retained(self, store, alice, bob):
        chat = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        keep = _message(chat, alice, bob, content="keep")
        gone = _message(chat, alice, bob, content="gone")
        await store.insert_message(keep)
        await store.insert_message(gone)

        assert await store.soft_delete_message(gone.id, now())
        assert await store.count_messages(chat.id) == 1
        assert [m.id for m in await store.list_messages(chat.id, 0, 10)] == [keep.id]
        assert (await store.get_message(gone.id)).is_deleted

    @pytest.mark.asyncio
    async def test_mark_read_skips_deleted(self, store, alice, bob):
        chat = await store.find_or_create_private_chat(alice.id, bob.id, created_by=alice.id)
        gone = _message(chat, alice, bob, content="gone")
        await store.insert_message(gone)
        await store.soft_delete_message(gone.id, now())

        assert await store.mark_read(chat.id, bob.id, now()) == []
        assert not (await store.get_message(gone.id)).is_read

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping()
