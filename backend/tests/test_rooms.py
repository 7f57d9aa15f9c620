"""Tests for participant-only room membership."""
import pytest

from pairchat.errors import NotFoundError, NotParticipantError


class TestRoomMembership:

    @pytest.mark.asyncio
    async def test_participant_can_join(self, manager, connect, chat, alice):
        session = await connect(alice)
        assert await manager.join(session, chat.id) == 0
        assert manager.rooms.is_member(session, chat.id)
        assert manager.rooms.get_room_size(chat.id) == 1
        assert manager.rooms.rooms_of(session) == {chat.id}

    @pytest.mark.asyncio
    async def test_non_participant_is_rejected(self, manager, connect, chat, carol):
        session = await connect(carol)
        with pytest.raises(NotParticipantError):
            await manager.join(session, chat.id)
        assert manager.rooms.get_room_size(chat.id) == 0

    @pytest.mark.asyncio
    async def test_unknown_chat_is_not_found(self, manager, connect, alice):
        session = await connect(alice)
        with pytest.raises(NotFoundError):
            await manager.join(session, "no-such-chat")

    @pytest.mark.asyncio
    async def test_join_twice_keeps_one_membership(self, manager, connect, chat, alice):
        session = await connect(alice)
        await manager.join(session, chat.id)
        await manager.join(session, chat.id)
        assert manager.rooms.get_room_size(chat.id) == 1

    @pytest.mark.asyncio
    async def test_leave(self, manager, connect, chat, alice):
        session = await connect(alice)
        await manager.join(session, chat.id)
        assert manager.leave(session, chat.id) is True
        assert manager.leave(session, chat.id) is False
        assert manager.rooms.members(chat.id) == []

    @pytest.mark.asyncio
    async def test_leave_without_join_is_harmless(self, manager, connect, chat, carol):
        session = await connect(carol)
        assert manager.leave(session, chat.id) is False

    @pytest.mark.asyncio
    async def test_each_device_joins_separately(self, manager, connect, chat, alice):
        phone = await connect(alice)
        laptop = await connect(alice)
        await manager.join(phone, chat.id)
        assert manager.rooms.members(chat.id) == [phone]
        await manager.join(laptop, chat.id)
        assert set(manager.rooms.members(chat.id)) == {phone, laptop}

    @pytest.mark.asyncio
    async def test_close_session_leaves_every_room(self, manager, connect, store, chat, alice, carol):
        other, _ = store.find_or_create_chat(alice.id, carol.id)
        session = await connect(alice)
        await manager.join(session, chat.id)
        await manager.join(session, other.id)

        await manager.close_session(session)

        assert manager.rooms.get_room_size(chat.id) == 0
        assert manager.rooms.get_room_size(other.id) == 0
        assert manager.rooms.rooms_of(session) == set()

    @pytest.mark.asyncio
    async def test_closed_session_is_not_added(self, manager, connect, chat, alice):
        session = await connect(alice)
        session.closed = True
        await manager.rooms.join(session, chat.id)
        assert manager.rooms.get_room_size(chat.id) == 0
