"""Tests for StoreGateway: async access, timeouts and error mapping."""
import asyncio
import time
from unittest.mock import patch

import duckdb
import pytest

from pairchat.errors import StoreUnavailableError
from pairchat.store import ChatStore, StoreGateway
from pairchat.store.service import WriteAbandoned, WriteGuard


class TestStoreGateway:

    @pytest.mark.asyncio
    async def test_passes_results_through(self, gateway, alice):
        user = await gateway.get_user(alice.id)
        assert user.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_find_or_create_returns_created_flag(self, gateway, alice, bob):
        chat, created = await gateway.find_or_create_chat(alice.id, bob.id)
        again, created_again = await gateway.find_or_create_chat(bob.id, alice.id)
        assert (created, created_again) == (True, False)
        assert chat.id == again.id

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, store, alice):
        gateway = StoreGateway(store, timeout_seconds=0.05)

        def slow(*args):
            time.sleep(0.5)

        with patch.object(store, "get_user", side_effect=slow):
            with pytest.raises(StoreUnavailableError) as exc_info:
                await gateway.get_user(alice.id)
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_database_error_is_mapped(self, gateway, store, chat, alice):
        with patch.object(store, "create_message", side_effect=duckdb.Error("disk full")):
            with pytest.raises(StoreUnavailableError, match="Store operation failed"):
                await gateway.create_message(chat.id, alice.id, "hi")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, gateway, alice):
        with pytest.raises(ValueError):
            await gateway.find_or_create_chat(alice.id, alice.id)


class TestTimedOutWrites:
    """A write that misses its deadline must not commit afterwards."""

    @pytest.mark.asyncio
    async def test_timed_out_message_is_not_persisted(self, store, chat, alice):
        gateway = StoreGateway(store, timeout_seconds=0.05)

        def slow(*args):
            time.sleep(0.3)
            return ChatStore.create_message(store, *args)

        with patch.object(store, "create_message", side_effect=slow):
            with pytest.raises(StoreUnavailableError):
                await gateway.create_message(chat.id, alice.id, "late")
            await asyncio.sleep(0.5)

        assert store.list_messages(chat.id) == []
        assert store.get_chat(chat.id).lastMessage is None

    @pytest.mark.asyncio
    async def test_timed_out_mark_seen_is_not_persisted(self, store, chat, alice, bob):
        store.create_message(chat.id, alice.id, "hello")
        gateway = StoreGateway(store, timeout_seconds=0.05)

        def slow(*args):
            time.sleep(0.3)
            return ChatStore.mark_seen(store, *args)

        with patch.object(store, "mark_seen", side_effect=slow):
            with pytest.raises(StoreUnavailableError):
                await gateway.mark_seen(chat.id, bob.id)
            await asyncio.sleep(0.5)

        assert store.unread_count(chat.id, bob.id) == 1

    @pytest.mark.asyncio
    async def test_retry_after_timeout_stores_one_copy(self, store, chat, alice):
        gateway = StoreGateway(store, timeout_seconds=0.05)

        def slow(*args):
            time.sleep(0.3)
            return ChatStore.create_message(store, *args)

        with patch.object(store, "create_message", side_effect=slow):
            with pytest.raises(StoreUnavailableError):
                await gateway.create_message(chat.id, alice.id, "once")
        await asyncio.sleep(0.5)

        gateway.timeout_seconds = 2.0
        await gateway.create_message(chat.id, alice.id, "once")
        assert [m.content for m in store.list_messages(chat.id)] == ["once"]

    @pytest.mark.asyncio
    async def test_fast_write_commits(self, gateway, store, chat, alice):
        message = await gateway.create_message(chat.id, alice.id, "hi")
        assert [m.id for m in store.list_messages(chat.id)] == [message.id]


class TestWriteGuard:

    def test_commit_then_abandon_reports_committed(self):
        guard = WriteGuard()
        calls = []
        assert guard.try_commit(lambda: calls.append("commit")) is True
        assert guard.abandon() is True
        assert calls == ["commit"]
        assert guard.abandoned is False

    def test_abandon_then_commit_skips_commit(self):
        guard = WriteGuard()
        calls = []
        assert guard.abandon() is False
        assert guard.try_commit(lambda: calls.append("commit")) is False
        assert calls == []
        assert guard.committed is False

    def test_abandoned_guard_writes_nothing(self, store, chat, alice):
        guard = WriteGuard()
        guard.abandon()
        with pytest.raises(WriteAbandoned):
            store.run_guarded(guard, store.create_message, chat.id, alice.id, "hi")
        assert store.list_messages(chat.id) == []

    def test_failed_write_rolls_back(self, store, chat, alice):
        def half_done(*args):
            store.create_message(*args)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.run_guarded(WriteGuard(), half_done, chat.id, alice.id, "hi")
        assert store.list_messages(chat.id) == []

    def test_guarded_write_commits(self, store, chat, alice):
        guard = WriteGuard()
        message = store.run_guarded(guard, store.create_message, chat.id, alice.id, "hi")
        assert guard.committed is True
        assert [m.id for m in store.list_messages(chat.id)] == [message.id]
