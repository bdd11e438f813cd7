import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from apps.livechat.exceptions import DeliveryFailed, SessionConflict, SessionNotFound
from apps.livechat.services.session_store import SessionStore


@pytest.fixture
def store(session_factory):
    return SessionStore(session_factory)


async def open_session(store, user_id="user-1"):
    return await store.create_session(user_id=user_id, subject="Billing", department="billing")


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_session_starts_waiting(self, store):
        session = await open_session(store)
        assert session.status == "waiting"
        assert session.assigned_admin_id is None
        assert session.priority == "normal"
        assert (await store.get_open_session_for_user("user-1")).id == session.id

    @pytest.mark.asyncio
    async def test_second_open_session_for_user_conflicts(self, store):
        await open_session(store)
        with pytest.raises(SessionConflict):
            await open_session(store)

    @pytest.mark.asyncio
    async def test_ended_sessions_do_not_block_a_new_one(self, store):
        first = await open_session(store)
        await store.end_session(first.id, "ended_by_user")
        second = await open_session(store)
        assert second.id != first.id
        assert len(await store.list_user_history("user-1")) == 2

    @pytest.mark.asyncio
    async def test_end_session_is_one_shot(self, store):
        session = await open_session(store)
        ended = await store.end_session(session.id, "ended_by_admin")
        assert ended.status == "ended"
        assert ended.end_reason == "ended_by_admin"
        assert ended.ended_at is not None
        with pytest.raises(SessionNotFound):
            await store.end_session(session.id, "ended_by_user")

    @pytest.mark.asyncio
    async def test_update_session_only_touches_open_sessions(self, store):
        session = await open_session(store)
        updated = await store.update_session(session.id, priority="high")
        assert updated.priority == "high"
        await store.end_session(session.id, "ended_by_user")
        with pytest.raises(SessionNotFound):
            await store.update_session(session.id, priority="low")

    @pytest.mark.asyncio
    async def test_touch_never_moves_activity_backwards(self, store):
        session = await open_session(store)
        later = session.last_activity_at + timedelta(minutes=5)
        assert await store.touch_session(session.id, at=later)
        await store.touch_session(session.id, at=later - timedelta(minutes=10))
        assert (await store.get_session(session.id)).last_activity_at == later

    @pytest.mark.asyncio
    async def test_find_idle_sessions_skips_recent_and_ended(self, store):
        idle = await open_session(store, "user-1")
        busy = await open_session(store, "user-2")
        ended = await open_session(store, "user-3")
        await store.end_session(ended.id, "ended_by_user")
        await store.touch_session(busy.id, at=datetime.utcnow() + timedelta(hours=1))

        found = await store.find_idle_sessions(datetime.utcnow() + timedelta(minutes=1))
        assert [s.id for s in found] == [idle.id]

    @pytest.mark.asyncio
    async def test_list_and_count_by_status(self, store):
        waiting = await open_session(store, "user-1")
        active = await open_session(store, "user-2")
        await store.claim_session(active.id, "admin-1")

        assert {s.id for s in await store.list_sessions("open")} == {waiting.id, active.id}
        assert [s.id for s in await store.list_sessions("waiting")] == [waiting.id]
        assert await store.count_sessions("active") == 1
        assert await store.count_active_for_admin("admin-1") == 1


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_moves_session_to_active(self, store):
        session = await open_session(store)
        assert await store.claim_session(session.id, "admin-1")
        claimed = await store.get_session(session.id)
        assert claimed.status == "active"
        assert claimed.assigned_admin_id == "admin-1"

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store):
        session = await open_session(store)
        results = await asyncio.gather(
            store.claim_session(session.id, "admin-1"),
            store.claim_session(session.id, "admin-2"),
        )
        assert sorted(results) == [False, True]
        winner = "admin-1" if results[0] else "admin-2"
        assert (await store.get_session(session.id)).assigned_admin_id == winner

    @pytest.mark.asyncio
    async def test_ended_session_can_not_be_claimed(self, store):
        session = await open_session(store)
        await store.end_session(session.id, "ended_by_user")
        assert not await store.claim_session(session.id, "admin-1")


class TestMessages:
    @pytest.mark.asyncio
    async def test_messages_come_back_in_creation_order(self, store):
        session = await open_session(store)
        for i in range(5):
            await store.insert_message(session.id, "user-1", f"message {i}")
        messages = await store.list_messages(session.id)
        assert [m.message for m in messages] == [f"message {i}" for i in range(5)]
        assert [m.seq for m in messages] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_insert_touches_the_session(self, store):
        session = await open_session(store)
        message = await store.insert_message(session.id, "admin-1", "hello", is_from_admin=True)
        assert message.is_from_admin
        assert (await store.get_session(session.id)).last_activity_at >= message.created_at

    @pytest.mark.asyncio
    async def test_insert_into_ended_session_is_rejected(self, store):
        session = await open_session(store)
        await store.end_session(session.id, "ended_by_user")
        with pytest.raises(SessionNotFound):
            await store.insert_message(session.id, "user-1", "too late")
        assert await store.list_messages(session.id) == []

    @pytest.mark.asyncio
    async def test_storage_failure_is_delivery_failed(self, store):
        session = await open_session(store)
        with patch(
            "sqlalchemy.ext.asyncio.AsyncSession.commit",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(DeliveryFailed):
                await store.insert_message(session.id, "user-1", "lost")
        assert await store.list_messages(session.id) == []

    @pytest.mark.asyncio
    async def test_committed_message_is_returned_without_reloading(self, store):
        session = await open_session(store)
        with patch(
            "sqlalchemy.ext.asyncio.AsyncSession.refresh",
            side_effect=OperationalError("SELECT", {}, Exception("connection reset")),
        ):
            message = await store.insert_message(session.id, "user-1", "kept")

        assert message.message == "kept"
        assert message.seq == 1
        assert [m.id for m in await store.list_messages(session.id)] == [message.id]


class TestDirectory:
    @pytest.mark.asyncio
    async def test_departments_are_ordered_and_filtered(self, store):
        await store.create_department("Sales", display_order=2)
        await store.create_department("Billing", display_order=1)
        await store.create_department("Legacy", is_active=False)
        names = [d.name for d in await store.list_departments()]
        assert names == ["Billing", "Sales"]

    @pytest.mark.asyncio
    async def test_upsert_admin_status_keeps_unset_fields(self, store):
        await store.upsert_admin_status("admin-1", status="online", max_concurrent_chats=3)
        status = await store.upsert_admin_status("admin-1", status="away")
        assert status.status == "away"
        assert status.max_concurrent_chats == 3
        assert await store.list_available_admins() == []
