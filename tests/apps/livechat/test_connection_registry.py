import asyncio

import pytest

from apps.livechat.exceptions import DuplicateConnection
from apps.livechat.services.connection_registry import ConnectionRegistry
from core.auth.identity import Identity


class Recorder:
    def __init__(self, fail=False, delay=0.0):
        self.sent = []
        self.closed_with = None
        self.fail = fail
        self.delay = delay

    async def send_json(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("gone")
        self.sent.append(data)

    async def close(self, code=1000):
        self.closed_with = code


USER = Identity(user_id="u1", role="user")
ADMIN = Identity(user_id="a1", role="admin")


class FakeClock:
    now = 10.0

    def __call__(self):
        return self.now


@pytest.fixture
async def registry():
    registry = ConnectionRegistry(max_outbox=4)
    yield registry
    await registry.close_all()


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_and_lookup(self, registry):
        connection = registry.register(Recorder(), USER)
        assert registry.lookup(connection.connection_id) is connection
        assert registry.lookup_by_user("u1") == [connection]
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_duplicate_connection_id_is_fatal(self, registry):
        registry.register(Recorder(), USER, connection_id="c1")
        with pytest.raises(DuplicateConnection):
            registry.register(Recorder(), USER, connection_id="c1")

    @pytest.mark.asyncio
    async def test_same_transport_twice_is_fatal(self, registry):
        transport = Recorder()
        registry.register(transport, USER)
        with pytest.raises(DuplicateConnection):
            registry.register(transport, USER)

    @pytest.mark.asyncio
    async def test_unregister_removes_every_index(self, registry):
        connection = registry.register(Recorder(), USER)
        registry.attach(connection.connection_id, "s1")
        await registry.unregister(connection.connection_id)

        assert registry.lookup(connection.connection_id) is None
        assert registry.lookup_by_user("u1") == []
        assert registry.lookup_by_session("s1") == []
        assert await registry.unregister(connection.connection_id) is None


class TestMembership:
    @pytest.mark.asyncio
    async def test_user_connection_follows_one_session(self, registry):
        connection = registry.register(Recorder(), USER)
        registry.attach(connection.connection_id, "s1")
        registry.attach(connection.connection_id, "s2")
        assert connection.session_ids == {"s2"}
        assert registry.lookup_by_session("s1") == []

    @pytest.mark.asyncio
    async def test_admin_connection_follows_several_sessions(self, registry):
        connection = registry.register(Recorder(), ADMIN)
        registry.attach(connection.connection_id, "s1")
        registry.attach(connection.connection_id, "s2")
        assert connection.session_ids == {"s1", "s2"}
        assert registry.lookup_admins() == [connection]

    @pytest.mark.asyncio
    async def test_detach_session_returns_former_members(self, registry):
        user = registry.register(Recorder(), USER)
        admin = registry.register(Recorder(), ADMIN)
        registry.attach(user.connection_id, "s1")
        registry.attach(admin.connection_id, "s1")

        members = registry.detach_session("s1")
        assert {c.connection_id for c in members} == {user.connection_id, admin.connection_id}
        assert registry.lookup_by_session("s1") == []
        assert not registry.is_attached(user.connection_id, "s1")

    @pytest.mark.asyncio
    async def test_owner_gone_only_after_last_owner_connection(self):
        clock = FakeClock()
        registry = ConnectionRegistry(clock=clock)
        first = registry.register(Recorder(), USER)
        second = registry.register(Recorder(), USER)
        registry.attach(first.connection_id, "s1")
        registry.attach(second.connection_id, "s1")

        await registry.unregister(first.connection_id)
        assert registry.owner_gone_since("s1") is None

        await registry.unregister(second.connection_id)
        assert registry.owner_gone_since("s1") == 10.0

        again = registry.register(Recorder(), USER)
        registry.attach(again.connection_id, "s1")
        assert registry.owner_gone_since("s1") is None
        await registry.close_all()


class TestDelivery:
    @pytest.mark.asyncio
    async def test_events_arrive_in_enqueue_order(self, registry):
        transport = Recorder(delay=0.001)
        connection = registry.register(transport, USER)
        for i in range(4):
            registry.send([connection], {"type": "message", "data": {"n": i}})
        await registry.drain()
        assert [e["data"]["n"] for e in transport.sent] == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_each_connection_receives_once(self, registry):
        transport = Recorder()
        connection = registry.register(transport, ADMIN)
        delivered = registry.send([connection, connection], {"type": "x", "data": {}})
        await registry.drain()
        assert delivered == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_exclude_user_skips_all_of_their_connections(self, registry):
        mine = Recorder()
        theirs = Recorder()
        registry.register(mine, USER)
        registry.register(theirs, ADMIN)
        registry.send(registry.all(), {"type": "typing", "data": {}}, exclude_user="u1")
        await registry.drain()
        assert mine.sent == []
        assert len(theirs.sent) == 1

    @pytest.mark.asyncio
    async def test_full_outbox_closes_only_that_connection(self, registry):
        slow = Recorder(delay=1)
        fast = Recorder()
        slow_connection = registry.register(slow, USER)
        fast_connection = registry.register(fast, ADMIN)

        for i in range(10):
            registry.send([slow_connection, fast_connection], {"type": "x", "data": {"n": i}})
            await asyncio.sleep(0)

        assert slow_connection.closed
        assert slow.closed_with == 1013
        assert not fast_connection.closed
        await fast_connection.drain()
        assert [e["data"]["n"] for e in fast.sent] == list(range(10))

    @pytest.mark.asyncio
    async def test_send_failure_closes_connection(self, registry):
        broken = Recorder(fail=True)
        connection = registry.register(broken, USER)
        registry.send([connection], {"type": "x", "data": {}})
        await registry.drain()
        await asyncio.sleep(0)
        assert connection.closed
        assert broken.closed_with == 1011
        assert registry.send([connection], {"type": "y", "data": {}}) == 0
