import asyncio
import logging
import time
from typing import Dict, List, Optional, Set, Iterable, Protocol
from uuid import uuid4

from apps.livechat.exceptions import DuplicateConnection
from core.auth.identity import Identity

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the registry needs from a live socket (Starlette's WebSocket fits)."""

    async def send_json(self, data: dict) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Connection:
    """A live transport bound to one identity.

    Outbound events go through a bounded queue drained by a single writer
    task, so events reach the socket in the order they were enqueued and a
    slow socket never blocks the sender.
    """

    def __init__(self, connection_id: str, identity: Identity, transport: Transport, max_outbox: int = 256):
        self.connection_id = connection_id
        self.identity = identity
        self.transport = transport
        self.session_ids: Set[str] = set()
        self.connected_at = time.monotonic()
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max_outbox)
        self._writer: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._pump(), name=f"livechat-writer-{self.connection_id}")

    def enqueue(self, event: dict) -> bool:
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for connection {self.connection_id}, closing it")
            self._abort(code=1013)
            return False

    async def drain(self):
        """Wait until every queued event has been handed to the transport."""
        if self._writer is not None and not self.closed:
            await self._outbox.join()

    async def _pump(self):
        while True:
            event = await self._outbox.get()
            try:
                await self.transport.send_json(event)
            except Exception as e:
                logger.error(f"Error sending to connection {self.connection_id}: {e}")
                self._outbox.task_done()
                self._abort(code=1011)
                return
            self._outbox.task_done()

    def _abort(self, code: int):
        self.closed = True
        # Release anyone waiting in drain()
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()
        asyncio.ensure_future(self._close_transport(code))

    async def _close_transport(self, code: int):
        try:
            await self.transport.close(code=code)
        except Exception as e:
            logger.debug(f"Transport for {self.connection_id} already closed: {e}")

    async def stop(self):
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None


class ConnectionRegistry:
    """Sole owner of connection -> identity -> session mappings.

    Other components get read-only lookups and go through attach/detach to
    change membership.
    """

    def __init__(self, max_outbox: int = 256, clock=time.monotonic):
        self._max_outbox = max_outbox
        self._clock = clock
        self._connections: Dict[str, Connection] = {}
        self._by_user: Dict[str, Set[str]] = {}
        self._by_session: Dict[str, Set[str]] = {}
        # session_id -> when the owner's last connection went away
        self._owner_gone_since: Dict[str, float] = {}

    def register(self, transport: Transport, identity: Identity, connection_id: Optional[str] = None) -> Connection:
        connection_id = connection_id or str(uuid4())
        if connection_id in self._connections:
            raise DuplicateConnection(f"Connection id {connection_id} is already registered")
        for existing in self._connections.values():
            if existing.transport is transport:
                raise DuplicateConnection(
                    f"Transport already registered as {existing.connection_id} for user {existing.user_id}"
                )

        connection = Connection(connection_id, identity, transport, max_outbox=self._max_outbox)
        self._connections[connection_id] = connection
        self._by_user.setdefault(identity.user_id, set()).add(connection_id)
        connection.start()
        logger.info(f"Registered connection {connection_id} for {identity.role} {identity.user_id}")
        return connection

    async def unregister(self, connection_id: str) -> Optional[Connection]:
        """Drop a connection. Sessions it was attached to are left untouched."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        user_connections = self._by_user.get(connection.user_id, set())
        user_connections.discard(connection_id)
        if not user_connections:
            self._by_user.pop(connection.user_id, None)

        for session_id in list(connection.session_ids):
            self._remove_member(session_id, connection_id)
            if not connection.identity.is_admin and not self._owner_present(session_id, connection.user_id):
                self._owner_gone_since[session_id] = self._clock()

        await connection.stop()
        logger.info(f"Unregistered connection {connection_id} ({connection.user_id})")
        return connection

    def attach(self, connection_id: str, session_id: str):
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        if not connection.identity.is_admin:
            # A user connection follows exactly one session
            for previous in list(connection.session_ids):
                if previous != session_id:
                    self.detach(connection_id, previous)
            self._owner_gone_since.pop(session_id, None)
        connection.session_ids.add(session_id)
        self._by_session.setdefault(session_id, set()).add(connection_id)

    def detach(self, connection_id: str, session_id: str):
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.session_ids.discard(session_id)
        self._remove_member(session_id, connection_id)

    def detach_session(self, session_id: str) -> List[Connection]:
        members = self.lookup_by_session(session_id)
        for connection in members:
            connection.session_ids.discard(session_id)
        self._by_session.pop(session_id, None)
        self._owner_gone_since.pop(session_id, None)
        return members

    def _remove_member(self, session_id: str, connection_id: str):
        members = self._by_session.get(session_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._by_session[session_id]

    def _owner_present(self, session_id: str, user_id: str) -> bool:
        return any(
            session_id in c.session_ids for c in self.lookup_by_user(user_id)
        )

    # Lookups

    def lookup(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def lookup_by_user(self, user_id: str) -> List[Connection]:
        return [self._connections[cid] for cid in self._by_user.get(user_id, ()) if cid in self._connections]

    def lookup_by_session(self, session_id: str) -> List[Connection]:
        return [self._connections[cid] for cid in self._by_session.get(session_id, ()) if cid in self._connections]

    def lookup_admins(self) -> List[Connection]:
        return [c for c in self._connections.values() if c.identity.is_admin]

    def all(self) -> List[Connection]:
        return list(self._connections.values())

    def is_attached(self, connection_id: str, session_id: str) -> bool:
        return connection_id in self._by_session.get(session_id, ())

    def owner_gone_since(self, session_id: str) -> Optional[float]:
        return self._owner_gone_since.get(session_id)

    def __len__(self) -> int:
        return len(self._connections)

    # Delivery

    def send(self, connections: Iterable[Connection], event: dict, exclude_user: Optional[str] = None) -> int:
        """Queue an event on each connection once; returns how many accepted it."""
        seen = set()
        delivered = 0
        for connection in connections:
            if connection.connection_id in seen:
                continue
            seen.add(connection.connection_id)
            if exclude_user is not None and connection.user_id == exclude_user:
                continue
            if connection.enqueue(event):
                delivered += 1
        return delivered

    async def drain(self):
        await asyncio.gather(*(c.drain() for c in list(self._connections.values())))

    async def close_all(self, code: int = 1001):
        for connection_id in list(self._connections):
            connection = self._connections.get(connection_id)
            await self.unregister(connection_id)
            if connection is not None:
                await connection._close_transport(code)
