"""Shared fixtures: a file-backed SQLite database per test and fake transports."""
import os
import tempfile

# The engine module reads its URL at import time
os.environ.setdefault(
    "LIVECHAT_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'livechat-test.db')}",
)

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession

from apps.livechat.config import LivechatSettings
from apps.livechat.db import init_livechat_db
from apps.livechat.services import LiveChatService
from core.auth.identity import Identity


class FakeTransport:
    """Records what the server sends; stands in for a Starlette WebSocket."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def of_type(self, event_type: str):
        return [event["data"] for event in self.sent if event["type"] == event_type]

    def types(self):
        return [event["type"] for event in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'livechat.db'}"


@pytest.fixture
async def engine(database_url):
    engine = create_async_engine(database_url)
    await init_livechat_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def settings(database_url):
    return LivechatSettings(
        DATABASE_URL=database_url,
        IDLE_TIMEOUT_SECONDS=1800,
        RECONNECT_GRACE_SECONDS=300,
        TYPING_TIMEOUT_SECONDS=5,
        MAX_MESSAGE_LENGTH=10000,
        OUTBOX_MAX_SIZE=64,
        ASSIGNMENT_POLICY="manual",
    )


@pytest.fixture
async def service(session_factory, settings):
    service = LiveChatService(session_factory, settings)
    yield service
    await service.shutdown()


@pytest.fixture
def user():
    return Identity(user_id="user-1", role="user", username="alice")


@pytest.fixture
def other_user():
    return Identity(user_id="user-2", role="user", username="bob")


@pytest.fixture
def admin():
    return Identity(user_id="admin-1", role="admin", username="carol")


@pytest.fixture
def other_admin():
    return Identity(user_id="admin-2", role="super_admin", username="dave")


@pytest.fixture
def connect(service):
    """Open a fake live connection: connect(identity) -> (connection, transport)."""

    def _connect(identity: Identity):
        transport = FakeTransport()
        connection = service.connect(transport, identity)
        return connection, transport

    return _connect
